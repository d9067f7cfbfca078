"""Unit tests for directory planning and owned-file helpers."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from vaultsetup.bootstrap.filesystem import (
    DirectorySpec,
    apply_directory_plan,
    backup_file,
    plan_directories,
    secure_file,
    write_owned_file,
)
from vaultsetup.errors import AccountProvisionError


def test_plan_creates_missing_directory(tmp_path: Path) -> None:
    """Plan should create directories that are absent on disk."""
    target = tmp_path / "var" / "lib" / "vault"
    spec = DirectorySpec(path=target, mode=0o750)

    plan = plan_directories([spec])
    assert [action.kind for action in plan.actions] == ["mkdir"]
    assert plan.changed is True

    apply_directory_plan(plan)
    assert target.is_dir()
    assert target.stat().st_mode & 0o777 == 0o750


def test_plan_adjusts_permissions(tmp_path: Path) -> None:
    """Plan should tighten permissions when they differ from expectations."""
    target = tmp_path / "etc" / "vault.d"
    target.mkdir(parents=True)
    os.chmod(target, 0o755)

    plan = plan_directories([DirectorySpec(path=target, mode=0o750)])

    assert [action.kind for action in plan.actions] == ["chmod"]
    apply_directory_plan(plan)
    assert target.stat().st_mode & 0o777 == 0o750


def test_plan_is_empty_when_directory_matches(
    tmp_path: Path,
    current_account: tuple[str, str],
) -> None:
    """Re-running against a converged directory plans nothing."""
    user, group = current_account
    target = tmp_path / "etc" / "vault.d"
    spec = DirectorySpec(path=target, mode=0o750, owner=user, group=group)

    apply_directory_plan(plan_directories([spec]))
    second = plan_directories([spec])

    assert second.actions == []
    assert second.changed is False


def test_plan_chowns_new_directory(tmp_path: Path, current_account: tuple[str, str]) -> None:
    """Owned directories get a chown after creation."""
    user, group = current_account
    target = tmp_path / "var" / "lib" / "vault"

    plan = plan_directories([DirectorySpec(path=target, owner=user, group=group)])

    assert [action.kind for action in plan.actions] == ["mkdir", "chown"]
    apply_directory_plan(plan)
    assert target.stat().st_uid == os.getuid()


def test_dry_run_leaves_filesystem_untouched(tmp_path: Path) -> None:
    """Dry runs only report the plan."""
    target = tmp_path / "var" / "lib" / "vault"

    apply_directory_plan(plan_directories([DirectorySpec(path=target)]), dry_run=True)

    assert not target.exists()


def test_plan_warns_on_non_directory(tmp_path: Path) -> None:
    """Plan should warn when the target path is not a directory."""
    target = tmp_path / "var" / "lib" / "vault"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text("not a directory", encoding="utf-8")

    plan = plan_directories([DirectorySpec(path=target)])

    assert plan.actions == []
    assert plan.warnings


def test_chown_to_unknown_user_fails(tmp_path: Path) -> None:
    """A missing service account surfaces as an account provisioning error."""
    target = tmp_path / "etc" / "vault.d"
    plan = plan_directories(
        [DirectorySpec(path=target, owner="vaultsetup-no-such-user", group=None)]
    )

    with pytest.raises(AccountProvisionError, match="does not exist"):
        apply_directory_plan(plan)


def test_write_owned_file_sets_mode_atomically(
    tmp_path: Path,
    current_account: tuple[str, str],
) -> None:
    """Written files carry the requested mode and leave no temporaries behind."""
    user, group = current_account
    target = tmp_path / "etc" / "vault.d" / "vault.hcl"

    write_owned_file(target, b"ui = true\n", mode=0o600, owner=user, group=group)
    write_owned_file(target, b"ui = false\n", mode=0o600, owner=user, group=group)

    assert target.read_bytes() == b"ui = false\n"
    assert target.stat().st_mode & 0o777 == 0o600
    assert sorted(path.name for path in target.parent.iterdir()) == ["vault.hcl"]


def test_secure_file_reports_changes(tmp_path: Path, current_account: tuple[str, str]) -> None:
    """secure_file only reports a change when mode or ownership differ."""
    user, group = current_account
    target = tmp_path / "vault.key"
    target.write_bytes(b"key")
    os.chmod(target, 0o644)

    assert secure_file(target, mode=0o600, owner=user, group=group) is True
    assert target.stat().st_mode & 0o777 == 0o600
    assert secure_file(target, mode=0o600, owner=user, group=group) is False


def test_backup_file_copies_with_timestamp(tmp_path: Path) -> None:
    """Backups use the ``.bak.<timestamp>`` suffix and never clobber each other."""
    target = tmp_path / "vault.hcl"
    target.write_text("original\n", encoding="utf-8")

    first = backup_file(target, clock=lambda: 1700000000.7)
    second = backup_file(target, clock=lambda: 1700000000.2)

    assert first is not None and second is not None
    assert first.name == "vault.hcl.bak.1700000000"
    assert second.name == "vault.hcl.bak.1700000000.1"
    assert first.read_text(encoding="utf-8") == "original\n"
    assert target.exists()


def test_backup_file_missing_source(tmp_path: Path) -> None:
    """Nothing is backed up when the file does not exist yet."""
    assert backup_file(tmp_path / "vault.hcl") is None

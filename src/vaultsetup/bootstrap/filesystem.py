"""Plan and apply directory layout, ownership and owned-file writes."""
from __future__ import annotations

import os
import shutil
import stat
import tempfile
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..errors import AccountProvisionError
from .service_accounts import resolve_account_ids


@dataclass(slots=True)
class DirectorySpec:
    """Desired state for a managed directory."""

    path: Path
    mode: int = 0o750
    owner: str | None = None
    group: str | None = None


@dataclass(slots=True)
class DirectoryAction:
    """Single filesystem change required to satisfy a :class:`DirectorySpec`."""

    kind: Literal["mkdir", "chmod", "chown"]
    path: Path
    description: str
    mode: int | None = None
    owner: str | None = None
    group: str | None = None


@dataclass(slots=True)
class DirectoryPlan:
    """Ordered actions and warnings for a set of directory specs."""

    specs: list[DirectorySpec]
    actions: list[DirectoryAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return ``True`` when applying the plan mutates the host."""
        return bool(self.actions)


def plan_directories(specs: Iterable[DirectorySpec]) -> DirectoryPlan:
    """Compare *specs* with the filesystem and return the required actions.

    Existing directories have their mode and ownership re-asserted so drift
    is corrected on every run.
    """
    spec_list = list(specs)
    plan = DirectoryPlan(specs=spec_list)
    for spec in spec_list:
        path = spec.path
        if path.exists() and not path.is_dir():
            plan.warnings.append(f"{path} exists but is not a directory; leaving it untouched.")
            continue

        if not path.exists():
            plan.actions.append(
                DirectoryAction(
                    kind="mkdir",
                    path=path,
                    description=f"Create directory {path} ({spec.mode:04o}).",
                    mode=spec.mode,
                )
            )
            if spec.owner:
                plan.actions.append(_chown_action(spec))
            continue

        current_mode = stat.S_IMODE(path.stat().st_mode)
        if current_mode != spec.mode:
            plan.actions.append(
                DirectoryAction(
                    kind="chmod",
                    path=path,
                    description=(
                        f"Change mode of {path} from {current_mode:04o} to {spec.mode:04o}."
                    ),
                    mode=spec.mode,
                )
            )
        if spec.owner and not _owned_by(path, spec.owner, spec.group):
            plan.actions.append(_chown_action(spec))
    return plan


def apply_directory_plan(plan: DirectoryPlan, *, dry_run: bool = False) -> None:
    """Execute the actions described by *plan*."""
    if dry_run:
        return
    for action in plan.actions:
        try:
            if action.kind == "mkdir":
                action.path.mkdir(parents=True, exist_ok=True)
                os.chmod(action.path, action.mode if action.mode is not None else 0o750)
            elif action.kind == "chmod":
                os.chmod(action.path, action.mode if action.mode is not None else 0o750)
            elif action.kind == "chown" and action.owner:
                uid, gid = resolve_account_ids(action.owner, action.group)
                os.chown(action.path, uid, gid)
        except OSError as exc:
            raise AccountProvisionError(f"{action.description} failed: {exc}") from exc


def secure_file(path: Path, *, mode: int, owner: str | None, group: str | None = None) -> bool:
    """Assert *mode* and ownership on an existing file; return ``True`` if changed."""
    changed = False
    info = path.stat()
    if stat.S_IMODE(info.st_mode) != mode:
        os.chmod(path, mode)
        changed = True
    if owner:
        uid, gid = resolve_account_ids(owner, group)
        if info.st_uid != uid or info.st_gid != gid:
            os.chown(path, uid, gid)
            changed = True
    return changed


def write_owned_file(
    path: Path,
    content: bytes,
    *,
    mode: int,
    owner: str | None,
    group: str | None = None,
) -> None:
    """Atomically write *content* to *path* with *mode* and ownership applied.

    The temporary file is created in the destination directory with *mode*
    already set, so the content is never readable by other users.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        if owner:
            uid, gid = resolve_account_ids(owner, group)
            os.chown(tmp_path, uid, gid)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def backup_file(path: Path, *, clock: Callable[[], float] | None = None) -> Path | None:
    """Copy *path* aside as ``<path>.bak.<unix-timestamp>`` when it exists.

    The original is left in place; metadata (mode, owner, times) is
    preserved. Returns the backup path, or ``None`` when nothing existed.
    """
    if not path.exists():
        return None
    timestamp = int((clock or time.time)())
    candidate = path.with_name(f"{path.name}.bak.{timestamp}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.bak.{timestamp}.{counter}")
        counter += 1
    shutil.copy2(path, candidate)
    if os.geteuid() == 0:
        info = path.stat()
        os.chown(candidate, info.st_uid, info.st_gid)
    return candidate


def _chown_action(spec: DirectorySpec) -> DirectoryAction:
    owner_group = f"{spec.owner}:{spec.group or spec.owner}"
    return DirectoryAction(
        kind="chown",
        path=spec.path,
        description=f"Change owner of {spec.path} to {owner_group}.",
        owner=spec.owner,
        group=spec.group,
    )


def _owned_by(path: Path, owner: str, group: str | None) -> bool:
    try:
        uid, gid = resolve_account_ids(owner, group)
    except AccountProvisionError:
        return False
    info = path.stat()
    return info.st_uid == uid and info.st_gid == gid


__all__ = [
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "apply_directory_plan",
    "backup_file",
    "plan_directories",
    "secure_file",
    "write_owned_file",
]

"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from vaultsetup.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_appends_one_json_line_per_command(tmp_path: Path) -> None:
    """Each operation is written as a single JSON object with its steps."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("install", args={"dry_run": False}, target={"kind": "host"}) as op:
        op.step("packages", "ok", "Already installed: vault.", {"commands": []})
        op.step(
            "config",
            "changed",
            "Wrote vault.hcl.",
            {"backup": Path("/etc/vault.d/vault.hcl.bak.1")},
        )
        op.success("Provisioning completed.", changed=1)
    with logger.operation("render") as op:
        op.success("Rendered configuration to stdout.")

    records = _records(logger)
    assert [record["command"] for record in records] == ["install", "render"]
    first = records[0]
    assert first["args"] == {"dry_run": False}
    assert first["target"] == {"kind": "host"}
    steps = first["steps"]
    assert isinstance(steps, list)
    assert [step["name"] for step in steps] == ["packages", "config"]
    assert steps[1]["details"] == {"backup": "/etc/vault.d/vault.hcl.bak.1"}
    assert first["result"]["status"] == "success"  # type: ignore[index]
    assert first["result"]["changed"] == 1  # type: ignore[index]
    assert isinstance(first["duration_ms"], int)


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Leaving the scope without recording a result marks it successful."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("config show"):
        pass

    record = _records(logger)[0]
    assert record["result"]["status"] == "success"  # type: ignore[index]


def test_exception_records_error_and_propagates(tmp_path: Path) -> None:
    """An exception escaping the scope is logged as an error and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError, match="dnf exploded"):
        with logger.operation("install"):
            raise RuntimeError("dnf exploded")

    result = _records(logger)[0]["result"]
    assert result["status"] == "error"  # type: ignore[index]
    assert result["errors"] == ["dnf exploded"]  # type: ignore[index]


def test_exception_keeps_recorded_result(tmp_path: Path) -> None:
    """A result recorded before an exit exception is not overwritten."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(SystemExit):
        with logger.operation("install") as op:
            op.error("Service user 'vault' does not exist.", rc=3)
            raise SystemExit(3)

    result = _records(logger)[0]["result"]
    assert result["message"] == "Service user 'vault' does not exist."  # type: ignore[index]
    assert result["rc"] == 3  # type: ignore[index]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("install", args={"port": 8200}) as op:
        op.success("done", changed=0)
    assert not logger.operations_log.exists()


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so provisioning carries on."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.operations_log

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("install") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("render") as op:
        op.success("done", changed=0)


def test_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings are recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("install") as op:
        op.warning(
            "Provisioning completed with warnings.",
            warnings=("firewalld not active; skipping firewall open.",),
            changed=2,
            backups=["/etc/vault.d/vault.hcl.bak.1700000000"],
            context={"backup": Path("/etc/vault.d/vault.hcl.bak.1700000000"), "ports": {8200}},
        )

    result = _records(logger)[0]["result"]
    assert result["status"] == "warning"  # type: ignore[index]
    warnings = result["warnings"]  # type: ignore[index]
    assert warnings == ["firewalld not active; skipping firewall open."]
    assert result["context"] == {  # type: ignore[index]
        "backup": "/etc/vault.d/vault.hcl.bak.1700000000",
        "ports": "{8200}",
    }


def test_step_details_may_reuse_field_names(tmp_path: Path) -> None:
    """Detail keys such as ``status`` or ``name`` are kept under ``details``."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("install") as op:
        op.step(
            "service",
            "changed",
            "Enabled and restarted vault.",
            {"status": "active", "name": "vault", "output": "Active: active (running)"},
        )

    step = _records(logger)[0]["steps"][0]  # type: ignore[index]
    assert step["status"] == "changed"
    assert step["details"] == {
        "status": "active",
        "name": "vault",
        "output": "Active: active (running)",
    }

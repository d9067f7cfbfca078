"""Structured operation logging for vaultsetup.

Each CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects per-step events and a final result, then appends a single JSON
object to ``<logs_dir>/operations.jsonl``. Logging must never break a
provisioning run: when the log directory cannot be prepared, or a write
fails, the logger disables itself and every later call becomes a no-op.
"""
from __future__ import annotations

import json
import secrets
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG_NAME = "operations.jsonl"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitise(value: object) -> object:
    """Return a JSON-safe copy of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Collect step events and the final result for a single operation."""

    command: str
    args: dict[str, object] = field(default_factory=dict)
    target: dict[str, object] = field(default_factory=dict)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    op_id: str = field(default_factory=lambda: secrets.token_hex(8))
    started_at: str = field(default_factory=_now_iso)

    def step(
        self,
        name: str,
        status: str,
        message: str,
        details: Mapping[str, object] | None = None,
    ) -> None:
        """Record an intermediate step event; *details* may use any key."""
        self.steps.append(
            {
                "name": name,
                "status": status,
                "message": message,
                "at": _now_iso(),
                "details": _sanitise(dict(details or {})),
            }
        )

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        backups: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        backups: Iterable[str] = (),
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings),
            "errors": list(errors),
            "backups": list(backups),
            "rc": rc,
            "context": _sanitise(dict(context or {})),
        }


class StructuredLogger:
    """Append operation records to a JSON-lines log."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*, disabling the logger if it cannot be created."""
        self._logs_dir = logs_dir.expanduser()
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def operations_log(self) -> Path:
        """Return the path of the operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it when the block exits."""
        scope = OperationScope(
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
        )
        started = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            duration_ms = int((time.monotonic() - started) * 1000)
            self._write(scope, duration_ms)

    def _write(self, scope: OperationScope, duration_ms: int) -> None:
        if not self._enabled:
            return
        record = {
            "id": scope.op_id,
            "command": scope.command,
            "args": _sanitise(scope.args),
            "target": _sanitise(scope.target),
            "started_at": scope.started_at,
            "finished_at": _now_iso(),
            "duration_ms": duration_ms,
            "steps": scope.steps,
            "result": scope.result,
        }
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]

"""Shared subprocess plumbing for host providers."""
from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]


def default_runner(command: list[str]) -> subprocess.CompletedProcess[str]:
    """Run *command* capturing text output without raising on failure."""
    return subprocess.run(command, capture_output=True, text=True, check=False)  # noqa: S603,S607


@dataclass(slots=True)
class CommandProvider:
    """Base class for providers that shell out to a host tool."""

    runner: Runner = field(default=default_runner)

    error_class = RuntimeError

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        error_prefix: str | None = None,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        command = list(args)
        if dry_run:
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        prefix = error_prefix or " ".join(command[:2])
        try:
            result = self.runner(command)
        except FileNotFoundError as exc:
            raise self.error_class(f"{command[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise self.error_class(f"{prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["CommandProvider", "Runner", "default_runner"]

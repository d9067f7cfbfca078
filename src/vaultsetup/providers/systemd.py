"""Systemd provider for activating the Vault service unit."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..errors import ServiceActivationError
from .base import CommandProvider


class SystemdError(ServiceActivationError):
    """Raised when systemctl operations fail."""


@dataclass(slots=True)
class SystemdProvider(CommandProvider):
    """Thin wrapper around ``systemctl`` for a single host."""

    systemctl_bin: str = "systemctl"

    error_class = SystemdError

    def daemon_reload(self, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Reload unit definitions."""
        return self._systemctl("daemon-reload", dry_run=dry_run)

    def enable(self, unit: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Enable *unit* for automatic start."""
        return self._systemctl("enable", unit, dry_run=dry_run)

    def restart(self, unit: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Restart (or start) *unit*."""
        return self._systemctl("restart", unit, dry_run=dry_run)

    def status(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Return ``systemctl status`` output for *unit* without raising."""
        return self._systemctl("status", unit, "--no-pager", "--full", check=False)

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is currently active."""
        try:
            result = self._systemctl("is-active", "--quiet", unit, check=False)
        except SystemdError:
            return False
        return result.returncode == 0

    def _systemctl(
        self,
        command: str,
        *args: str,
        check: bool = True,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        return self._run_command(
            [self.systemctl_bin, command, *args],
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
            dry_run=dry_run,
        )


__all__ = ["SystemdError", "SystemdProvider"]

"""firewalld provider used to expose the Vault listener port."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from enum import Enum

from ..errors import FirewallError
from .base import CommandProvider
from .systemd import SystemdProvider


class FirewallOutcome(str, Enum):
    """Result of the advisory firewall step."""

    APPLIED = "applied"
    SKIPPED_DISABLED = "skipped-disabled"
    SKIPPED_INACTIVE = "skipped-inactive"
    FAILED = "failed"


@dataclass(slots=True)
class FirewallProvider(CommandProvider):
    """Open ports through ``firewall-cmd`` when firewalld is running."""

    firewall_cmd_bin: str = "firewall-cmd"
    service: str = "firewalld"
    systemd: SystemdProvider | None = None

    error_class = FirewallError

    def is_active(self) -> bool:
        """Return ``True`` when the firewall service unit is active."""
        systemd = self.systemd or SystemdProvider(runner=self.runner)
        return systemd.is_active(self.service)

    def add_port(
        self,
        port: int,
        protocol: str = "tcp",
        *,
        permanent: bool = True,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Add ``port/protocol`` to the default zone."""
        args = [self.firewall_cmd_bin, f"--add-port={port}/{protocol}"]
        if permanent:
            args.append("--permanent")
        return self._run_command(
            args,
            error_prefix=f"{self.firewall_cmd_bin} --add-port={port}/{protocol}",
            dry_run=dry_run,
        )

    def reload(self, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Reload firewalld so permanent rules take effect."""
        return self._run_command(
            [self.firewall_cmd_bin, "--reload"],
            error_prefix=f"{self.firewall_cmd_bin} --reload",
            dry_run=dry_run,
        )


__all__ = ["FirewallOutcome", "FirewallProvider"]

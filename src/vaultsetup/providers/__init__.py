"""Host providers wrapping package, service and firewall managers."""
from __future__ import annotations

from .base import CommandProvider, Runner, default_runner
from .firewall import FirewallOutcome, FirewallProvider
from .packages import PackageInstaller, PackageInstallResult
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "CommandProvider",
    "FirewallOutcome",
    "FirewallProvider",
    "PackageInstallResult",
    "PackageInstaller",
    "Runner",
    "SystemdError",
    "SystemdProvider",
    "default_runner",
]

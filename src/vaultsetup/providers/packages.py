"""Package installation through dnf and the HashiCorp RPM repository."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from ..errors import DependencyInstallError
from .base import CommandProvider


@dataclass(frozen=True, slots=True)
class PackageInstallResult:
    """Commands executed (or planned) while ensuring packages are present."""

    changed: bool
    already_installed: tuple[str, ...]
    commands: tuple[tuple[str, ...], ...]


@dataclass(slots=True)
class PackageInstaller(CommandProvider):
    """Install Vault and its prerequisites from the vendor repository."""

    manager: str = "dnf"
    repo_manager: str = "yum-config-manager"
    rpm_bin: str = "rpm"
    extra_args: list[str] = field(default_factory=list)

    error_class = DependencyInstallError

    def installed(self, packages: Sequence[str]) -> tuple[str, ...]:
        """Return the subset of *packages* already present in the RPM database."""
        present: list[str] = []
        for name in packages:
            result = self._run_command([self.rpm_bin, "-q", name], check=False)
            if result.returncode == 0:
                present.append(name)
        return tuple(present)

    def install(
        self,
        packages: Sequence[str],
        *,
        dry_run: bool = False,
    ) -> tuple[str, ...]:
        """Install *packages* (a no-op for packages already installed)."""
        command = [self.manager, "-y", "install", *self.extra_args, *packages]
        self._run_command(
            command,
            error_prefix=f"{self.manager} install {' '.join(packages)}",
            dry_run=dry_run,
        )
        return tuple(command)

    def add_repo(self, url: str, *, dry_run: bool = False) -> tuple[str, ...]:
        """Register the repository definition at *url*."""
        command = [self.repo_manager, "--add-repo", url]
        self._run_command(
            command,
            error_prefix=f"{self.repo_manager} --add-repo {url}",
            dry_run=dry_run,
        )
        return tuple(command)

    def ensure(
        self,
        *,
        prerequisites: Sequence[str],
        repo_url: str,
        packages: Sequence[str],
        dry_run: bool = False,
    ) -> PackageInstallResult:
        """Install prerequisites, register the repository and install *packages*.

        When every requested package is already installed nothing is run.
        """
        already = self.installed(packages)
        if set(already) == set(packages):
            return PackageInstallResult(changed=False, already_installed=already, commands=())

        commands: list[tuple[str, ...]] = []
        if prerequisites:
            commands.append(self.install(prerequisites, dry_run=dry_run))
        commands.append(self.add_repo(repo_url, dry_run=dry_run))
        commands.append(self.install(packages, dry_run=dry_run))
        return PackageInstallResult(
            changed=not dry_run,
            already_installed=already,
            commands=tuple(commands),
        )


__all__ = ["PackageInstallResult", "PackageInstaller"]

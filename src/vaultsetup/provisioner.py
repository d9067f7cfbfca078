"""Ordered, idempotent provisioning of a single Vault host.

:class:`Provisioner` runs the steps in a fixed order. Fatal failures raise a
:class:`~vaultsetup.errors.ProvisionError` subclass and stop the run
immediately, leaving whatever state was already reached (re-running
converges). Advisory failures (platform mismatch, inactive or failing
firewall, failed post-start status query) become warnings on the returned
:class:`ProvisionReport`.

Each step inspects the host, plans the changes it needs and applies them,
so a second run with the same configuration only re-asserts ownership and
modes and re-renders a byte-identical configuration file.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import cast

from .bootstrap.discovery import HostFacts
from .bootstrap.filesystem import (
    DirectorySpec,
    apply_directory_plan,
    backup_file,
    plan_directories,
    write_owned_file,
)
from .bootstrap.platform import check_platform, require_root
from .bootstrap.service_accounts import (
    ServiceAccountSpec,
    apply_service_account_plan,
    plan_service_account,
)
from .config import ProvisionConfig
from .errors import (
    ConfigWriteError,
    FirewallError,
    InsufficientPrivilegeError,
)
from .hcl import ServiceConfigDocument, build_document
from .providers.base import Runner, default_runner
from .providers.firewall import FirewallOutcome, FirewallProvider
from .providers.packages import PackageInstaller
from .providers.systemd import SystemdError, SystemdProvider
from .tls import TLSOutcome, ensure_tls_material

DIRECTORY_MODE = 0o750
CONFIG_FILE_MODE = 0o600


class StepStatus(str, Enum):
    """Outcome of a single provisioning step."""

    OK = "ok"
    CHANGED = "changed"
    PLANNED = "planned"
    SKIPPED = "skipped"
    WARNING = "warning"


class ServiceStatusOutcome(str, Enum):
    """Result of the best-effort post-start status query."""

    ACTIVE = "active"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class StepResult:
    """Record describing what a step did."""

    name: str
    status: StepStatus
    message: str
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": _jsonable(self.details),
        }


@dataclass(slots=True)
class ProvisionReport:
    """Structured outcome of a provisioning run."""

    config: ProvisionConfig
    host: HostFacts
    dry_run: bool = False
    steps: list[StepResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    tls_outcome: TLSOutcome = TLSOutcome.DISABLED
    firewall_outcome: FirewallOutcome = FirewallOutcome.SKIPPED_DISABLED
    service_status: ServiceStatusOutcome = ServiceStatusOutcome.SKIPPED
    backup_path: Path | None = None
    document: ServiceConfigDocument | None = None
    next_steps: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        """Return the number of steps that changed host state."""
        return sum(1 for step in self.steps if step.status is StepStatus.CHANGED)

    def step(self, name: str) -> StepResult | None:
        """Return the recorded result for step *name*."""
        for result in self.steps:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the report."""
        return {
            "status": "dry-run" if self.dry_run else ("warning" if self.warnings else "ok"),
            "dry_run": self.dry_run,
            "changed": self.changed,
            "host": self.host.to_dict(),
            "config_file": str(self.config.paths.vault_config),
            "backup": str(self.backup_path) if self.backup_path else None,
            "tls": self.tls_outcome.value,
            "firewall": self.firewall_outcome.value,
            "service_status": self.service_status.value,
            "steps": [step.to_dict() for step in self.steps],
            "warnings": list(self.warnings),
            "next_steps": list(self.next_steps),
        }


StepCallback = Callable[[StepResult], None]


@dataclass(slots=True)
class Provisioner:
    """Run the provisioning steps for *config* on *host*."""

    config: ProvisionConfig
    host: HostFacts
    runner: Runner = field(default=default_runner)
    skip_packages: bool = False
    geteuid: Callable[[], int] | None = None
    sleep: Callable[[float], None] = field(default=time.sleep)
    clock: Callable[[], float] = field(default=time.time)
    on_step: StepCallback | None = None
    packages: PackageInstaller | None = None
    systemd: SystemdProvider | None = None
    firewall: FirewallProvider | None = None

    def __post_init__(self) -> None:
        """Build default providers sharing the configured runner."""
        if self.packages is None:
            self.packages = PackageInstaller(
                runner=self.runner,
                manager=self.config.packages.manager,
                repo_manager=self.config.packages.repo_manager,
            )
        if self.systemd is None:
            self.systemd = SystemdProvider(
                runner=self.runner,
                systemctl_bin=self.config.service.systemctl_bin,
            )
        if self.firewall is None:
            self.firewall = FirewallProvider(
                runner=self.runner,
                firewall_cmd_bin=self.config.firewall.firewall_cmd_bin,
                service=self.config.firewall.service,
                systemd=self.systemd,
            )

    # ------------------------------------------------------------------
    def provision(self, *, dry_run: bool = False) -> ProvisionReport:
        """Execute every step in order and return the run report."""
        report = ProvisionReport(config=self.config, host=self.host, dry_run=dry_run)
        report.warnings.extend(self.config.warnings)

        self.check_environment(report)
        self.install_packages(report)
        self.ensure_service_account(report)
        self.ensure_directories(report)
        self.ensure_tls(report)
        self.render_config(report)
        self.activate_service(report)
        self.open_firewall(report)
        report.next_steps = next_steps(self.config, report)
        return report

    # Steps -----------------------------------------------------------
    def check_environment(self, report: ProvisionReport) -> None:
        """Fail fast without root; warn when the host is not RHEL 9."""
        try:
            require_root(self.geteuid)
        except InsufficientPrivilegeError as exc:
            if not report.dry_run:
                raise
            report.warnings.append(f"{exc} (ignored for dry run)")

        platform = check_platform(self.host)
        report.warnings.extend(platform.warnings)
        status = StepStatus.WARNING if platform.warnings else StepStatus.OK
        self._record(
            report,
            StepResult(
                name="platform",
                status=status,
                message=f"Host {self.host.short_hostname}: {platform.description}",
                details={"supported": platform.supported},
            ),
        )

    def install_packages(self, report: ProvisionReport) -> None:
        """Ensure the HashiCorp repository and Vault package are installed."""
        if self.skip_packages:
            self._record(
                report,
                StepResult(
                    name="packages", status=StepStatus.SKIPPED, message="Skipped by request."
                ),
            )
            return
        installer = cast(PackageInstaller, self.packages)
        packages = self.config.packages
        result = installer.ensure(
            prerequisites=packages.prerequisites,
            repo_url=packages.repo_url,
            packages=packages.names,
            dry_run=report.dry_run,
        )
        if not result.commands:
            status, message = StepStatus.OK, f"Already installed: {', '.join(packages.names)}."
        elif report.dry_run:
            status, message = StepStatus.PLANNED, f"Would install {', '.join(packages.names)}."
        else:
            status, message = StepStatus.CHANGED, f"Installed {', '.join(packages.names)}."
        self._record(
            report,
            StepResult(
                name="packages",
                status=status,
                message=message,
                details={"commands": [list(command) for command in result.commands]},
            ),
        )

    def ensure_service_account(self, report: ProvisionReport) -> None:
        """Create the system account when it does not exist yet."""
        service = self.config.service
        plan = plan_service_account(
            ServiceAccountSpec.for_service(service, self.config.paths.config_dir)
        )
        apply_service_account_plan(plan, runner=self.runner, dry_run=report.dry_run)
        report.warnings.extend(plan.warnings)
        self._record(
            report,
            StepResult(
                name="service-account",
                status=self._status_for(plan.changed, report.dry_run),
                message=(
                    "; ".join(action.description for action in plan.actions)
                    or f"Service user '{service.user}' already present."
                ),
                details={"actions": [action.command for action in plan.actions]},
            ),
        )

    def ensure_directories(self, report: ProvisionReport) -> None:
        """Create config/data (and managed TLS) directories and re-assert ownership."""
        plan = plan_directories(self.directory_specs())
        apply_directory_plan(plan, dry_run=report.dry_run)
        report.warnings.extend(plan.warnings)
        self._record(
            report,
            StepResult(
                name="directories",
                status=self._status_for(plan.changed, report.dry_run),
                message=(
                    "; ".join(action.description for action in plan.actions)
                    or "Directories already in the desired state."
                ),
                details={"paths": [str(spec.path) for spec in plan.specs]},
            ),
        )

    def ensure_tls(self, report: ProvisionReport) -> None:
        """Reuse or generate the listener certificate when TLS is enabled."""
        tls = self.config.tls
        result = ensure_tls_material(
            tls,
            owner=self.config.service.user,
            group=self.config.service.group,
            dry_run=report.dry_run,
        )
        report.tls_outcome = result.outcome
        report.warnings.extend(result.warnings)
        if result.outcome is TLSOutcome.DISABLED:
            status, message = StepStatus.SKIPPED, "TLS disabled."
        elif result.outcome is TLSOutcome.REUSED:
            status = StepStatus.WARNING if result.warnings else self._status_for(
                result.changed, report.dry_run
            )
            message = f"Using existing TLS cert/key ({tls.cert_file}, {tls.key_file})."
        else:
            status = StepStatus.PLANNED if report.dry_run else StepStatus.CHANGED
            message = (
                f"Generated self-signed certificate for CN={tls.self_signed.common_name} "
                f"valid {tls.self_signed.days} days."
            )
        self._record(
            report,
            StepResult(
                name="tls",
                status=status,
                message=message,
                details={"outcome": result.outcome.value},
            ),
        )

    def render_config(self, report: ProvisionReport) -> None:
        """Back up the current configuration file and write a fresh one."""
        target = self.config.paths.vault_config
        document = build_document(self.config, self.host)
        report.document = document
        if report.dry_run:
            self._record(
                report,
                StepResult(
                    name="config",
                    status=StepStatus.PLANNED,
                    message=f"Would write {target}.",
                    details={"backup": target.exists()},
                ),
            )
            return
        try:
            report.backup_path = backup_file(target, clock=self.clock)
            write_owned_file(
                target,
                document.to_bytes(),
                mode=CONFIG_FILE_MODE,
                owner=self.config.service.user,
                group=self.config.service.group,
            )
        except OSError as exc:
            raise ConfigWriteError(f"Failed to write {target}: {exc}") from exc
        message = f"Wrote {target}."
        if report.backup_path is not None:
            message = f"Wrote {target} (previous saved as {report.backup_path.name})."
        self._record(
            report,
            StepResult(
                name="config",
                status=StepStatus.CHANGED,
                message=message,
                details={"backup": report.backup_path},
            ),
        )

    def activate_service(self, report: ProvisionReport) -> None:
        """Reload units, enable and restart the service, then query its status."""
        systemd = cast(SystemdProvider, self.systemd)
        unit = self.config.service.unit
        systemd.daemon_reload(dry_run=report.dry_run)
        systemd.enable(unit, dry_run=report.dry_run)
        systemd.restart(unit, dry_run=report.dry_run)
        if report.dry_run:
            self._record(
                report,
                StepResult(
                    name="service",
                    status=StepStatus.PLANNED,
                    message=f"Would enable and restart {unit}.",
                ),
            )
            return

        self.sleep(self.config.status_delay)
        try:
            status = systemd.status(unit)
        except SystemdError as exc:
            report.service_status = ServiceStatusOutcome.FAILED
            warning = f"Could not query {unit} status: {exc}"
            output = ""
        else:
            output = (status.stdout or "").strip()
            if status.returncode == 0:
                report.service_status = ServiceStatusOutcome.ACTIVE
                warning = ""
            else:
                report.service_status = ServiceStatusOutcome.FAILED
                warning = (
                    f"{unit} status query exited {status.returncode}; "
                    "the service may still be initialising."
                )
        if warning:
            report.warnings.append(warning)
        self._record(
            report,
            StepResult(
                name="service",
                status=StepStatus.WARNING if warning else StepStatus.CHANGED,
                message=warning or f"Enabled and restarted {unit}.",
                details={"status": report.service_status.value, "output": output},
            ),
        )

    def open_firewall(self, report: ProvisionReport) -> None:
        """Open the listener port in firewalld when requested and active."""
        firewall = cast(FirewallProvider, self.firewall)
        port = self.config.port
        if not self.config.firewall.open:
            report.firewall_outcome = FirewallOutcome.SKIPPED_DISABLED
            self._record(
                report,
                StepResult(
                    name="firewall",
                    status=StepStatus.SKIPPED,
                    message="Firewall opening disabled.",
                ),
            )
            return

        if not firewall.is_active():
            report.firewall_outcome = FirewallOutcome.SKIPPED_INACTIVE
            warning = f"{self.config.firewall.service} not active; skipping firewall open."
            report.warnings.append(warning)
            self._record(
                report,
                StepResult(name="firewall", status=StepStatus.WARNING, message=warning),
            )
            return

        try:
            firewall.add_port(port, "tcp", permanent=True, dry_run=report.dry_run)
            firewall.reload(dry_run=report.dry_run)
        except FirewallError as exc:
            report.firewall_outcome = FirewallOutcome.FAILED
            warning = f"Failed to open {port}/tcp: {exc}"
            report.warnings.append(warning)
            self._record(
                report,
                StepResult(name="firewall", status=StepStatus.WARNING, message=warning),
            )
            return

        report.firewall_outcome = FirewallOutcome.APPLIED
        self._record(
            report,
            StepResult(
                name="firewall",
                status=StepStatus.PLANNED if report.dry_run else StepStatus.CHANGED,
                message=f"Opened {port}/tcp in {self.config.firewall.service}.",
            ),
        )

    # Helpers ---------------------------------------------------------
    def directory_specs(self) -> list[DirectorySpec]:
        """Return the directories this run manages, in creation order."""
        owner = self.config.service.user
        group = self.config.service.group
        paths = self.config.paths
        specs = [
            DirectorySpec(path=paths.config_dir, mode=DIRECTORY_MODE, owner=owner, group=group),
            DirectorySpec(path=paths.data_dir, mode=DIRECTORY_MODE, owner=owner, group=group),
        ]
        if self.config.tls.enabled:
            seen = {spec.path for spec in specs}
            for tls_dir in (self.config.tls.cert_file.parent, self.config.tls.key_file.parent):
                # Only directories under the Vault config dir are owned by the service user.
                if tls_dir in seen or not tls_dir.is_relative_to(paths.config_dir):
                    continue
                seen.add(tls_dir)
                specs.append(
                    DirectorySpec(path=tls_dir, mode=DIRECTORY_MODE, owner=owner, group=group)
                )
        return specs

    def _record(self, report: ProvisionReport, result: StepResult) -> None:
        report.steps.append(result)
        if self.on_step is not None:
            self.on_step(result)

    @staticmethod
    def _status_for(changed: bool, dry_run: bool) -> StepStatus:
        if not changed:
            return StepStatus.OK
        return StepStatus.PLANNED if dry_run else StepStatus.CHANGED


def next_steps(config: ProvisionConfig, report: ProvisionReport) -> list[str]:
    """Return operator guidance printed after a successful run."""
    scheme = config.scheme
    lines = [
        f"1) Export VAULT_ADDR: export VAULT_ADDR='{scheme}://127.0.0.1:{config.port}'",
        "2) Initialize Vault (writes unseal keys + root token): vault operator init",
        "3) Unseal with 3 keys (default): vault operator unseal (repeat)",
        "4) Login: vault login <ROOT_TOKEN>",
    ]
    if config.ui:
        lines.append(f"UI: {scheme}://{report.host.primary_ip}:{config.port}/ui")
    if config.tls.enabled and config.tls.self_signed.enabled:
        lines.append(
            "Note: Using a self-signed cert. Your browser/CLI will warn unless you trust "
            f"the cert (export VAULT_CACERT={config.tls.cert_file})."
        )
    if config.storage.effective_backend == "raft":
        lines.append(
            "RAFT storage enabled. For HA, join more nodes with 'vault operator raft join'."
        )
    return lines


def _jsonable(value: object) -> object:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


__all__ = [
    "ProvisionReport",
    "Provisioner",
    "ServiceStatusOutcome",
    "StepResult",
    "StepStatus",
    "next_steps",
]

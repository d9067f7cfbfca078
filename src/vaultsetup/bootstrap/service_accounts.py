"""The unprivileged system account Vault runs as.

The account is created once with ``groupadd``/``useradd``. An account that
already exists is left untouched even when its home, shell or primary group
differ from the configuration; those differences surface as warnings.
"""
from __future__ import annotations

import grp
import pwd
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from ..errors import AccountProvisionError
from ..providers.base import CommandProvider, Runner, default_runner

if TYPE_CHECKING:
    from ..config import ServiceConfig


@dataclass(slots=True)
class ServiceAccountSpec:
    """Desired attributes for the Vault runtime service account."""

    name: str
    group: str | None = None
    system: bool = True
    home: Path | None = None
    shell: str | None = None

    @classmethod
    def for_service(cls, service: ServiceConfig, home: Path) -> ServiceAccountSpec:
        """Build the account description for *service* with *home* as its home."""
        return cls(name=service.user, group=service.group, home=home, shell=service.shell)


@dataclass(slots=True)
class ServiceAccountStatus:
    """What the passwd and group databases currently say about the account."""

    user_exists: bool
    group_exists: bool
    uid: int | None = None
    gid: int | None = None
    home: Path | None = None
    shell: str | None = None
    primary_group: str | None = None


@dataclass(slots=True)
class ServiceAccountAction:
    """One account tool invocation."""

    kind: Literal["ensure-group", "create-user"]
    description: str
    command: list[str]


@dataclass(slots=True)
class ServiceAccountPlan:
    """Commands to run and drift to report for a single account."""

    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return ``True`` when applying the plan mutates the host."""
        return bool(self.actions)


def _group_name(gid: int) -> str | None:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None


def _group_exists(name: str) -> bool:
    try:
        grp.getgrnam(name)
    except KeyError:
        return False
    return True


def inspect_service_account(spec: ServiceAccountSpec) -> ServiceAccountStatus:
    """Look *spec*'s user and group up in the local account databases."""
    group_exists = bool(spec.group) and _group_exists(spec.group or "")
    try:
        entry = pwd.getpwnam(spec.name)
    except KeyError:
        return ServiceAccountStatus(user_exists=False, group_exists=group_exists)
    return ServiceAccountStatus(
        user_exists=True,
        group_exists=group_exists,
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        home=Path(entry.pw_dir),
        shell=entry.pw_shell,
        primary_group=_group_name(entry.pw_gid),
    )


def _groupadd(spec: ServiceAccountSpec, group: str) -> ServiceAccountAction:
    command = ["groupadd", *(["--system"] if spec.system else []), group]
    return ServiceAccountAction(
        kind="ensure-group",
        description=f"Create group '{group}'.",
        command=command,
    )


def _useradd(spec: ServiceAccountSpec) -> ServiceAccountAction:
    command = ["useradd"]
    if spec.system:
        command.append("--system")
    command.extend(["--home", str(spec.home)] if spec.home else ["--no-create-home"])
    if spec.shell:
        command.extend(["--shell", spec.shell])
    if spec.group:
        command.extend(["--gid", spec.group])
    command.append(spec.name)
    return ServiceAccountAction(
        kind="create-user",
        description=f"Create service user '{spec.name}'.",
        command=command,
    )


def _drift(spec: ServiceAccountSpec, status: ServiceAccountStatus) -> list[str]:
    name = spec.name
    warnings: list[str] = []
    if spec.group and status.primary_group and status.primary_group != spec.group:
        warnings.append(
            f"User '{name}' primary group is '{status.primary_group}', expected '{spec.group}'."
        )
    for label, current, desired in (
        ("home", status.home, spec.home),
        ("shell", status.shell, spec.shell),
    ):
        if desired and current and current != desired:
            warnings.append(f"User '{name}' {label} '{current}' differs from desired '{desired}'.")
    return warnings


def plan_service_account(spec: ServiceAccountSpec) -> ServiceAccountPlan:
    """Return the commands needed to create the account described by *spec*."""
    status = inspect_service_account(spec)
    plan = ServiceAccountPlan(spec=spec, status=status)
    if spec.group and not status.group_exists:
        plan.actions.append(_groupadd(spec, spec.group))
    if status.user_exists:
        plan.warnings.extend(_drift(spec, status))
    else:
        plan.actions.append(_useradd(spec))
    return plan


@dataclass(slots=True)
class AccountManager(CommandProvider):
    """Runs ``groupadd``/``useradd`` on behalf of a plan."""

    error_class = AccountProvisionError

    def apply(self, plan: ServiceAccountPlan, *, dry_run: bool = False) -> None:
        """Execute *plan*'s commands in order; nothing runs for a dry run."""
        for action in plan.actions:
            self._run_command(
                action.command,
                error_prefix=f"{action.command[0]} {plan.spec.name}",
                dry_run=dry_run,
            )


def apply_service_account_plan(
    plan: ServiceAccountPlan,
    *,
    runner: Runner | None = None,
    dry_run: bool = False,
) -> None:
    """Execute the commands described by *plan*."""
    AccountManager(runner=runner or default_runner).apply(plan, dry_run=dry_run)


def resolve_account_ids(user: str, group: str | None = None) -> tuple[int, int]:
    """Return the ``(uid, gid)`` pair used when assigning file ownership."""
    try:
        entry = pwd.getpwnam(user)
    except KeyError as exc:
        raise AccountProvisionError(f"Service user '{user}' does not exist.") from exc
    if group:
        try:
            gid = grp.getgrnam(group).gr_gid
        except KeyError as exc:
            raise AccountProvisionError(f"Service group '{group}' does not exist.") from exc
        return entry.pw_uid, gid
    return entry.pw_uid, entry.pw_gid


__all__ = [
    "AccountManager",
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "inspect_service_account",
    "plan_service_account",
    "resolve_account_ids",
]

"""Privilege and target platform checks run before any host mutation."""
from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field

from packaging.version import InvalidVersion, Version

from ..errors import InsufficientPrivilegeError
from .discovery import HostFacts

TARGET_DISTRIBUTION = "rhel"
TARGET_MAJOR_VERSION = 9


@dataclass(slots=True)
class PlatformReport:
    """Outcome of the advisory platform check."""

    supported: bool
    description: str
    warnings: list[str] = field(default_factory=list)


def require_root(geteuid: Callable[[], int] | None = None) -> None:
    """Raise :class:`InsufficientPrivilegeError` unless running as root."""
    euid = (geteuid or os.geteuid)()
    if euid != 0:
        raise InsufficientPrivilegeError(
            f"vaultsetup must run as root (sudo); effective uid is {euid}."
        )


def check_platform(facts: HostFacts) -> PlatformReport:
    """Return whether *facts* describe a RHEL 9 host.

    The check is advisory: callers log the warnings and continue.
    """
    release_text = facts.redhat_release or ""
    if "release 9" in release_text.lower():
        return PlatformReport(supported=True, description=release_text)

    os_id = facts.os_release.get("ID", "").lower()
    id_like = facts.os_release.get("ID_LIKE", "").lower().split()
    version_id = facts.os_release.get("VERSION_ID", "")
    description = facts.os_release.get("PRETTY_NAME") or release_text or "unknown"
    is_target = TARGET_DISTRIBUTION in {os_id, *id_like}
    if is_target and _major_version(version_id) == TARGET_MAJOR_VERSION:
        return PlatformReport(supported=True, description=description)

    return PlatformReport(
        supported=False,
        description=description,
        warnings=[
            f"This installer targets RHEL {TARGET_MAJOR_VERSION} "
            f"(detected: {description}). Continuing anyway."
        ],
    )


def _major_version(value: str) -> int | None:
    try:
        return Version(value).major
    except InvalidVersion:
        return None


__all__ = ["PlatformReport", "check_platform", "require_root"]

"""Helper utilities used by the host bootstrap steps."""
from __future__ import annotations

from .discovery import HostFacts, detect_host_facts
from .filesystem import (
    DirectoryAction,
    DirectoryPlan,
    DirectorySpec,
    apply_directory_plan,
    backup_file,
    plan_directories,
    secure_file,
    write_owned_file,
)
from .platform import PlatformReport, check_platform, require_root
from .service_accounts import (
    AccountManager,
    ServiceAccountAction,
    ServiceAccountPlan,
    ServiceAccountSpec,
    ServiceAccountStatus,
    apply_service_account_plan,
    inspect_service_account,
    plan_service_account,
    resolve_account_ids,
)

__all__ = [
    # service account helpers
    "AccountManager",
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "inspect_service_account",
    "plan_service_account",
    "apply_service_account_plan",
    "resolve_account_ids",
    # filesystem helpers
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "plan_directories",
    "apply_directory_plan",
    "backup_file",
    "secure_file",
    "write_owned_file",
    # host helpers
    "HostFacts",
    "PlatformReport",
    "check_platform",
    "detect_host_facts",
    "require_root",
]

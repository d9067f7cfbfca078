"""Error taxonomy shared by the provisioning steps.

Fatal errors derive from :class:`ProvisionError` and carry the exit code the
CLI terminates with. :class:`FirewallError` is the only advisory error: the
provisioner converts it into a warning on the run report.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class ProvisionError(RuntimeError):
    """Base class for failures that abort a provisioning run."""

    exit_code: ExitCode = ExitCode.PROVIDER


class ConfigError(ProvisionError):
    """Raised when configuration parsing or validation fails."""

    exit_code = ExitCode.VALIDATION


class InsufficientPrivilegeError(ProvisionError, PermissionError):
    """Raised when the tool is not running with administrative privilege."""

    exit_code = ExitCode.ENVIRONMENT


class DependencyInstallError(ProvisionError):
    """Raised when the package repository or Vault package cannot be installed."""


class AccountProvisionError(ProvisionError):
    """Raised when the service account or its directories cannot be prepared."""

    exit_code = ExitCode.ENVIRONMENT


class ConfigWriteError(ProvisionError):
    """Raised when the Vault configuration file cannot be backed up or written."""

    exit_code = ExitCode.ENVIRONMENT


class TLSGenerationError(ProvisionError):
    """Raised when generating self-signed TLS material fails."""


class MissingTLSMaterialError(ProvisionError):
    """Raised when TLS is enabled but no certificate/key pair is available."""

    exit_code = ExitCode.ENVIRONMENT


class ServiceActivationError(ProvisionError):
    """Raised when reloading, enabling or restarting the service fails."""


class FirewallError(RuntimeError):
    """Raised when firewall operations fail (advisory)."""


__all__ = [
    "AccountProvisionError",
    "ConfigError",
    "ConfigWriteError",
    "DependencyInstallError",
    "FirewallError",
    "InsufficientPrivilegeError",
    "MissingTLSMaterialError",
    "ProvisionError",
    "ServiceActivationError",
    "TLSGenerationError",
]

"""Configuration loader for vaultsetup.

Values are resolved from several sources, lowest precedence first:

1. Built-in defaults (:data:`DEFAULTS`).
2. ``/etc/vaultsetup/config.yml`` (or an override path).
3. The environment variables understood by the historical shell installer
   (``VAULT_PORT``, ``ENABLE_TLS``, ``STORAGE_BACKEND``...).
4. Environment variables prefixed with ``VAULTSETUP_``.
5. Explicit overrides supplied programmatically (CLI flags).

Prefixed environment keys use double underscores to express nesting::

    export VAULTSETUP_PORT=8300
    export VAULTSETUP_TLS__SELF_SIGNED__COMMON_NAME=vault.lab.example

Environment values are coerced via PyYAML's ``safe_load`` so booleans and
numbers are parsed naturally. The result is a frozen :class:`ProvisionConfig`
that is never mutated after loading; the advertised API and cluster
addresses are derived once, at load time.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Iterable, Iterator, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from .errors import ConfigError

if TYPE_CHECKING:
    from .bootstrap.discovery import HostFacts


ENV_PREFIX = "VAULTSETUP_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
DEFAULT_CONFIG_FILE = "/etc/vaultsetup/config.yml"

# Environment variables understood by the install_vault_rhel9.sh shell installer.
LEGACY_ENV_KEYS: dict[str, tuple[str, ...]] = {
    "VAULT_BIND_ADDR": ("bind_address",),
    "VAULT_PORT": ("port",),
    "ENABLE_TLS": ("tls", "enabled"),
    "TLS_CERT_FILE": ("tls", "cert_file"),
    "TLS_KEY_FILE": ("tls", "key_file"),
    "GENERATE_SELF_SIGNED": ("tls", "self_signed", "enabled"),
    "SELF_SIGNED_CN": ("tls", "self_signed", "common_name"),
    "SELF_SIGNED_DAYS": ("tls", "self_signed", "days"),
    "STORAGE_BACKEND": ("storage", "backend"),
    "ENABLE_UI": ("ui",),
    "OPEN_FIREWALL": ("firewall", "open"),
    "API_ADDR": ("api_addr",),
    "CLUSTER_ADDR": ("cluster_addr",),
}

KNOWN_STORAGE_BACKENDS = ("file", "raft")
MIN_RSA_KEY_SIZE = 4096
HASHICORP_RHEL_REPO = "https://rpm.releases.hashicorp.com/RHEL/hashicorp.repo"


@dataclass(frozen=True)
class SelfSignedConfig:
    """Parameters for generating a self-signed certificate."""

    enabled: bool = True
    common_name: str = "vault.local"
    days: int = 825
    key_size: int = MIN_RSA_KEY_SIZE

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "enabled": self.enabled,
            "common_name": self.common_name,
            "days": self.days,
            "key_size": self.key_size,
        }


@dataclass(frozen=True)
class TLSConfig:
    """Listener TLS posture and certificate locations."""

    enabled: bool = False
    cert_file: Path = Path("/etc/vault.d/tls/vault.crt")
    key_file: Path = Path("/etc/vault.d/tls/vault.key")
    self_signed: SelfSignedConfig = SelfSignedConfig()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "enabled": self.enabled,
            "cert_file": str(self.cert_file),
            "key_file": str(self.key_file),
            "self_signed": self.self_signed.to_dict(),
        }


@dataclass(frozen=True)
class StorageConfig:
    """Storage backend selection."""

    backend: str = "file"
    strict: bool = False

    @property
    def effective_backend(self) -> str:
        """Return the backend that will be rendered (unknown values fall back to file)."""
        return self.backend if self.backend in KNOWN_STORAGE_BACKENDS else "file"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"backend": self.backend, "strict": self.strict}


@dataclass(frozen=True)
class FirewallConfig:
    """firewalld integration settings."""

    open: bool = True
    service: str = "firewalld"
    firewall_cmd_bin: str = "firewall-cmd"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "open": self.open,
            "service": self.service,
            "firewall_cmd_bin": self.firewall_cmd_bin,
        }


@dataclass(frozen=True)
class ServiceConfig:
    """Runtime account and systemd unit for the Vault service."""

    user: str = "vault"
    group: str = "vault"
    unit: str = "vault"
    shell: str = "/sbin/nologin"
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "user": self.user,
            "group": self.group,
            "unit": self.unit,
            "shell": self.shell,
            "systemctl_bin": self.systemctl_bin,
        }


@dataclass(frozen=True)
class PathsConfig:
    """Filesystem locations managed on the host."""

    config_dir: Path = Path("/etc/vault.d")
    data_dir: Path = Path("/var/lib/vault")
    vault_config: Path = Path("/etc/vault.d/vault.hcl")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "config_dir": str(self.config_dir),
            "data_dir": str(self.data_dir),
            "vault_config": str(self.vault_config),
        }


@dataclass(frozen=True)
class PackagesConfig:
    """Package manager commands and package names."""

    manager: str = "dnf"
    repo_manager: str = "yum-config-manager"
    repo_url: str = HASHICORP_RHEL_REPO
    prerequisites: tuple[str, ...] = ("yum-utils", "curl", "jq")
    names: tuple[str, ...] = ("vault",)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "manager": self.manager,
            "repo_manager": self.repo_manager,
            "repo_url": self.repo_url,
            "prerequisites": list(self.prerequisites),
            "names": list(self.names),
        }


@dataclass(frozen=True)
class ProvisionConfig:
    """Immutable snapshot of every tunable used by a provisioning run."""

    config_file: Path
    logs_dir: Path
    bind_address: str
    port: int
    cluster_port: int
    ui: bool
    api_addr: str
    cluster_addr: str
    status_delay: float
    tls: TLSConfig
    storage: StorageConfig
    firewall: FirewallConfig
    service: ServiceConfig
    paths: PathsConfig
    packages: PackagesConfig
    warnings: tuple[str, ...] = ()

    @property
    def scheme(self) -> str:
        """Return ``https`` when TLS is enabled, ``http`` otherwise."""
        return "https" if self.tls.enabled else "http"

    @property
    def listen_address(self) -> str:
        """Return the ``host:port`` pair the listener binds to."""
        return f"{self.bind_address}:{self.port}"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "bind_address": self.bind_address,
            "port": self.port,
            "cluster_port": self.cluster_port,
            "ui": self.ui,
            "api_addr": self.api_addr,
            "cluster_addr": self.cluster_addr,
            "status_delay": self.status_delay,
            "tls": self.tls.to_dict(),
            "storage": self.storage.to_dict(),
            "firewall": self.firewall.to_dict(),
            "service": self.service.to_dict(),
            "paths": self.paths.to_dict(),
            "packages": self.packages.to_dict(),
            "warnings": list(self.warnings),
        }


DEFAULTS: dict[str, object] = {
    "config_file": DEFAULT_CONFIG_FILE,
    "logs_dir": "/var/log/vaultsetup",
    "bind_address": "0.0.0.0",  # noqa: S104 - Vault listens on all interfaces by default
    "port": 8200,
    "cluster_port": 8201,
    "ui": True,
    "api_addr": None,  # derived from the primary IP when absent
    "cluster_addr": None,  # derived from the primary IP when absent
    "status_delay": 1.0,
    "tls": {
        "enabled": False,
        "cert_file": "/etc/vault.d/tls/vault.crt",
        "key_file": "/etc/vault.d/tls/vault.key",
        "self_signed": {
            "enabled": True,
            "common_name": "vault.local",
            "days": 825,
            "key_size": MIN_RSA_KEY_SIZE,
        },
    },
    "storage": {
        "backend": "file",
        "strict": False,
    },
    "firewall": {
        "open": True,
        "service": "firewalld",
        "firewall_cmd_bin": "firewall-cmd",
    },
    "service": {
        "user": "vault",
        "group": None,  # defaults to the service user
        "unit": "vault",
        "shell": "/sbin/nologin",
        "systemctl_bin": "systemctl",
    },
    "paths": {
        "config_dir": "/etc/vault.d",
        "data_dir": "/var/lib/vault",
        "vault_config": None,  # derived from config_dir when absent
    },
    "packages": {
        "manager": "dnf",
        "repo_manager": "yum-config-manager",
        "repo_url": HASHICORP_RHEL_REPO,
        "prerequisites": ["yum-utils", "curl", "jq"],
        "names": ["vault"],
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "tls": {"enabled", "cert_file", "key_file", "self_signed"},
    "tls.self_signed": {"enabled", "common_name", "days", "key_size"},
    "storage": {"backend", "strict"},
    "firewall": {"open", "service", "firewall_cmd_bin"},
    "service": {"user", "group", "unit", "shell", "systemctl_bin"},
    "paths": {"config_dir", "data_dir", "vault_config"},
    "packages": {"manager", "repo_manager", "repo_url", "prerequisites", "names"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    host: HostFacts | None = None,
) -> ProvisionConfig:
    """Load and merge configuration sources into a :class:`ProvisionConfig`.

    *host* supplies the primary IP used for the derived API and cluster
    addresses; it is detected lazily only when an address must be derived.
    """
    merged = copy.deepcopy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)
    config_path = _determine_config_path(config_file, resolved_env)

    layers = (
        _load_yaml_file(config_path),
        _env_layer(resolved_env, LEGACY_ENV_KEYS.items()),
        _env_layer(resolved_env, _prefixed_env_keys(resolved_env)),
        _as_dict(overrides, "overrides"),
    )
    for layer in layers:
        _deep_merge(merged, layer)
    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_provision_config(merged, host)


def _determine_config_path(
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    return Path(env.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        mapping: Mapping[str, object] = raw
        for segment in section.split("."):
            mapping = _as_dict(mapping.get(segment), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_provision_config(
    raw: Mapping[str, object],
    host: HostFacts | None,
) -> ProvisionConfig:
    warnings: list[str] = []

    port = _expect_port(raw.get("port"), "port", default=8200)
    cluster_port = _expect_port(raw.get("cluster_port"), "cluster_port", default=8201)
    bind_address = _expect_text(
        raw.get("bind_address"), "bind_address", default="0.0.0.0"  # noqa: S104
    )
    status_delay = _expect_non_negative_float(raw.get("status_delay"), "status_delay", default=1.0)

    tls_mapping = _as_dict(raw.get("tls"), "tls")
    self_signed_mapping = _as_dict(tls_mapping.get("self_signed"), "tls.self_signed")
    days = _expect_int(self_signed_mapping.get("days"), "tls.self_signed.days", default=825)
    if days <= 0:
        raise ConfigError(f"tls.self_signed.days must be greater than zero. Got {days}.")
    key_size = _expect_int(
        self_signed_mapping.get("key_size"),
        "tls.self_signed.key_size",
        default=MIN_RSA_KEY_SIZE,
    )
    if key_size < MIN_RSA_KEY_SIZE:
        raise ConfigError(
            f"tls.self_signed.key_size must be at least {MIN_RSA_KEY_SIZE} bits. Got {key_size}."
        )
    tls = TLSConfig(
        enabled=_expect_bool(tls_mapping.get("enabled"), "tls.enabled", default=False),
        cert_file=_to_path(tls_mapping.get("cert_file", "/etc/vault.d/tls/vault.crt")),
        key_file=_to_path(tls_mapping.get("key_file", "/etc/vault.d/tls/vault.key")),
        self_signed=SelfSignedConfig(
            enabled=_expect_bool(
                self_signed_mapping.get("enabled"), "tls.self_signed.enabled", default=True
            ),
            common_name=_expect_text(
                self_signed_mapping.get("common_name"),
                "tls.self_signed.common_name",
                default="vault.local",
            ),
            days=days,
            key_size=key_size,
        ),
    )

    storage_mapping = _as_dict(raw.get("storage"), "storage")
    backend = _expect_text(storage_mapping.get("backend"), "storage.backend", default="file")
    strict = _expect_bool(storage_mapping.get("strict"), "storage.strict", default=False)
    if backend not in KNOWN_STORAGE_BACKENDS:
        allowed = ", ".join(KNOWN_STORAGE_BACKENDS)
        if strict:
            raise ConfigError(f"Unsupported storage backend '{backend}'. Allowed: {allowed}.")
        warnings.append(
            f"Unrecognised storage backend '{backend}' (allowed: {allowed}); "
            "falling back to the file backend."
        )
    storage = StorageConfig(backend=backend, strict=strict)

    firewall_mapping = _as_dict(raw.get("firewall"), "firewall")
    firewall = FirewallConfig(
        open=_expect_bool(firewall_mapping.get("open"), "firewall.open", default=True),
        service=_expect_text(
            firewall_mapping.get("service"), "firewall.service", default="firewalld"
        ),
        firewall_cmd_bin=_expect_text(
            firewall_mapping.get("firewall_cmd_bin"),
            "firewall.firewall_cmd_bin",
            default="firewall-cmd",
        ),
    )

    service_mapping = _as_dict(raw.get("service"), "service")
    service_user = _expect_text(service_mapping.get("user"), "service.user", default="vault")
    service = ServiceConfig(
        user=service_user,
        group=_expect_text(service_mapping.get("group"), "service.group", default=service_user),
        unit=_expect_text(service_mapping.get("unit"), "service.unit", default="vault"),
        shell=_expect_text(service_mapping.get("shell"), "service.shell", default="/sbin/nologin"),
        systemctl_bin=_expect_text(
            service_mapping.get("systemctl_bin"), "service.systemctl_bin", default="systemctl"
        ),
    )

    paths_mapping = _as_dict(raw.get("paths"), "paths")
    config_dir = _to_path(paths_mapping.get("config_dir", "/etc/vault.d"))
    vault_config_value = paths_mapping.get("vault_config")
    paths = PathsConfig(
        config_dir=config_dir,
        data_dir=_to_path(paths_mapping.get("data_dir", "/var/lib/vault")),
        vault_config=(
            _to_path(vault_config_value) if vault_config_value else config_dir / "vault.hcl"
        ),
    )

    packages_mapping = _as_dict(raw.get("packages"), "packages")
    packages = PackagesConfig(
        manager=_expect_text(packages_mapping.get("manager"), "packages.manager", default="dnf"),
        repo_manager=_expect_text(
            packages_mapping.get("repo_manager"),
            "packages.repo_manager",
            default="yum-config-manager",
        ),
        repo_url=_expect_text(
            packages_mapping.get("repo_url"), "packages.repo_url", default=HASHICORP_RHEL_REPO
        ),
        prerequisites=_expect_str_tuple(
            packages_mapping.get("prerequisites"), "packages.prerequisites"
        ),
        names=_expect_str_tuple(packages_mapping.get("names"), "packages.names"),
    )
    if not packages.names:
        raise ConfigError("packages.names must list at least one package.")

    scheme = "https" if tls.enabled else "http"
    api_addr_value = raw.get("api_addr")
    cluster_addr_value = raw.get("cluster_addr")
    primary_ip: str | None = None
    if not api_addr_value or not cluster_addr_value:
        if host is None:
            from .bootstrap.discovery import detect_host_facts

            host = detect_host_facts()
        primary_ip = host.primary_ip
    api_addr = (
        _expect_text(api_addr_value, "api_addr", default="")
        if api_addr_value
        else f"{scheme}://{primary_ip}:{port}"
    )
    cluster_addr = (
        _expect_text(cluster_addr_value, "cluster_addr", default="")
        if cluster_addr_value
        else f"{scheme}://{primary_ip}:{cluster_port}"
    )

    return ProvisionConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir", "/var/log/vaultsetup")),
        bind_address=bind_address,
        port=port,
        cluster_port=cluster_port,
        ui=_expect_bool(raw.get("ui"), "ui", default=True),
        api_addr=api_addr,
        cluster_addr=cluster_addr,
        status_delay=status_delay,
        tls=tls,
        storage=storage,
        firewall=firewall,
        service=service,
        paths=paths,
        packages=packages,
        warnings=tuple(warnings),
    )


def _prefixed_env_keys(env: Mapping[str, str]) -> Iterator[tuple[str, tuple[str, ...]]]:
    """Yield ``VAULTSETUP_A__B`` style keys with their ``("a", "b")`` paths."""
    for key in env:
        if key == CONFIG_ENV_VAR or not key.startswith(ENV_PREFIX):
            continue
        path = tuple(part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part)
        if path:
            yield key, path


def _env_layer(
    env: Mapping[str, str],
    keys: Iterable[tuple[str, tuple[str, ...]]],
) -> dict[str, object]:
    layer: dict[str, object] = {}
    for key, path in keys:
        raw = env.get(key, "").strip()
        if raw:
            _assign_nested(layer, path, _parse_env_value(raw))
    return layer


def _assign_nested(tree: dict[str, object], path: tuple[str, ...], value: object) -> None:
    node = tree
    for depth, segment in enumerate(path[:-1], start=1):
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            dotted = ".".join(path[:depth])
            raise ConfigError(f"Environment overrides set both {dotted} and keys beneath it.")
        node = child
    node[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(current, _as_dict(value, f"merge.{key}"))
        else:
            target[key] = copy.deepcopy(value)


def _parse_env_value(raw: str) -> object:
    # "8300" -> 8300, "false" -> False; anything YAML rejects stays text.
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_port(value: object | None, label: str, *, default: int) -> int:
    port = _expect_int(value, label, default=default)
    if not 1 <= port <= 65535:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {port}.")
    return port


def _expect_text(value: object | None, label: str, *, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, bool) or isinstance(value, (Mapping, list)):
        raise ConfigError(f"Expected {label} to be a string. Got {value!r}.")
    text = str(value).strip()
    if not text:
        raise ConfigError(f"{label} must be a non-empty string.")
    return text


def _expect_str_tuple(value: object | None, label: str) -> tuple[str, ...]:
    if value is None:
        return ()
    sequence = _as_sequence(value, label)
    return tuple(
        _expect_text(item, f"{label}[{index}]", default="")
        for index, item in enumerate(sequence)
    )


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ConfigError",
    "FirewallConfig",
    "KNOWN_STORAGE_BACKENDS",
    "MIN_RSA_KEY_SIZE",
    "PackagesConfig",
    "PathsConfig",
    "ProvisionConfig",
    "SelfSignedConfig",
    "ServiceConfig",
    "StorageConfig",
    "TLSConfig",
    "load_config",
]

"""Typed model and serializer for the Vault server configuration file.

The document is a small tree (storage block, listener block, UI flag,
advertised addresses) built purely from :class:`ProvisionConfig` and the
host's short name. Rendering is deterministic: identical inputs always yield
byte-identical text.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .bootstrap.discovery import HostFacts
from .config import ProvisionConfig

HEADER = "# Managed by vaultsetup"

Attribute = tuple[str, "str | int | bool | Path"]


@dataclass(frozen=True)
class FileStorage:
    """Single-node flat-file storage backend."""

    path: Path

    kind = "file"

    def attributes(self) -> list[Attribute]:
        """Return the block attributes in render order."""
        return [("path", self.path)]


@dataclass(frozen=True)
class RaftStorage:
    """Integrated (raft) consensus storage backend."""

    path: Path
    node_id: str

    kind = "raft"

    def attributes(self) -> list[Attribute]:
        """Return the block attributes in render order."""
        return [("path", self.path), ("node_id", self.node_id)]


StorageBlock = FileStorage | RaftStorage


@dataclass(frozen=True)
class TCPListener:
    """``listener "tcp"`` block; TLS is on when both file paths are set."""

    address: str
    tls_cert_file: Path | None = None
    tls_key_file: Path | None = None

    kind = "tcp"

    @property
    def tls_enabled(self) -> bool:
        """Return ``True`` when the listener serves TLS."""
        return self.tls_cert_file is not None and self.tls_key_file is not None

    def attributes(self) -> list[Attribute]:
        """Return the block attributes in render order."""
        if self.tls_cert_file is None or self.tls_key_file is None:
            return [("address", self.address), ("tls_disable", 1)]
        return [
            ("address", self.address),
            ("tls_disable", 0),
            ("tls_cert_file", self.tls_cert_file),
            ("tls_key_file", self.tls_key_file),
        ]


@dataclass(frozen=True)
class ServiceConfigDocument:
    """Complete Vault server configuration."""

    storage: StorageBlock
    listener: TCPListener
    ui: bool
    api_addr: str
    cluster_addr: str

    def render(self) -> str:
        """Serialise the document to HCL text."""
        sections = [
            _render_block("storage", self.storage.kind, self.storage.attributes()),
            _render_block("listener", self.listener.kind, self.listener.attributes()),
            _render_attributes([("ui", self.ui)], indent=""),
            _render_attributes(
                [("api_addr", self.api_addr), ("cluster_addr", self.cluster_addr)],
                indent="",
            ),
        ]
        return HEADER + "\n" + "\n\n".join(sections) + "\n"

    def to_bytes(self) -> bytes:
        """Return the rendered document encoded as UTF-8."""
        return self.render().encode("utf-8")


def storage_block(config: ProvisionConfig, host: HostFacts) -> StorageBlock:
    """Select the storage block; unrecognised backends fall back to file storage."""
    if config.storage.effective_backend == "raft":
        return RaftStorage(path=config.paths.data_dir, node_id=host.short_hostname)
    return FileStorage(path=config.paths.data_dir)


def listener_block(config: ProvisionConfig) -> TCPListener:
    """Build the TCP listener for the configured bind address and TLS posture."""
    if config.tls.enabled:
        return TCPListener(
            address=config.listen_address,
            tls_cert_file=config.tls.cert_file,
            tls_key_file=config.tls.key_file,
        )
    return TCPListener(address=config.listen_address)


def build_document(config: ProvisionConfig, host: HostFacts) -> ServiceConfigDocument:
    """Return the configuration document for *config* on *host*."""
    return ServiceConfigDocument(
        storage=storage_block(config, host),
        listener=listener_block(config),
        ui=config.ui,
        api_addr=config.api_addr,
        cluster_addr=config.cluster_addr,
    )


def format_value(value: str | int | bool | Path) -> str:
    """Return the HCL literal for *value*."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _render_block(block_type: str, label: str, attributes: Sequence[Attribute]) -> str:
    body = _render_attributes(attributes, indent="  ")
    return f'{block_type} "{label}" {{\n{body}\n}}'


def _render_attributes(attributes: Sequence[Attribute], *, indent: str) -> str:
    width = max(len(key) for key, _ in attributes)
    return "\n".join(
        f"{indent}{key.ljust(width)} = {format_value(value)}" for key, value in attributes
    )


__all__ = [
    "FileStorage",
    "RaftStorage",
    "ServiceConfigDocument",
    "StorageBlock",
    "TCPListener",
    "build_document",
    "format_value",
    "listener_block",
    "storage_block",
]

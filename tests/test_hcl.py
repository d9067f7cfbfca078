"""Tests for the Vault configuration document model and serializer."""
from __future__ import annotations

from pathlib import Path

from vaultsetup.bootstrap.discovery import HostFacts
from vaultsetup.config import ProvisionConfig, load_config
from vaultsetup.hcl import (
    FileStorage,
    RaftStorage,
    TCPListener,
    build_document,
    format_value,
)


def _config(tmp_path: Path, host: HostFacts, **overrides: object) -> ProvisionConfig:
    return load_config(
        config_file=tmp_path / "absent.yml",
        env={},
        overrides=overrides,
        host=host,
    )


def test_plain_file_backend_document(tmp_path: Path, host_facts: HostFacts) -> None:
    """TLS off, file storage, default port renders the canonical document."""
    document = build_document(_config(tmp_path, host_facts), host_facts)

    assert document.render() == (
        "# Managed by vaultsetup\n"
        'storage "file" {\n'
        '  path = "/var/lib/vault"\n'
        "}\n"
        "\n"
        'listener "tcp" {\n'
        '  address     = "0.0.0.0:8200"\n'
        "  tls_disable = 1\n"
        "}\n"
        "\n"
        "ui = true\n"
        "\n"
        'api_addr     = "http://10.0.0.5:8200"\n'
        'cluster_addr = "http://10.0.0.5:8201"\n'
    )


def test_tls_raft_document(tmp_path: Path, host_facts: HostFacts) -> None:
    """TLS on with raft storage uses the host name as node id and https addresses."""
    config = _config(
        tmp_path,
        host_facts,
        tls={"enabled": True},
        storage={"backend": "raft"},
        ui=False,
    )

    text = build_document(config, host_facts).render()

    assert 'storage "raft" {\n  path    = "/var/lib/vault"\n  node_id = "node1"\n}\n' in text
    assert "  tls_disable   = 0\n" in text
    assert '  tls_cert_file = "/etc/vault.d/tls/vault.crt"\n' in text
    assert '  tls_key_file  = "/etc/vault.d/tls/vault.key"\n' in text
    assert "ui = false\n" in text
    assert 'api_addr     = "https://10.0.0.5:8200"' in text


def test_disabled_tls_has_no_certificate_paths(tmp_path: Path, host_facts: HostFacts) -> None:
    """Without TLS the listener never references certificate files."""
    listener = build_document(_config(tmp_path, host_facts), host_facts).listener

    assert listener.tls_enabled is False
    assert dict(listener.attributes()) == {"address": "0.0.0.0:8200", "tls_disable": 1}


def test_unknown_backend_renders_file_storage(tmp_path: Path, host_facts: HostFacts) -> None:
    """Unrecognised backends fall back to path-only file storage."""
    config = _config(tmp_path, host_facts, storage={"backend": "consul"})

    storage = build_document(config, host_facts).storage

    assert isinstance(storage, FileStorage)
    assert storage.attributes() == [("path", Path("/var/lib/vault"))]


def test_rendering_is_deterministic(tmp_path: Path, host_facts: HostFacts) -> None:
    """The same inputs always produce byte-identical output."""
    config = _config(tmp_path, host_facts, storage={"backend": "raft"})

    first = build_document(config, host_facts).to_bytes()
    second = build_document(config, host_facts).to_bytes()

    assert first == second
    assert first.endswith(b"\n")


def test_listener_and_storage_blocks_directly() -> None:
    """Blocks can be built without a configuration."""
    listener = TCPListener(
        address="127.0.0.1:8200",
        tls_cert_file=Path("/etc/vault.d/tls/vault.crt"),
        tls_key_file=Path("/etc/vault.d/tls/vault.key"),
    )
    raft = RaftStorage(path=Path("/srv/vault"), node_id="vault-b")

    assert listener.tls_enabled is True
    assert raft.kind == "raft"
    assert raft.attributes()[1] == ("node_id", "vault-b")


def test_format_value() -> None:
    """Scalars map onto HCL literals with string escaping."""
    assert format_value(True) == "true"
    assert format_value(False) == "false"
    assert format_value(8200) == "8200"
    assert format_value(Path("/var/lib/vault")) == '"/var/lib/vault"'
    assert format_value('say "hi"\\') == '"say \\"hi\\"\\\\"'

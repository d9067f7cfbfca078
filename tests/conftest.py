"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import grp
import os
import pwd
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from vaultsetup.bootstrap.discovery import HostFacts
from vaultsetup.config import ProvisionConfig, load_config


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@dataclass
class FakeRunner:
    """Record commands and answer them from canned results.

    ``results`` maps a command prefix to ``(returncode, stdout, stderr)``;
    the longest matching prefix wins and unmatched commands succeed.
    """

    results: dict[tuple[str, ...], tuple[int, str, str]] = field(default_factory=dict)
    calls: list[list[str]] = field(default_factory=list)

    def __call__(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        self.calls.append(list(command))
        best: tuple[str, ...] | None = None
        for prefix in self.results:
            if tuple(command[: len(prefix)]) != prefix:
                continue
            if best is None or len(prefix) > len(best):
                best = prefix
        returncode, stdout, stderr = self.results[best] if best is not None else (0, "", "")
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)

    def set(
        self,
        prefix: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Register the result returned for commands starting with *prefix*."""
        self.results[tuple(prefix)] = (returncode, stdout, stderr)

    def commands_starting(self, *prefix: str) -> list[list[str]]:
        """Return the recorded commands that start with *prefix*."""
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Provide a runner where every command succeeds unless configured otherwise."""
    runner = FakeRunner()
    runner.set(["hostname", "-I"], 0, "10.0.0.5 172.17.0.1\n")
    runner.set(
        ["systemctl", "status"],
        0,
        "vault.service - HashiCorp Vault\n   Active: active (running)\n",
    )
    return runner


@pytest.fixture
def host_facts() -> HostFacts:
    """Return facts for a RHEL 9 host named ``node1``."""
    return HostFacts(
        short_hostname="node1",
        primary_ip="10.0.0.5",
        os_release={
            "ID": "rhel",
            "ID_LIKE": "fedora",
            "VERSION_ID": "9.4",
            "PRETTY_NAME": "Red Hat Enterprise Linux 9.4 (Plow)",
        },
        redhat_release="Red Hat Enterprise Linux release 9.4 (Plow)",
    )


@pytest.fixture
def current_account() -> tuple[str, str]:
    """Return the current user and primary group so chown works unprivileged."""
    try:
        user = pwd.getpwuid(os.getuid()).pw_name
        group = grp.getgrgid(os.getgid()).gr_name
    except KeyError:
        pytest.skip("current uid/gid has no passwd/group entry")
    return user, group


def _merge(target: dict[str, object], extra: Mapping[str, object]) -> None:
    for key, value in extra.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            _merge(existing, value)
        else:
            target[key] = value


@pytest.fixture
def make_config(
    tmp_path: Path,
    host_facts: HostFacts,
    current_account: tuple[str, str],
) -> Callable[..., ProvisionConfig]:
    """Return a factory building configs rooted under ``tmp_path``."""
    user, group = current_account
    root = tmp_path / "root"

    def factory(**overrides: object) -> ProvisionConfig:
        values: dict[str, object] = {
            "logs_dir": str(root / "var/log/vaultsetup"),
            "status_delay": 0,
            "tls": {
                "cert_file": str(root / "etc/vault.d/tls/vault.crt"),
                "key_file": str(root / "etc/vault.d/tls/vault.key"),
            },
            "service": {"user": user, "group": group},
            "paths": {
                "config_dir": str(root / "etc/vault.d"),
                "data_dir": str(root / "var/lib/vault"),
            },
        }
        _merge(values, overrides)
        return load_config(
            config_file=tmp_path / "absent.yml",
            env={},
            overrides=values,
            host=host_facts,
        )

    return factory

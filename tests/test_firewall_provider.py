"""Tests for the firewalld provider."""
from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from vaultsetup.errors import FirewallError, ProvisionError
from vaultsetup.providers.firewall import FirewallProvider
from vaultsetup.providers.systemd import SystemdProvider

if TYPE_CHECKING:
    from conftest import FakeRunner


def test_add_port_permanent_then_reload(fake_runner: FakeRunner) -> None:
    """Ports are added permanently and the firewall reloaded."""
    provider = FirewallProvider(runner=fake_runner)

    provider.add_port(8200)
    provider.reload()

    assert fake_runner.calls == [
        ["firewall-cmd", "--add-port=8200/tcp", "--permanent"],
        ["firewall-cmd", "--reload"],
    ]


def test_is_active_checks_firewalld_unit(fake_runner: FakeRunner) -> None:
    """Activity is checked through systemctl is-active."""
    provider = FirewallProvider(runner=fake_runner, systemd=SystemdProvider(runner=fake_runner))
    fake_runner.set(["systemctl", "is-active"], 3)

    assert provider.is_active() is False
    assert fake_runner.calls == [["systemctl", "is-active", "--quiet", "firewalld"]]


def test_add_port_failure_is_advisory_error(fake_runner: FakeRunner) -> None:
    """Firewall failures raise FirewallError, which is not a fatal ProvisionError."""
    fake_runner.set(["firewall-cmd"], 252, "", "FirewallD is not running")
    provider = FirewallProvider(runner=fake_runner)

    with pytest.raises(FirewallError, match=r"exit 252\): FirewallD is not running"):
        provider.add_port(8200)
    assert not issubclass(FirewallError, ProvisionError)

"""Host fact discovery used to derive addresses and node identifiers."""
from __future__ import annotations

import socket
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from ..providers.base import Runner, default_runner

OS_RELEASE_PATH = Path("/etc/os-release")
REDHAT_RELEASE_PATH = Path("/etc/redhat-release")
FALLBACK_IP = "127.0.0.1"


@dataclass(frozen=True, slots=True)
class HostFacts:
    """Observed identity of the host being provisioned."""

    short_hostname: str
    primary_ip: str
    os_release: dict[str, str] = field(default_factory=dict)
    redhat_release: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "short_hostname": self.short_hostname,
            "primary_ip": self.primary_ip,
            "os_release": dict(self.os_release),
            "redhat_release": self.redhat_release,
        }


def detect_host_facts(
    *,
    runner: Runner | None = None,
    os_release_path: Path = OS_RELEASE_PATH,
    redhat_release_path: Path = REDHAT_RELEASE_PATH,
) -> HostFacts:
    """Collect hostname, primary IP and OS release details for this host."""
    if runner is None:
        runner = default_runner
    redhat_release: str | None = None
    try:
        redhat_release = redhat_release_path.read_text(encoding="utf-8").strip() or None
    except OSError:
        redhat_release = None
    return HostFacts(
        short_hostname=short_hostname(),
        primary_ip=primary_ip(runner=runner),
        os_release=parse_os_release(os_release_path),
        redhat_release=redhat_release,
    )


def short_hostname(hostname: str | None = None) -> str:
    """Return the host name truncated at the first dot (``hostname -s``)."""
    name = hostname if hostname is not None else socket.gethostname()
    short = name.split(".", 1)[0].strip()
    return short or "localhost"


def primary_ip(*, runner: Runner | None = None) -> str:
    """Return the first address reported by ``hostname -I``.

    Falls back to the source address the kernel would pick for an outbound
    UDP datagram, then to the loopback address.
    """
    if runner is None:
        runner = default_runner
    try:
        result = runner(["hostname", "-I"])
    except (FileNotFoundError, subprocess.SubprocessError):
        result = None
    if result is not None and result.returncode == 0:
        addresses = (result.stdout or "").split()
        if addresses:
            return addresses[0]
    return _route_source_address() or FALLBACK_IP


def parse_os_release(path: Path = OS_RELEASE_PATH) -> dict[str, str]:
    """Parse an ``os-release`` file into a dictionary (empty when missing)."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        value = raw.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        values[key.strip()] = value
    return values


def _route_source_address() -> str | None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() only selects a route.
        sock.connect(("192.0.2.1", 9))
        address = sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()
    if not address or address.startswith("0."):
        return None
    return str(address)


__all__ = [
    "HostFacts",
    "detect_host_facts",
    "parse_os_release",
    "primary_ip",
    "short_hostname",
]

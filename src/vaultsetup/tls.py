"""TLS material provisioning for the Vault listener.

Existing certificate/key pairs are always reused; a self-signed pair is only
generated when at least one of the files is missing and generation is
enabled. Generated keys are written ``0600`` and certificates ``0644``, both
owned by the service account.
"""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Protocol, cast

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .bootstrap.filesystem import secure_file, write_owned_file
from .config import MIN_RSA_KEY_SIZE, TLSConfig
from .errors import AccountProvisionError, MissingTLSMaterialError, TLSGenerationError

KEY_MODE = 0o600
CERT_MODE = 0o644


class TLSOutcome(str, Enum):
    """How TLS material was obtained during a run."""

    DISABLED = "disabled"
    REUSED = "reused"
    GENERATED = "generated"


@dataclass(frozen=True)
class TLSMaterial:
    """Certificate and private key file pair."""

    certificate: Path
    key: Path

    @property
    def complete(self) -> bool:
        """Return ``True`` when both files exist."""
        return self.certificate.is_file() and self.key.is_file()


@dataclass(slots=True)
class TLSResult:
    """Outcome of :func:`ensure_tls_material`."""

    outcome: TLSOutcome
    material: TLSMaterial | None = None
    changed: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CertificateInfo:
    """Subset of certificate fields surfaced to operators and tests."""

    common_name: str | None
    not_valid_before: datetime
    not_valid_after: datetime
    key_size: int | None

    @property
    def validity_days(self) -> int:
        """Return the validity period in whole days."""
        return (self.not_valid_after - self.not_valid_before).days


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


def ensure_tls_material(
    tls: TLSConfig,
    *,
    owner: str | None,
    group: str | None = None,
    dry_run: bool = False,
    now: datetime | None = None,
) -> TLSResult:
    """Reuse, generate or reject TLS material according to *tls*.

    Raises :class:`MissingTLSMaterialError` when files are missing and
    self-signed generation is disabled, and :class:`TLSGenerationError`
    when generation or writing fails.
    """
    if not tls.enabled:
        return TLSResult(outcome=TLSOutcome.DISABLED)

    material = TLSMaterial(certificate=tls.cert_file, key=tls.key_file)
    if material.complete:
        return _reuse(material, owner=owner, group=group, dry_run=dry_run)

    if not tls.self_signed.enabled:
        raise MissingTLSMaterialError(
            "TLS is enabled but the certificate/key were not found at "
            f"{tls.cert_file} / {tls.key_file} and self-signed generation is disabled."
        )

    if dry_run:
        return TLSResult(outcome=TLSOutcome.GENERATED, material=material)

    try:
        key_pem, cert_pem = generate_self_signed(
            tls.self_signed.common_name,
            days=tls.self_signed.days,
            key_size=tls.self_signed.key_size,
            now=now,
        )
        write_owned_file(material.key, key_pem, mode=KEY_MODE, owner=owner, group=group)
        write_owned_file(material.certificate, cert_pem, mode=CERT_MODE, owner=owner, group=group)
    except (OSError, ValueError, UnsupportedAlgorithm, AccountProvisionError) as exc:
        raise TLSGenerationError(f"Failed generating self-signed certificate: {exc}") from exc
    return TLSResult(outcome=TLSOutcome.GENERATED, material=material, changed=True)


def generate_self_signed(
    common_name: str,
    *,
    days: int,
    key_size: int = MIN_RSA_KEY_SIZE,
    now: datetime | None = None,
) -> tuple[bytes, bytes]:
    """Return ``(key_pem, cert_pem)`` for a new self-signed certificate.

    The certificate subject and issuer are ``CN=<common_name>`` and it is
    valid for exactly *days* days starting at *now*.
    """
    if key_size < MIN_RSA_KEY_SIZE:
        raise ValueError(f"RSA key size must be at least {MIN_RSA_KEY_SIZE} bits.")
    if days <= 0:
        raise ValueError("Certificate validity must be at least one day.")
    issued_at = (now or datetime.now(UTC)).replace(microsecond=0)
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(issued_at)
        .not_valid_after(issued_at + timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.SubjectAlternativeName([_san_entry(common_name)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return key_pem, cert.public_bytes(serialization.Encoding.PEM)


def inspect_certificate(path: Path) -> CertificateInfo:
    """Return the common name, validity window and key size of *path*."""
    cert = _load_certificate(path)
    names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    common_name = str(names[0].value) if names else None
    public_key = cert.public_key()
    key_size = public_key.key_size if isinstance(public_key, rsa.RSAPublicKey) else None
    not_before = getattr(cert, "not_valid_before_utc", None)
    not_after = getattr(cert, "not_valid_after_utc", None)
    if not isinstance(not_before, datetime) or not isinstance(not_after, datetime):
        not_before = _as_utc(cert.not_valid_before)  # pragma: no cover - cryptography < 42
        not_after = _as_utc(cert.not_valid_after)  # pragma: no cover
    return CertificateInfo(
        common_name=common_name,
        not_valid_before=not_before,
        not_valid_after=not_after,
        key_size=key_size,
    )


def _reuse(
    material: TLSMaterial,
    *,
    owner: str | None,
    group: str | None,
    dry_run: bool,
) -> TLSResult:
    result = TLSResult(outcome=TLSOutcome.REUSED, material=material)
    try:
        cert_obj = _load_certificate(material.certificate)
        key_obj = _load_private_key(material.key)
    except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as exc:
        result.warnings.append(f"Existing TLS material could not be parsed: {exc}")
    else:
        if not _public_keys_match(cert_obj, key_obj):
            result.warnings.append(
                f"Certificate {material.certificate} does not match key {material.key}."
            )
    if dry_run:
        return result
    try:
        key_changed = secure_file(material.key, mode=KEY_MODE, owner=owner, group=group)
        cert_changed = secure_file(
            material.certificate, mode=CERT_MODE, owner=owner, group=group
        )
    except OSError as exc:
        raise AccountProvisionError(f"Failed to secure TLS material: {exc}") from exc
    result.changed = key_changed or cert_changed
    return result


def _san_entry(common_name: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(common_name))
    except ValueError:
        return x509.DNSName(common_name)


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(path: Path) -> PrivateKeyProtocol:
    data = path.read_bytes()
    private_key = serialization.load_pem_private_key(data, password=None)
    return cast(PrivateKeyProtocol, private_key)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    cert_bytes = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = [
    "CertificateInfo",
    "TLSMaterial",
    "TLSOutcome",
    "TLSResult",
    "ensure_tls_material",
    "generate_self_signed",
    "inspect_certificate",
]

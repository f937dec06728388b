"""
Fiscal Signing - Key Material
=============================
Key material is an RSA private key plus the X.509 certificate the authority
knows the issuer by. Providers are the only I/O the signer depends on.

- StaticKeyProvider  -> material already in memory (tests, secrets managers)
- Pkcs12KeyProvider  -> .pfx / .p12 file protected by a password
- DemoKeyProvider    -> ephemeral self-signed key; only wired when demo
                        signing is explicitly enabled in configuration
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from fiscal.errors import SigningUnavailable

logger = logging.getLogger("fiscal.signing")


@dataclass(frozen=True)
class KeyMaterial:
    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate

    @property
    def certificate_der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)


class KeyMaterialProvider(Protocol):
    def load(self) -> Optional[KeyMaterial]:
        """Return key material, or None if none is configured."""
        ...


def ensure_usable(key_material: Optional[KeyMaterial]) -> KeyMaterial:
    """Raise SigningUnavailable unless the key and certificate belong together."""
    if key_material is None:
        raise SigningUnavailable("No signing key material is configured.")
    if not isinstance(key_material, KeyMaterial):
        raise SigningUnavailable("Key material has an unsupported type.")
    if not isinstance(key_material.private_key, rsa.RSAPrivateKey):
        raise SigningUnavailable("Signing key must be an RSA private key.")
    if not isinstance(key_material.certificate, x509.Certificate):
        raise SigningUnavailable("Signing certificate is missing.")
    certificate_key = key_material.certificate.public_key()
    if not isinstance(certificate_key, rsa.RSAPublicKey) or (
        certificate_key.public_numbers()
        != key_material.private_key.public_key().public_numbers()
    ):
        raise SigningUnavailable("Certificate does not match the signing key.")
    return key_material


class StaticKeyProvider:
    def __init__(self, key_material: Optional[KeyMaterial]):
        self._key_material = key_material

    def load(self) -> Optional[KeyMaterial]:
        return self._key_material


class Pkcs12KeyProvider:
    """Loads (and caches) a PKCS#12 bundle from disk."""

    def __init__(self, path: str | Path, password: Optional[str]):
        self._path = Path(path)
        self._password = password.encode("utf-8") if password else None
        self._lock = threading.Lock()
        self._cached: Optional[KeyMaterial] = None

    def load(self) -> Optional[KeyMaterial]:
        with self._lock:
            if self._cached is not None:
                return self._cached
            try:
                data = self._path.read_bytes()
            except OSError as exc:
                raise SigningUnavailable(
                    f"Cannot read signing bundle {self._path}: {exc}"
                ) from exc
            try:
                private_key, certificate, _ = pkcs12.load_key_and_certificates(
                    data, self._password
                )
            except ValueError as exc:
                raise SigningUnavailable(
                    f"Signing bundle {self._path} could not be decrypted."
                ) from exc
            if private_key is None or certificate is None:
                raise SigningUnavailable(
                    f"Signing bundle {self._path} lacks a key or certificate."
                )
            self._cached = ensure_usable(KeyMaterial(private_key, certificate))
            logger.info(f"Signing key loaded from {self._path}")
            return self._cached


def generate_self_signed(
    common_name: str,
    *,
    valid_from: Optional[datetime] = None,
    key_size: int = 2048,
) -> KeyMaterial:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    not_before = valid_from or datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )
    return KeyMaterial(private_key, certificate)


def export_pkcs12(key_material: KeyMaterial, password: str, name: str = "fiscal") -> bytes:
    return pkcs12.serialize_key_and_certificates(
        name.encode("utf-8"),
        key_material.private_key,
        key_material.certificate,
        None,
        serialization.BestAvailableEncryption(password.encode("utf-8")),
    )


class DemoKeyProvider:
    """Ephemeral self-signed key. Signatures are NOT valid for the authority."""

    def __init__(self, common_name: str = "DEMO SIGNING CERTIFICATE"):
        self._common_name = common_name
        self._lock = threading.Lock()
        self._cached: Optional[KeyMaterial] = None

    def load(self) -> Optional[KeyMaterial]:
        with self._lock:
            if self._cached is None:
                logger.warning(
                    "Demo signing certificate in use - documents signed with it "
                    "are not valid for the tax authority."
                )
                self._cached = generate_self_signed(self._common_name)
            return self._cached

"""
Certificate and private key loading for smimemailer.

Certificates and keys can be given as a filesystem path, as PEM text, or as
raw PEM/DER bytes. Files are opened and closed on every load so that no
handles outlive a single sealing operation.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import NameOID

from .exceptions import CertificateError, KeyLoadError

logger = logging.getLogger(__name__)

CertificateSource = Union[str, bytes, os.PathLike]
KeySource = Union[str, bytes, os.PathLike]
PrivateKey = Union[RSAPrivateKey, EllipticCurvePrivateKey]

PEM_MARKER = b"-----BEGIN"


@dataclass
class CertificateInfo:
    """Information about an X.509 certificate."""

    subject: str
    issuer: str
    serial_number: int
    not_before: datetime
    not_after: datetime
    is_expired: bool
    days_until_expiry: int
    email_addresses: list[str] = field(default_factory=list)
    key_type: str = ""
    key_size: int = 0
    is_self_signed: bool = False

    def is_valid(self) -> bool:
        """Check if the certificate is currently valid."""
        now = datetime.now(timezone.utc)
        return self.not_before <= now <= self.not_after


def _read_source(source: Union[CertificateSource, KeySource]) -> tuple[bytes, str]:
    """Return the raw bytes of a source and a label for error messages."""
    if isinstance(source, bytes):
        return source, "<bytes>"

    if isinstance(source, str) and source.lstrip().startswith("-----BEGIN"):
        return source.encode("ascii"), "<pem>"

    path = Path(source)
    with open(path, "rb") as f:
        return f.read(), str(path)


def load_certificate(
    source: Union[CertificateSource, x509.Certificate],
) -> x509.Certificate:
    """
    Load an X.509 certificate.

    Args:
        source: Path, PEM text, PEM/DER bytes, or an already loaded certificate.

    Returns:
        Loaded certificate object.

    Raises:
        CertificateError: If the certificate cannot be read or parsed.
    """
    if isinstance(source, x509.Certificate):
        return source

    try:
        data, label = _read_source(source)
    except OSError as e:
        raise CertificateError(
            f"Failed to read certificate from {source}: {e}"
        ) from e

    try:
        if PEM_MARKER in data:
            cert = x509.load_pem_x509_certificate(data)
        else:
            cert = x509.load_der_x509_certificate(data)
    except ValueError as e:
        raise CertificateError(
            f"Failed to parse certificate from {label}: {e}"
        ) from e

    logger.debug("Loaded certificate from %s", label)
    return cert


def load_certificates(
    sources: Iterable[Union[CertificateSource, x509.Certificate]],
) -> list[x509.Certificate]:
    """Load several certificates, preserving order."""
    return [load_certificate(source) for source in sources]


def load_private_key(
    source: Union[KeySource, PrivateKey],
    passphrase: Optional[str] = "",
) -> PrivateKey:
    """
    Load a private key.

    An empty passphrase means the key is not encrypted.

    Args:
        source: Path, PEM text, PEM/DER bytes, or an already loaded key.
        passphrase: Passphrase protecting the key, if any.

    Returns:
        Loaded private key object.

    Raises:
        KeyLoadError: If the key cannot be read, parsed or decrypted.
    """
    if isinstance(source, (RSAPrivateKey, EllipticCurvePrivateKey)):
        return source

    try:
        data, label = _read_source(source)
    except OSError as e:
        raise KeyLoadError(f"Failed to read private key from {source}: {e}") from e

    password = passphrase.encode("utf-8") if passphrase else None

    try:
        if PEM_MARKER in data:
            key = serialization.load_pem_private_key(data, password=password)
        else:
            key = serialization.load_der_private_key(data, password=password)
    except (ValueError, TypeError) as e:
        # TypeError covers a missing or superfluous passphrase
        raise KeyLoadError(f"Failed to load private key from {label}: {e}") from e

    if not isinstance(key, (RSAPrivateKey, EllipticCurvePrivateKey)):
        raise KeyLoadError(
            f"Unsupported private key type from {label}: {type(key).__name__}"
        )

    logger.debug("Loaded private key from %s", label)
    return key


def key_matches_certificate(key: PrivateKey, cert: x509.Certificate) -> bool:
    """Check that a private key belongs to the certificate's public key."""
    cert_public_key = cert.public_key()

    if isinstance(key, rsa.RSAPrivateKey):
        if not isinstance(cert_public_key, rsa.RSAPublicKey):
            return False
    elif isinstance(key, ec.EllipticCurvePrivateKey):
        if not isinstance(cert_public_key, ec.EllipticCurvePublicKey):
            return False
    else:
        return False

    return key.public_key().public_numbers() == cert_public_key.public_numbers()


def certificate_email_addresses(cert: x509.Certificate) -> list[str]:
    """Return the email addresses a certificate was issued for."""
    addresses = []

    try:
        san_ext = cert.extensions.get_extension_for_class(
            x509.SubjectAlternativeName
        )
        addresses.extend(san_ext.value.get_values_for_type(x509.RFC822Name))
    except x509.ExtensionNotFound:
        pass

    for attribute in cert.subject.get_attributes_for_oid(NameOID.EMAIL_ADDRESS):
        if attribute.value not in addresses:
            addresses.append(attribute.value)

    return addresses


def get_certificate_info(
    cert: Union[CertificateSource, x509.Certificate],
) -> CertificateInfo:
    """
    Get information about a certificate.

    Args:
        cert: Certificate object or any source accepted by load_certificate.

    Returns:
        CertificateInfo with certificate details.
    """
    cert = load_certificate(cert)

    now = datetime.now(timezone.utc)
    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc

    public_key = cert.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        key_type = "RSA"
        key_size = public_key.key_size
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        key_type = f"EC ({public_key.curve.name})"
        key_size = public_key.curve.key_size
    else:
        key_type = "Unknown"
        key_size = 0

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=cert.serial_number,
        not_before=not_before,
        not_after=not_after,
        is_expired=now > not_after,
        days_until_expiry=(not_after - now).days,
        email_addresses=certificate_email_addresses(cert),
        key_type=key_type,
        key_size=key_size,
        is_self_signed=cert.subject == cert.issuer,
    )

"""
Data models for smimemailer.

This module defines the signing identity, the encryption certificate
variants, the outgoing/sealed message containers and the delivery results
passed between the mailer, the signer and the transport.
"""

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import formatdate, getaddresses, make_msgid, parseaddr
from pathlib import Path
from typing import Any, Optional, Union

from .certificates import CertificateSource, KeySource
from .exceptions import (
    InvalidConfigError,
    InvalidMessageError,
    MissingRecipientCertificateError,
)

SignerOptions = Mapping[str, Any]

# Headers that describe the MIME entity rather than the envelope
MIME_HEADER_PREFIX = "content-"
MIME_VERSION_HEADER = "mime-version"
HIDDEN_HEADERS = frozenset(["bcc", "resent-bcc"])

_LINE_ENDING = re.compile(rb"\r?\n")
_MIME_VERSION = re.compile(rb"^mime-version:", re.IGNORECASE | re.MULTILINE)


def normalize_address(address: str) -> str:
    """Normalize an email address for comparisons."""
    return parseaddr(address)[1].strip().lower()


def to_crlf(data: bytes) -> bytes:
    """Convert any line endings to CRLF."""
    return _LINE_ENDING.sub(b"\r\n", data)


@dataclass(frozen=True)
class SigningIdentity:
    """Certificate, private key and passphrase used to sign messages."""

    certificate: Optional[CertificateSource] = None
    private_key: Optional[KeySource] = None
    passphrase: str = ""

    @property
    def is_configured(self) -> bool:
        """True if either half of the identity is present."""
        return bool(self.certificate) or bool(self.private_key)


class EncryptionCertificates:
    """
    Base class for the encryption certificate variants.

    Use ``EncryptionCertificates.from_value`` to build the right variant from
    a single source, a list of sources or an address-keyed mapping.
    """

    def batches(self, recipients: list[str]) -> list[list[str]]:
        """Split recipients into groups that share one sealed copy."""
        return [list(recipients)] if recipients else []

    def for_recipients(self, recipients: list[str]) -> list[CertificateSource]:
        """Return the certificates a copy for these recipients is encrypted to."""
        raise NotImplementedError

    @classmethod
    def from_value(cls, value: Any) -> Optional["EncryptionCertificates"]:
        """
        Resolve a configuration value into a certificate variant.

        Args:
            value: None, a certificate source, a list of sources or a mapping
                of recipient address to source.

        Returns:
            The matching variant, or None if no certificates are given.

        Raises:
            InvalidConfigError: If the value has an unsupported type.
        """
        if value is None or isinstance(value, EncryptionCertificates):
            return value

        if isinstance(value, (str, bytes, os.PathLike)):
            if not value:
                return None
            return SingleCertificate(value)

        if isinstance(value, Mapping):
            if not value:
                return None
            return CertificatesByRecipient(
                {normalize_address(k): v for k, v in value.items()}
            )

        if isinstance(value, (list, tuple)):
            if not value:
                return None
            return CertificateList(tuple(value))

        raise InvalidConfigError(
            config_key="encrypting_certs",
            value=type(value).__name__,
            reason="expected a certificate, a list of certificates or a mapping",
        )


@dataclass(frozen=True)
class SingleCertificate(EncryptionCertificates):
    """One certificate used for every recipient."""

    certificate: CertificateSource

    def for_recipients(self, recipients: list[str]) -> list[CertificateSource]:
        return [self.certificate]


@dataclass(frozen=True)
class CertificateList(EncryptionCertificates):
    """Several certificates, all added to the same envelope."""

    certificates: tuple[CertificateSource, ...]

    def for_recipients(self, recipients: list[str]) -> list[CertificateSource]:
        return list(self.certificates)


@dataclass(frozen=True)
class CertificatesByRecipient(EncryptionCertificates):
    """Certificates keyed by (normalized) recipient address."""

    certificates: Mapping[str, CertificateSource]

    def batches(self, recipients: list[str]) -> list[list[str]]:
        # Every recipient gets a copy only their own key can open
        return [[recipient] for recipient in recipients]

    def for_recipients(self, recipients: list[str]) -> list[CertificateSource]:
        certs = []
        for recipient in recipients:
            cert = self.certificates.get(normalize_address(recipient))
            if cert is None:
                raise MissingRecipientCertificateError(recipient)
            certs.append(cert)
        return certs


class OutgoingMessage:
    """
    An email handed to the mailer.

    Wraps a standard library ``EmailMessage`` and records which recipients
    the transport could not deliver to.
    """

    def __init__(
        self,
        message: EmailMessage,
        envelope_from: Optional[str] = None,
    ) -> None:
        self._message = message
        self._envelope_from = envelope_from
        self._failed_recipients: list[str] = []

    @classmethod
    def from_bytes(cls, data: bytes) -> "OutgoingMessage":
        """Parse a raw RFC 5322 message."""
        message = BytesParser(policy=policy.default).parsebytes(data)
        return cls(message)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "OutgoingMessage":
        """Read a message from an .eml file."""
        with open(path, "rb") as f:
            return cls.from_bytes(f.read())

    def get_native_message(self) -> EmailMessage:
        """Return the wrapped EmailMessage."""
        return self._message

    @property
    def sender(self) -> str:
        """Envelope sender: explicit value, then Sender, then From."""
        if self._envelope_from:
            return self._envelope_from

        for header in ("Sender", "From"):
            value = self._message.get(header)
            if value:
                address = parseaddr(str(value))[1]
                if address:
                    return address

        raise InvalidMessageError("Message has no sender address")

    @property
    def recipients(self) -> list[str]:
        """Unique To, Cc and Bcc addresses in header order."""
        values = []
        for header in ("To", "Cc", "Bcc"):
            values.extend(str(v) for v in self._message.get_all(header, []))

        recipients: list[str] = []
        seen = set()
        for _, address in getaddresses(values):
            key = address.lower()
            if address and key not in seen:
                seen.add(key)
                recipients.append(address)
        return recipients

    def ensure_identity_headers(self) -> None:
        """Add Date and Message-ID if the message lacks them."""
        if "Date" not in self._message:
            self._message["Date"] = formatdate(localtime=True)
        if "Message-ID" not in self._message:
            self._message["Message-ID"] = make_msgid()

    @property
    def failed_recipients(self) -> list[str]:
        return list(self._failed_recipients)

    def set_failed_recipients(self, recipients: Optional[list[str]]) -> None:
        self._failed_recipients = list(recipients or [])


@dataclass
class SealedMessage:
    """A message ready for the transport, possibly signed and/or encrypted."""

    sender: str
    recipients: list[str]
    headers: list[tuple[str, Any]]
    entity: bytes
    signed: bool = False
    encrypted: bool = False

    def as_bytes(self) -> bytes:
        """Render the message as CRLF wire bytes."""
        head = b"".join(
            policy.SMTP.fold_binary(name, value) for name, value in self.headers
        )
        entity = to_crlf(self.entity)

        header_block = entity.split(b"\r\n\r\n", 1)[0]
        if not _MIME_VERSION.search(header_block):
            entity = b"MIME-Version: 1.0\r\n" + entity

        return head + entity

    def as_message(self) -> EmailMessage:
        """Parse the wire form back into an EmailMessage."""
        return BytesParser(policy=policy.default).parsebytes(self.as_bytes())


@dataclass
class TransportResult:
    """What the transport reports for one sealed message."""

    accepted: int
    failed_recipients: list[str] = field(default_factory=list)


@dataclass
class DeliveryOutcome:
    """Aggregated result of a send."""

    accepted: int = 0
    failed_recipients: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        # Zero accepted recipients is a failure, even with no recipients at all
        return self.accepted > 0

    def add(self, result: TransportResult) -> None:
        self.accepted += result.accepted
        self.failed_recipients.extend(result.failed_recipients)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "accepted": self.accepted,
            "failed_recipients": list(self.failed_recipients),
        }

"""
S/MIME signer for smimemailer.

This module turns an outgoing message into its sealed wire form: the MIME
content entity is signed (CMS SignedData) and/or encrypted (CMS
EnvelopedData) while the routing headers stay outside the envelope. The CMS
work itself is done by ``cryptography``'s PKCS#7 builders.

A signer is a one-shot context: the mailer builds a fresh one for every
send, binds the identity and certificates, and discards it afterwards.
"""

import copy
import logging
from collections.abc import Iterable
from email import policy
from email.encoders import encode_base64
from email.message import EmailMessage
from email.mime.application import MIMEApplication
from typing import Any, Optional, Protocol, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.ciphers import algorithms
from cryptography.hazmat.primitives.serialization import pkcs7

from .certificates import (
    CertificateSource,
    KeySource,
    PrivateKey,
    key_matches_certificate,
    load_certificate,
    load_certificates,
    load_private_key,
)
from .exceptions import EncryptionError, InvalidConfigError, SigningError
from .models import (
    HIDDEN_HEADERS,
    MIME_HEADER_PREFIX,
    MIME_VERSION_HEADER,
    EncryptionCertificates,
    OutgoingMessage,
    SealedMessage,
    SignerOptions,
    SigningIdentity,
    to_crlf,
)

logger = logging.getLogger(__name__)

HASH_ALGORITHMS = {
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

DEFAULT_CIPHER = "aes-128-cbc"

OPAQUE_FILENAME = "smime.p7m"

CIPHERS = {
    "aes-128-cbc": algorithms.AES128,
    "aes-256-cbc": algorithms.AES256,
}

DEFAULT_SIGNER_OPTIONS: dict[str, Any] = {
    "detached": True,
    "hash_algorithm": "sha256",
    "cipher": DEFAULT_CIPHER,
    "sign_then_encrypt": True,
    "binary": False,
    "no_attributes": False,
    "no_capabilities": False,
    "no_certs": False,
    "extra_certs": (),
}


class MessageSigner(Protocol):
    """Interface the mailer expects from a signer context."""

    def set_sign_certificate(
        self,
        certificate: Optional[CertificateSource],
        private_key: Optional[KeySource],
        passphrase: str = "",
    ) -> "MessageSigner":
        ...

    def set_encrypt_certificates(
        self, certificates: Optional[EncryptionCertificates]
    ) -> "MessageSigner":
        ...

    def seal(self, message: OutgoingMessage, recipients: list[str]) -> SealedMessage:
        ...


def resolve_options(options: Optional[SignerOptions]) -> dict[str, Any]:
    """
    Merge signer options over the defaults and check them.

    Raises:
        InvalidConfigError: On unknown option names or unsupported values.
    """
    resolved = dict(DEFAULT_SIGNER_OPTIONS)

    for name, value in (options or {}).items():
        if name not in DEFAULT_SIGNER_OPTIONS:
            raise InvalidConfigError(
                config_key=f"options.{name}",
                value=value,
                reason=f"unknown signer option, expected one of: "
                       f"{', '.join(sorted(DEFAULT_SIGNER_OPTIONS))}",
            )
        resolved[name] = value

    hash_name = str(resolved["hash_algorithm"]).lower()
    if hash_name not in HASH_ALGORITHMS:
        raise InvalidConfigError(
            config_key="options.hash_algorithm",
            value=resolved["hash_algorithm"],
            reason=f"expected one of: {', '.join(HASH_ALGORITHMS)}",
        )
    resolved["hash_algorithm"] = hash_name

    cipher_name = str(resolved["cipher"]).lower()
    if cipher_name not in CIPHERS:
        raise InvalidConfigError(
            config_key="options.cipher",
            value=resolved["cipher"],
            reason=f"expected one of: {', '.join(CIPHERS)}",
        )
    resolved["cipher"] = cipher_name

    return resolved


def content_entity(message: EmailMessage) -> bytes:
    """Return the MIME entity (Content-* headers and body) as CRLF bytes."""
    inner = copy.deepcopy(message)
    for name in set(inner.keys()):
        if not name.lower().startswith(MIME_HEADER_PREFIX):
            del inner[name]
    return inner.as_bytes(policy=policy.SMTP)


def opaque_entity(der: bytes) -> bytes:
    """Wrap a DER SignedData structure as an application/pkcs7-mime entity."""
    entity = MIMEApplication(
        der,
        "pkcs7-mime",
        _encoder=encode_base64,
        smime_type="signed-data",
        policy=policy.SMTP,
        name=OPAQUE_FILENAME,
    )
    entity.add_header("Content-Disposition", "attachment", filename=OPAQUE_FILENAME)
    entity.add_header("Content-Description", "S/MIME Cryptographic Signed Data")
    return entity.as_bytes()


def outer_headers(message: EmailMessage) -> list[tuple[str, Any]]:
    """Return the headers that stay outside the sealed entity."""
    headers = []
    for name, value in message.items():
        lowered = name.lower()
        if lowered.startswith(MIME_HEADER_PREFIX) or lowered == MIME_VERSION_HEADER:
            continue
        if lowered in HIDDEN_HEADERS:
            continue
        headers.append((name, value))
    return headers


class SMIMESigner:
    """
    Signs and encrypts messages with S/MIME.

    Options are documented in ``DEFAULT_SIGNER_OPTIONS``; they map onto the
    PKCS#7 builder flags of ``cryptography``.
    """

    def __init__(self, options: Optional[SignerOptions] = None) -> None:
        self.options = resolve_options(options)
        self._identity = SigningIdentity()
        self._encrypt_certificates: Optional[EncryptionCertificates] = None

    @property
    def is_signing(self) -> bool:
        return self._identity.is_configured

    @property
    def is_encrypting(self) -> bool:
        return self._encrypt_certificates is not None

    def set_sign_certificate(
        self,
        certificate: Optional[CertificateSource],
        private_key: Optional[KeySource],
        passphrase: str = "",
    ) -> "SMIMESigner":
        """Bind the signing identity. Nothing is loaded until ``seal``."""
        self._identity = SigningIdentity(
            certificate=certificate,
            private_key=private_key,
            passphrase=passphrase or "",
        )
        return self

    def set_encrypt_certificates(
        self, certificates: Union[EncryptionCertificates, Any, None]
    ) -> "SMIMESigner":
        """Bind the recipient certificates. Nothing is loaded until ``seal``."""
        self._encrypt_certificates = EncryptionCertificates.from_value(certificates)
        return self

    def seal(self, message: OutgoingMessage, recipients: list[str]) -> SealedMessage:
        """
        Produce the sealed copy of a message for the given recipients.

        Args:
            message: The outgoing message.
            recipients: Recipients this copy is addressed to.

        Returns:
            SealedMessage ready for the transport.

        Raises:
            SigningError: If signing fails or the identity is incomplete.
            EncryptionError: If encryption fails or a recipient has no
                certificate.
            CertificateError: If a certificate cannot be loaded.
            KeyLoadError: If the signing key cannot be loaded.
        """
        native = message.get_native_message()
        entity = content_entity(native)

        certificates = []
        if self._encrypt_certificates is not None:
            certificates = self._encrypt_certificates.for_recipients(recipients)

        signed = encrypted = False

        if self.is_signing and certificates and not self.options["sign_then_encrypt"]:
            entity = self._encrypt(entity, certificates)
            entity = self._sign(entity)
            signed = encrypted = True
        else:
            if self.is_signing:
                entity = self._sign(entity)
                signed = True
            if certificates:
                entity = self._encrypt(entity, certificates)
                encrypted = True

        logger.debug(
            "Sealed message for %d recipient(s): signed=%s, encrypted=%s",
            len(recipients),
            signed,
            encrypted,
        )

        return SealedMessage(
            sender=message.sender,
            recipients=list(recipients),
            headers=outer_headers(native),
            entity=entity,
            signed=signed,
            encrypted=encrypted,
        )

    def _signing_material(self) -> tuple[x509.Certificate, PrivateKey]:
        identity = self._identity

        if not identity.certificate:
            raise SigningError("A signing key is configured without a signing certificate")
        if not identity.private_key:
            raise SigningError("A signing certificate is configured without a signing key")

        cert = load_certificate(identity.certificate)
        key = load_private_key(identity.private_key, identity.passphrase)

        if not key_matches_certificate(key, cert):
            raise SigningError(
                "Signing key does not match signing certificate",
                {"subject": cert.subject.rfc4514_string()},
            )
        return cert, key

    def _sign(self, data: bytes) -> bytes:
        cert, key = self._signing_material()
        extra_certs = load_certificates(self.options["extra_certs"] or ())
        hash_algorithm = HASH_ALGORITHMS[self.options["hash_algorithm"]]()

        flags = []
        if self.options["detached"]:
            flags.append(pkcs7.PKCS7Options.DetachedSignature)
        if self.options["binary"]:
            flags.append(pkcs7.PKCS7Options.Binary)
        if self.options["no_attributes"]:
            flags.append(pkcs7.PKCS7Options.NoAttributes)
        if self.options["no_capabilities"]:
            flags.append(pkcs7.PKCS7Options.NoCapabilities)
        if self.options["no_certs"]:
            flags.append(pkcs7.PKCS7Options.NoCerts)

        try:
            builder = (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(data)
                .add_signer(cert, key, hash_algorithm)
            )
            for extra in extra_certs:
                builder = builder.add_certificate(extra)
            if self.options["detached"]:
                signed = builder.sign(serialization.Encoding.SMIME, flags)
            else:
                # cryptography only writes multipart/signed in SMIME encoding
                signed = opaque_entity(builder.sign(serialization.Encoding.DER, flags))
        except (ValueError, TypeError) as e:
            raise SigningError(f"Failed to sign message: {e}") from e

        logger.debug(
            "Signed message as %s with %s (%s)",
            cert.subject.rfc4514_string(),
            self.options["hash_algorithm"],
            "detached" if self.options["detached"] else "opaque",
        )
        return to_crlf(signed)

    def _encrypt(self, data: bytes, sources: Iterable[CertificateSource]) -> bytes:
        certificates = load_certificates(sources)

        flags = []
        if self.options["binary"]:
            flags.append(pkcs7.PKCS7Options.Binary)

        try:
            builder = pkcs7.PKCS7EnvelopeBuilder().set_data(data)
            for cert in certificates:
                builder = builder.add_recipient(cert)
            if self.options["cipher"] != DEFAULT_CIPHER:
                builder = builder.set_content_encryption_algorithm(
                    CIPHERS[self.options["cipher"]]
                )
            encrypted = builder.encrypt(serialization.Encoding.SMIME, flags)
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"Failed to encrypt message: {e}") from e

        logger.debug(
            "Encrypted message for %d certificate(s) with %s",
            len(certificates),
            self.options["cipher"],
        )
        return to_crlf(encrypted)

"""
S/MIME mailer for smimemailer.

``SMIMEMailer`` holds the signing identity, the recipient certificates and
the signer options, seals every outgoing message with a fresh signer and
hands the result to a mail transport.
"""

import logging
from typing import Any, Callable, Optional

from .certificates import CertificateSource, KeySource
from .models import (
    DeliveryOutcome,
    EncryptionCertificates,
    OutgoingMessage,
    SealedMessage,
    SignerOptions,
)
from .signer import MessageSigner, SMIMESigner
from .transport import MailTransport, SMTPTransport

logger = logging.getLogger(__name__)

SignerFactory = Callable[[SignerOptions], MessageSigner]


class SMIMEMailer:
    """
    Mailer that signs and/or encrypts messages before delivery.

    Nothing is loaded or validated when the mailer is configured; bad
    certificates, keys or passphrases raise from ``send`` when the message is
    sealed. A mailer is not safe to reconfigure while a send is in progress.
    """

    def __init__(
        self,
        transport: MailTransport,
        encrypting_certs: Any = None,
        signing_cert: Optional[CertificateSource] = None,
        signing_key: Optional[KeySource] = None,
        signing_key_passphrase: Optional[str] = None,
        options: Optional[SignerOptions] = None,
        default_options: Optional[SignerOptions] = None,
        signer_factory: SignerFactory = SMIMESigner,
    ) -> None:
        """
        Initialize the mailer.

        Args:
            transport: Delivers sealed messages.
            encrypting_certs: Recipient certificate, list of certificates, or
                mapping of recipient address to certificate.
            signing_cert: Sender certificate.
            signing_key: Sender private key.
            signing_key_passphrase: Passphrase of the sender private key.
            options: Signer options for this mailer.
            default_options: Options used when ``options`` is empty.
            signer_factory: Builds a signer context from options.
        """
        self.transport = transport
        self.default_options: dict[str, Any] = dict(default_options or {})
        self.signer_factory = signer_factory

        self.encrypting_certs: Optional[EncryptionCertificates] = None
        self.signing_cert: Optional[CertificateSource] = None
        self.signing_key: tuple[Optional[KeySource], str] = (None, "")
        self.options: dict[str, Any] = {}

        self.set_encrypting_certs(encrypting_certs)
        self.set_signing_cert(signing_cert)
        self.set_signing_key(signing_key, signing_key_passphrase)
        self.set_signer_options(options)

    @classmethod
    def from_settings(
        cls,
        settings,
        transport: Optional[MailTransport] = None,
        **kwargs: Any,
    ) -> "SMIMEMailer":
        """
        Build a mailer from application ``Settings``.

        Args:
            settings: Application settings.
            transport: Transport to use; defaults to an SMTPTransport built
                from ``settings.smtp``.
            **kwargs: Passed on to the constructor.
        """
        smime = settings.smime
        passphrase = smime.signing_key_passphrase
        return cls(
            transport=transport or SMTPTransport.from_settings(settings.smtp),
            encrypting_certs=smime.encrypting_certs,
            signing_cert=smime.signing_cert,
            signing_key=smime.signing_key,
            signing_key_passphrase=passphrase.get_secret_value() if passphrase else None,
            default_options=smime.default_options,
            **kwargs,
        )

    def set_signer_options(self, options: Optional[SignerOptions] = None) -> "SMIMEMailer":
        """
        Set the options passed to the signer.

        Args:
            options: Option mapping, see ``smimemailer.signer.DEFAULT_SIGNER_OPTIONS``.
                Empty or None falls back to the mailer's default options.
        """
        self.options = dict(options or self.default_options)
        return self

    def set_encrypting_certs(self, encrypting_certs: Any = None) -> "SMIMEMailer":
        """Set the recipient certificates (single, list or address mapping)."""
        self.encrypting_certs = EncryptionCertificates.from_value(encrypting_certs)
        return self

    def set_signing_cert(self, signing_cert: Optional[CertificateSource] = None) -> "SMIMEMailer":
        """Set the sender's signing certificate."""
        self.signing_cert = signing_cert
        return self

    def set_signing_key(
        self,
        signing_key: Optional[KeySource] = None,
        signing_key_passphrase: Optional[str] = None,
    ) -> "SMIMEMailer":
        """Set the sender's signing key and its passphrase."""
        self.signing_key = (signing_key, signing_key_passphrase or "")
        return self

    def _create_signer(self) -> MessageSigner:
        signer = self.signer_factory(dict(self.options))

        key, passphrase = self.signing_key
        if self.signing_cert or key:
            signer.set_sign_certificate(self.signing_cert, key, passphrase)

        if self.encrypting_certs is not None:
            signer.set_encrypt_certificates(self.encrypting_certs)

        return signer

    def seal(self, message: OutgoingMessage) -> list[SealedMessage]:
        """
        Seal a message without sending it.

        Returns one sealed copy for all recipients, or one per recipient when
        certificates are keyed by address.
        """
        recipients = message.recipients
        if not recipients:
            return []

        message.ensure_identity_headers()
        signer = self._create_signer()

        if self.encrypting_certs is not None:
            batches = self.encrypting_certs.batches(recipients)
        else:
            batches = [recipients]

        return [signer.seal(message, batch) for batch in batches]

    def deliver(self, message: OutgoingMessage) -> DeliveryOutcome:
        """
        Seal and send a message, returning the full outcome.

        The failed recipients are also recorded on ``message``.
        """
        outcome = DeliveryOutcome()
        message.set_failed_recipients([])

        sealed_copies = self.seal(message)
        if not sealed_copies:
            logger.warning("Message has no recipients, nothing sent")

        for sealed in sealed_copies:
            outcome.add(self.transport.send(sealed))

        message.set_failed_recipients(outcome.failed_recipients)

        if outcome.failed_recipients:
            logger.warning(
                "Message delivered to %d recipient(s), failed for: %s",
                outcome.accepted,
                ", ".join(outcome.failed_recipients),
            )
        else:
            logger.info("Message delivered to %d recipient(s)", outcome.accepted)

        return outcome

    def send(self, message: OutgoingMessage) -> bool:
        """
        Seal and send a message.

        Args:
            message: The outgoing message; its failed recipients are updated.

        Returns:
            True if at least one recipient accepted the message.
        """
        return self.deliver(message).success

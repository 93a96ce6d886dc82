"""smimemailer - S/MIME signing and encryption for outgoing email."""

from smimemailer.__version__ import __description__, __title__, __version__, get_version
from smimemailer.exceptions import (
    CertificateError,
    ConfigurationError,
    CryptoError,
    DecryptionError,
    EncryptionError,
    InvalidConfigError,
    InvalidMessageError,
    KeyLoadError,
    MessageError,
    MissingConfigError,
    MissingRecipientCertificateError,
    SignatureError,
    SigningError,
    SMIMEMailerError,
    TransportAuthError,
    TransportConnectionError,
    TransportError,
)
from smimemailer.mailer import SMIMEMailer
from smimemailer.models import (
    CertificateList,
    CertificatesByRecipient,
    DeliveryOutcome,
    EncryptionCertificates,
    OutgoingMessage,
    SealedMessage,
    SigningIdentity,
    SingleCertificate,
    TransportResult,
)
from smimemailer.signer import DEFAULT_SIGNER_OPTIONS, SMIMESigner
from smimemailer.transport import MailTransport, SMTPTransport
from smimemailer.verify import VerificationResult, decrypt_message, verify_signature

__all__ = [
    "__version__",
    "__title__",
    "__description__",
    "get_version",
    # Mailer
    "SMIMEMailer",
    "SMIMESigner",
    "DEFAULT_SIGNER_OPTIONS",
    # Models
    "CertificateList",
    "CertificatesByRecipient",
    "DeliveryOutcome",
    "EncryptionCertificates",
    "OutgoingMessage",
    "SealedMessage",
    "SigningIdentity",
    "SingleCertificate",
    "TransportResult",
    # Transports
    "MailTransport",
    "SMTPTransport",
    # Verification
    "VerificationResult",
    "decrypt_message",
    "verify_signature",
    # Exceptions
    "SMIMEMailerError",
    "ConfigurationError",
    "MissingConfigError",
    "InvalidConfigError",
    "CryptoError",
    "CertificateError",
    "KeyLoadError",
    "SigningError",
    "EncryptionError",
    "MissingRecipientCertificateError",
    "DecryptionError",
    "SignatureError",
    "MessageError",
    "InvalidMessageError",
    "TransportError",
    "TransportConnectionError",
    "TransportAuthError",
]

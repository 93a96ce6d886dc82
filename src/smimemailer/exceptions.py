"""
Custom exceptions for smimemailer.

Sealing failures (bad certificates, unreadable keys, wrong passphrases)
surface as exceptions from ``send``. Transport failures do not: they are
reported through the delivery outcome instead.
"""

from typing import Any, Optional


class SMIMEMailerError(Exception):
    """Base exception for all smimemailer errors."""

    def __init__(self, message: str,
                 details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


# Configuration Exceptions
class ConfigurationError(SMIMEMailerError):
    """Base exception for configuration-related errors."""


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration value is missing."""

    def __init__(
        self, config_key: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        """
        Initialize missing config error.

        Args:
            config_key: The missing configuration key.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            f"Missing required configuration: '{config_key}'", details)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid config error.

        Args:
            config_key: The configuration key with invalid value.
            value: The invalid value.
            reason: Optional reason why the value is invalid.
            details: Optional dictionary with additional error details.
        """
        message = f"Invalid configuration value for '{config_key}': {value}"
        if reason:
            message += f" - {reason}"
        super().__init__(message, details)
        self.config_key = config_key
        self.value = value
        self.reason = reason


# Cryptography Exceptions
class CryptoError(SMIMEMailerError):
    """Base exception for cryptography-related errors."""


class CertificateError(CryptoError):
    """Raised when a certificate cannot be read or parsed."""


class KeyLoadError(CryptoError):
    """Raised when a private key cannot be read, parsed or decrypted."""


class SigningError(CryptoError):
    """Raised when a message cannot be signed."""


class EncryptionError(CryptoError):
    """Raised when a message cannot be encrypted."""


class MissingRecipientCertificateError(EncryptionError):
    """Raised when a recipient has no encryption certificate configured."""

    def __init__(
        self, recipient: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        """
        Initialize missing recipient certificate error.

        Args:
            recipient: The address with no certificate.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            f"No encryption certificate configured for '{recipient}'", details
        )
        self.recipient = recipient


class DecryptionError(CryptoError):
    """Raised when decryption fails."""


class SignatureError(CryptoError):
    """Raised when a message carries no usable signature."""


# Message Exceptions
class MessageError(SMIMEMailerError):
    """Base exception for message-related errors."""


class InvalidMessageError(MessageError):
    """Raised when a message is malformed or invalid."""


# Transport Exceptions
class TransportError(SMIMEMailerError):
    """Base exception for transport-related errors."""


class TransportConnectionError(TransportError):
    """Raised when the transport cannot reach the mail server."""


class TransportAuthError(TransportError):
    """Raised when the mail server rejects the transport's credentials."""

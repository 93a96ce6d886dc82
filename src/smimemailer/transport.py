"""
Mail transports for smimemailer.

A transport takes a sealed message and makes a single delivery attempt.
Per-recipient failures, refusals and connection problems are reported in the
returned ``TransportResult``; retrying is left to the caller.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Coroutine, Optional, Protocol

import aiosmtplib

from .exceptions import TransportAuthError, TransportConnectionError, TransportError
from .models import SealedMessage, TransportResult

logger = logging.getLogger(__name__)

RefusedRecipients = dict[str, tuple[int, str]]


class MailTransport(Protocol):
    """Anything that can deliver a sealed message."""

    def send(self, message: SealedMessage) -> TransportResult:
        ...


class SMTPTransport:
    """
    Synchronous SMTP transport built on aiosmtplib.

    Each ``send`` opens a connection, optionally authenticates, submits the
    message once and closes the connection again.
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(
        self,
        host: str = "localhost",
        port: int = 25,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = False,
        start_tls: Optional[bool] = None,
        timeout: int = DEFAULT_TIMEOUT,
        local_hostname: Optional[str] = None,
        validate_certs: bool = True,
    ) -> None:
        """
        Initialize the SMTP transport.

        Args:
            host: SMTP server hostname.
            port: SMTP server port.
            username: Optional login user.
            password: Optional login password.
            use_tls: Connect with implicit TLS (usually port 465).
            start_tls: Force (True), forbid (False) or auto-negotiate (None)
                STARTTLS.
            timeout: Connection timeout in seconds.
            local_hostname: Name to use in EHLO/HELO.
            validate_certs: Whether to verify the server certificate.
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.start_tls = start_tls
        self.timeout = timeout
        self.local_hostname = local_hostname
        self.validate_certs = validate_certs

        logger.info(
            "SMTPTransport configured for %s:%d (tls=%s, starttls=%s, auth=%s)",
            host,
            port,
            use_tls,
            "auto" if start_tls is None else start_tls,
            bool(username),
        )

    @classmethod
    def from_settings(cls, settings) -> "SMTPTransport":
        """Build a transport from ``SMTPSettings``."""
        return cls(
            host=settings.host,
            port=settings.port,
            username=settings.username,
            password=(
                settings.password.get_secret_value() if settings.password else None
            ),
            use_tls=settings.use_tls,
            start_tls=settings.start_tls,
            timeout=settings.timeout,
            local_hostname=settings.local_hostname,
            validate_certs=settings.validate_certs,
        )

    def send(self, message: SealedMessage) -> TransportResult:
        """
        Deliver a sealed message once.

        Args:
            message: The sealed message.

        Returns:
            TransportResult with the accepted count and refused recipients.
        """
        recipients = list(message.recipients)
        if not recipients:
            return TransportResult(accepted=0)

        try:
            refused = self._run(
                self._submit(message.sender, recipients, message.as_bytes())
            )
        except TransportError as e:
            logger.error("Delivery via %s:%d failed: %s", self.host, self.port, e)
            return TransportResult(accepted=0, failed_recipients=recipients)

        failed = [r for r in recipients if r in refused]
        if failed:
            logger.warning(
                "%s:%d refused %d of %d recipient(s): %s",
                self.host,
                self.port,
                len(failed),
                len(recipients),
                {r: refused[r] for r in failed},
            )

        return TransportResult(
            accepted=len(recipients) - len(failed),
            failed_recipients=failed,
        )

    @staticmethod
    def _run(session: Coroutine[Any, Any, RefusedRecipients]) -> RefusedRecipients:
        """Run an SMTP session to completion, even when called from a running loop."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(session)

        # asyncio.run() cannot nest inside a running loop
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="smtp-send") as executor:
            return executor.submit(asyncio.run, session).result()

    async def _submit(
        self, sender: str, recipients: list[str], data: bytes
    ) -> RefusedRecipients:
        """Run one SMTP session and return the refused recipients."""
        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            use_tls=self.use_tls,
            start_tls=self.start_tls,
            timeout=self.timeout,
            local_hostname=self.local_hostname,
            validate_certs=self.validate_certs,
        )

        try:
            await smtp.connect()
        except (aiosmtplib.SMTPException, OSError) as e:
            raise TransportConnectionError(
                f"Failed to connect to {self.host}:{self.port}",
                {"error": str(e)},
            ) from e

        try:
            if self.username and self.password:
                try:
                    await smtp.login(self.username, self.password)
                except aiosmtplib.SMTPAuthenticationError as e:
                    raise TransportAuthError(
                        f"Authentication failed for {self.host}",
                        {"error": str(e)},
                    ) from e

            try:
                errors, _ = await smtp.sendmail(sender, recipients, data)
            except aiosmtplib.SMTPRecipientsRefused as e:
                return {r.recipient: (r.code, r.message) for r in e.recipients}
            except aiosmtplib.SMTPException as e:
                raise TransportError(
                    f"SMTP error with {self.host}",
                    {"error": str(e)},
                ) from e

            return {
                recipient: (response.code, response.message)
                for recipient, response in errors.items()
            }

        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except aiosmtplib.SMTPException:
                    smtp.close()

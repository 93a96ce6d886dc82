"""Tests for the SMTP transport."""

import asyncio

import aiosmtplib
import pytest
from aiosmtplib import (
    SMTPAuthenticationError,
    SMTPConnectError,
    SMTPRecipientRefused,
    SMTPRecipientsRefused,
    SMTPResponse,
    SMTPSenderRefused,
)

from smimemailer.config import SMTPSettings
from smimemailer.models import SealedMessage
from smimemailer.transport import SMTPTransport


class FakeSMTP:
    """Stands in for aiosmtplib.SMTP and records the session."""

    instances: list["FakeSMTP"] = []

    connect_error = None
    login_error = None
    sendmail_error = None
    refused: dict = {}

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.is_connected = False
        self.logged_in = None
        self.sent = None
        self.quit_called = False
        type(self).instances.append(self)

    async def connect(self):
        if self.connect_error:
            raise self.connect_error
        self.is_connected = True

    async def login(self, username, password):
        if self.login_error:
            raise self.login_error
        self.logged_in = (username, password)

    async def sendmail(self, sender, recipients, data):
        if self.sendmail_error:
            raise self.sendmail_error
        self.sent = (sender, list(recipients), data)
        return dict(self.refused), "OK"

    async def quit(self):
        self.quit_called = True
        self.is_connected = False

    def close(self):
        self.is_connected = False


@pytest.fixture
def fake_smtp(monkeypatch):
    class SMTP(FakeSMTP):
        instances = []
        refused = {}

    monkeypatch.setattr(aiosmtplib, "SMTP", SMTP)
    return SMTP


@pytest.fixture
def sealed():
    return SealedMessage(
        sender="sender@example.com",
        recipients=["alice@x.com", "bob@x.com"],
        headers=[("From", "sender@example.com"), ("To", "alice@x.com, bob@x.com")],
        entity=b"Content-Type: text/plain\r\n\r\nhello\r\n",
    )


class TestSMTPTransport:

    def test_delivers_to_all(self, fake_smtp, sealed):
        transport = SMTPTransport(host="mail.example.com", port=587)

        result = transport.send(sealed)

        assert result.accepted == 2
        assert result.failed_recipients == []

        session = fake_smtp.instances[0]
        assert session.kwargs["hostname"] == "mail.example.com"
        assert session.kwargs["port"] == 587
        assert session.sent == (
            "sender@example.com",
            ["alice@x.com", "bob@x.com"],
            sealed.as_bytes(),
        )
        assert session.logged_in is None
        assert session.quit_called

    def test_login_when_credentials_given(self, fake_smtp, sealed):
        transport = SMTPTransport(username="user", password="secret")

        transport.send(sealed)

        assert fake_smtp.instances[0].logged_in == ("user", "secret")

    def test_partial_refusal(self, fake_smtp, sealed):
        fake_smtp.refused = {"bob@x.com": SMTPResponse(550, "No such user")}

        result = SMTPTransport().send(sealed)

        assert result.accepted == 1
        assert result.failed_recipients == ["bob@x.com"]

    def test_all_refused(self, fake_smtp, sealed):
        fake_smtp.sendmail_error = SMTPRecipientsRefused([
            SMTPRecipientRefused(550, "No such user", "alice@x.com"),
            SMTPRecipientRefused(550, "No such user", "bob@x.com"),
        ])

        result = SMTPTransport().send(sealed)

        assert result.accepted == 0
        assert result.failed_recipients == ["alice@x.com", "bob@x.com"]
        assert fake_smtp.instances[0].quit_called

    def test_connection_failure_is_an_outcome(self, fake_smtp, sealed):
        fake_smtp.connect_error = SMTPConnectError("Connection refused")

        result = SMTPTransport().send(sealed)

        assert result.accepted == 0
        assert result.failed_recipients == ["alice@x.com", "bob@x.com"]

    def test_os_error_on_connect(self, fake_smtp, sealed):
        fake_smtp.connect_error = ConnectionRefusedError("refused")

        result = SMTPTransport().send(sealed)

        assert result.accepted == 0

    def test_auth_failure_is_an_outcome(self, fake_smtp, sealed):
        fake_smtp.login_error = SMTPAuthenticationError(535, "Bad credentials")

        result = SMTPTransport(username="user", password="wrong").send(sealed)

        assert result.accepted == 0
        assert result.failed_recipients == ["alice@x.com", "bob@x.com"]
        assert fake_smtp.instances[0].quit_called

    def test_sender_refused(self, fake_smtp, sealed):
        fake_smtp.sendmail_error = SMTPSenderRefused(553, "Not allowed", "sender@example.com")

        result = SMTPTransport().send(sealed)

        assert result.accepted == 0
        assert result.failed_recipients == ["alice@x.com", "bob@x.com"]

    def test_no_recipients_skips_connection(self, fake_smtp, sealed):
        sealed.recipients = []

        result = SMTPTransport().send(sealed)

        assert result.accepted == 0
        assert fake_smtp.instances == []

    def test_from_settings(self, fake_smtp, sealed):
        settings = SMTPSettings(
            host="smtp.example.com",
            port=465,
            username="user",
            password="secret",
            use_tls=True,
            validate_certs=False,
        )
        transport = SMTPTransport.from_settings(settings)

        assert transport.password == "secret"

        transport.send(sealed)

        session = fake_smtp.instances[0]
        assert session.kwargs["use_tls"] is True
        assert session.kwargs["validate_certs"] is False
        assert session.logged_in == ("user", "secret")

    def test_send_from_running_event_loop(self, fake_smtp, sealed):
        transport = SMTPTransport()

        async def caller():
            return transport.send(sealed)

        result = asyncio.run(caller())

        assert result.accepted == 2
        assert fake_smtp.instances[0].sent[1] == ["alice@x.com", "bob@x.com"]
        assert fake_smtp.instances[0].quit_called

    def test_failure_inside_running_event_loop_is_an_outcome(self, fake_smtp, sealed):
        fake_smtp.connect_error = SMTPConnectError("Connection refused")
        transport = SMTPTransport()

        async def caller():
            return transport.send(sealed)

        result = asyncio.run(caller())

        assert result.accepted == 0
        assert result.failed_recipients == ["alice@x.com", "bob@x.com"]

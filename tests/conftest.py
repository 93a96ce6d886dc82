"""
Pytest fixtures for smimemailer tests.

This module provides throwaway certificates, message builders and a
recording transport used across test modules.
"""

import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from smimemailer.models import OutgoingMessage, SealedMessage, TransportResult  # noqa: E402

KEY_PASSPHRASE = "correct horse battery staple"


@dataclass
class Identity:
    """A certificate/key pair on disk and in memory."""

    email: str
    cert: x509.Certificate
    key: object
    cert_path: Path
    key_path: Path


def make_certificate(common_name: str, email: str, key):
    subject = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.EMAIL_ADDRESS, email),
    ])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(
            x509.SubjectAlternativeName([x509.RFC822Name(email)]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )


def write_identity(directory: Path, name: str, email: str, key_type: str = "rsa",
                   passphrase: str = "") -> Identity:
    if key_type == "ec":
        key = ec.generate_private_key(ec.SECP256R1())
    else:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    cert = make_certificate(name, email, key)

    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
    else:
        encryption = serialization.NoEncryption()

    cert_path = directory / f"{name}.crt"
    key_path = directory / f"{name}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
    )
    return Identity(email=email, cert=cert, key=key, cert_path=cert_path, key_path=key_path)


@pytest.fixture(scope="session")
def pki_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("pki")


@pytest.fixture(scope="session")
def sender(pki_dir):
    return write_identity(pki_dir, "sender", "sender@example.com")


@pytest.fixture(scope="session")
def sender_with_passphrase(pki_dir):
    return write_identity(
        pki_dir, "sender-protected", "sender@example.com", passphrase=KEY_PASSPHRASE
    )


@pytest.fixture(scope="session")
def ec_sender(pki_dir):
    return write_identity(pki_dir, "sender-ec", "sender@example.com", key_type="ec")


@pytest.fixture(scope="session")
def alice(pki_dir):
    return write_identity(pki_dir, "alice", "alice@x.com")


@pytest.fixture(scope="session")
def bob(pki_dir):
    return write_identity(pki_dir, "bob", "bob@x.com")


def build_message(to=("alice@x.com",), cc=(), bcc=(), subject="Quarterly report",
                  body="The numbers are in.\nSee you Monday.\n") -> OutgoingMessage:
    message = EmailMessage()
    message["From"] = "Sender <sender@example.com>"
    if to:
        message["To"] = ", ".join(to)
    if cc:
        message["Cc"] = ", ".join(cc)
    if bcc:
        message["Bcc"] = ", ".join(bcc)
    message["Subject"] = subject
    message.set_content(body)
    return OutgoingMessage(message)


@pytest.fixture
def make_message():
    return build_message


class FakeTransport:
    """Records sealed messages and refuses a configurable set of recipients."""

    def __init__(self, refused=()):
        self.refused = {r.lower() for r in refused}
        self.sent: list[SealedMessage] = []

    def send(self, message: SealedMessage) -> TransportResult:
        self.sent.append(message)
        failed = [r for r in message.recipients if r.lower() in self.refused]
        return TransportResult(
            accepted=len(message.recipients) - len(failed),
            failed_recipients=failed,
        )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def key_passphrase():
    return KEY_PASSPHRASE

#!/usr/bin/env python3
"""
Command-line interface for smimemailer.

Usage:
    smimemailer [OPTIONS] COMMAND [ARGS]

Commands:
    seal        Sign/encrypt a message and write the result
    send        Sign/encrypt a message and deliver it over SMTP
    verify      Verify the signature of an S/MIME message
    decrypt     Decrypt an S/MIME message
    inspect     Show details of a certificate
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from smimemailer import __version__
from smimemailer.certificates import get_certificate_info
from smimemailer.config import LoggingSettings, Settings, get_settings
from smimemailer.exceptions import SMIMEMailerError
from smimemailer.mailer import SMIMEMailer
from smimemailer.models import OutgoingMessage
from smimemailer.verify import decrypt_message, verify_signature

logger = logging.getLogger(__name__)


def setup_logging(settings: LoggingSettings, debug: bool = False) -> None:
    """
    Configure logging for the command-line tool.

    Logs go to stderr so that message output on stdout stays clean.

    Args:
        settings: Logging settings.
        debug: Enable debug logging regardless of the configured level.
    """
    log_level = logging.DEBUG if debug else getattr(logging, settings.level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file:
        handlers.append(logging.FileHandler(settings.file))

    logging.basicConfig(
        level=log_level,
        format=settings.format,
        handlers=handlers,
        force=True,
    )

    if not debug:
        logging.getLogger("aiosmtplib").setLevel(logging.WARNING)


def load_settings(config_file: Optional[str]) -> Settings:
    """Load settings from an explicit TOML file or the environment."""
    if config_file:
        return Settings.from_toml(config_file)
    return get_settings()


def _read_input(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    with open(path, "rb") as f:
        return f.read()


def _write_output(data: bytes, path: Optional[str]) -> None:
    if not path or path == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return
    with open(path, "wb") as f:
        f.write(data)


def cmd_seal(args: argparse.Namespace, settings: Settings) -> int:
    message = OutgoingMessage.from_bytes(_read_input(args.message))
    mailer = SMIMEMailer.from_settings(settings)

    copies = mailer.seal(message)
    if not copies:
        logger.error("Message has no recipients")
        return 1

    if args.output_dir:
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        for sealed in copies:
            name = sealed.recipients[0] if len(copies) > 1 else "message"
            target = output_dir / f"{name}.eml"
            target.write_bytes(sealed.as_bytes())
            logger.info("Wrote %s", target)
        return 0

    if len(copies) > 1:
        logger.error(
            "Message is sealed separately for %d recipients; use --output-dir",
            len(copies),
        )
        return 1

    _write_output(copies[0].as_bytes(), args.output)
    return 0


def cmd_send(args: argparse.Namespace, settings: Settings) -> int:
    message = OutgoingMessage.from_bytes(_read_input(args.message))
    mailer = SMIMEMailer.from_settings(settings)

    success = mailer.send(message)

    for recipient in message.failed_recipients:
        print(f"failed: {recipient}", file=sys.stderr)
    if success:
        return 0

    print("Message was not accepted for any recipient", file=sys.stderr)
    return 1


def cmd_verify(args: argparse.Namespace, settings: Settings) -> int:
    result = verify_signature(_read_input(args.message), args.cert)

    if result.valid:
        print(f"Signature valid, signed by {result.signer.subject.rfc4514_string()}")
        return 0

    print(f"Signature INVALID: {result.reason}")
    return 1


def cmd_decrypt(args: argparse.Namespace, settings: Settings) -> int:
    passphrase = args.passphrase or os.getenv("SMIMEMAILER_KEY_PASSPHRASE", "")
    decrypted = decrypt_message(_read_input(args.message), args.cert, args.key, passphrase)
    _write_output(decrypted, args.output)
    return 0


def cmd_inspect(args: argparse.Namespace, settings: Settings) -> int:
    info = get_certificate_info(args.cert)

    print(f"Subject:     {info.subject}")
    print(f"Issuer:      {info.issuer}")
    print(f"Serial:      {info.serial_number:x}")
    print(f"Valid from:  {info.not_before.isoformat()}")
    print(f"Valid until: {info.not_after.isoformat()}"
          f"{' (expired)' if info.is_expired else ''}")
    print(f"Valid now:   {'yes' if info.is_valid() else 'no'}")
    print(f"Key:         {info.key_type} {info.key_size}")
    print(f"Emails:      {', '.join(info.email_addresses) or '-'}")
    print(f"Self-signed: {'yes' if info.is_self_signed else 'no'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the command-line parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="smimemailer",
        description="smimemailer - S/MIME signing and encryption for outgoing email",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Seal a message with the configured identity:
        smimemailer --config smimemailer.toml seal message.eml -o sealed.eml

    Send a message:
        smimemailer --config smimemailer.toml send message.eml

Environment Variables:
    SMIMEMAILER_CONFIG_FILE     TOML configuration file
    SMIME_SIGNING_CERT          Signing certificate path
    SMIME_SIGNING_KEY           Signing key path
    SMTP_HOST, SMTP_PORT        Outgoing SMTP server
        """,
    )

    parser.add_argument("--config", help="TOML configuration file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--version",
        action="version",
        version=f"smimemailer {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    seal = subparsers.add_parser("seal", help="Sign/encrypt a message")
    seal.add_argument("message", help="RFC 5322 message file, or - for stdin")
    seal.add_argument("-o", "--output", help="Output file (default: stdout)")
    seal.add_argument("--output-dir", help="Directory for per-recipient copies")
    seal.set_defaults(handler=cmd_seal)

    send = subparsers.add_parser("send", help="Sign/encrypt and deliver a message")
    send.add_argument("message", help="RFC 5322 message file, or - for stdin")
    send.set_defaults(handler=cmd_send)

    verify = subparsers.add_parser("verify", help="Verify a signed message")
    verify.add_argument("message", help="S/MIME message file, or - for stdin")
    verify.add_argument("--cert", help="Expected signer certificate")
    verify.set_defaults(handler=cmd_verify)

    decrypt = subparsers.add_parser("decrypt", help="Decrypt a message")
    decrypt.add_argument("message", help="S/MIME message file, or - for stdin")
    decrypt.add_argument("--cert", required=True, help="Recipient certificate")
    decrypt.add_argument("--key", required=True, help="Recipient private key")
    decrypt.add_argument("--passphrase", help="Private key passphrase")
    decrypt.add_argument("-o", "--output", help="Output file (default: stdout)")
    decrypt.set_defaults(handler=cmd_decrypt)

    inspect = subparsers.add_parser("inspect", help="Show certificate details")
    inspect.add_argument("cert", help="Certificate file")
    inspect.set_defaults(handler=cmd_inspect)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the smimemailer command.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except SMIMEMailerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(settings.logging, args.debug or settings.debug)

    try:
        return args.handler(args, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except (SMIMEMailerError, OSError) as e:
        logger.error("%s", e)
        return 1

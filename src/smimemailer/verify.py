"""
Verification and decryption of S/MIME messages.

Signatures are checked by walking the CMS SignedData structure with
``asn1crypto`` and verifying the signer's signature with ``cryptography``.
Envelopes are opened with ``cryptography``'s PKCS#7 decryption.
"""

import hmac
import logging
from dataclasses import dataclass
from email import message_from_bytes
from typing import Optional, Union

from asn1crypto import cms, core
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs7

from .certificates import CertificateSource, KeySource, load_certificate, load_private_key
from .exceptions import DecryptionError, SignatureError
from .models import to_crlf

logger = logging.getLogger(__name__)

SIGNATURE_TYPES = ("application/pkcs7-signature", "application/x-pkcs7-signature")
ENVELOPE_TYPES = ("application/pkcs7-mime", "application/x-pkcs7-mime")

DIGESTS = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


@dataclass
class VerificationResult:
    """Result of verifying a signed message."""

    valid: bool
    content: bytes
    signer: Optional[x509.Certificate] = None
    reason: Optional[str] = None


def _split_detached(data: bytes, boundary: str) -> bytes:
    """Return the raw bytes of the first part of a multipart/signed body."""
    delimiter = b"\r\n--" + boundary.encode("ascii")

    header_end = data.find(b"\r\n\r\n")
    if header_end < 0:
        raise SignatureError("Signed message has no body")

    start = data.find(delimiter + b"\r\n", header_end)
    if start < 0:
        raise SignatureError("Signed message has no content part")
    start += len(delimiter) + 2

    end = data.find(delimiter, start)
    if end < 0:
        raise SignatureError("Signed message has no signature part")

    return data[start:end]


def _extract(data: bytes) -> tuple[bytes, Optional[bytes]]:
    """Return the DER signature and, for detached signatures, the content."""
    message = message_from_bytes(data)
    content_type = message.get_content_type()

    if content_type == "multipart/signed":
        parts = message.get_payload()
        signatures = [p for p in parts if p.get_content_type() in SIGNATURE_TYPES]
        if not signatures:
            raise SignatureError("multipart/signed message has no signature part")
        content = _split_detached(data, message.get_boundary())
        return signatures[0].get_payload(decode=True), content

    if content_type in ENVELOPE_TYPES:
        if message.get_param("smime-type") == "enveloped-data":
            raise SignatureError("Message is encrypted; decrypt it before verifying")
        return message.get_payload(decode=True), None

    raise SignatureError(f"Message is not signed ({content_type})")


def _find_signer(
    signed_data: cms.SignedData, signer_info: cms.SignerInfo
) -> Optional[x509.Certificate]:
    sid = signer_info["sid"]
    certificates = signed_data["certificates"]
    if isinstance(certificates, core.Void):
        return None

    for choice in certificates:
        if choice.name != "certificate":
            continue
        cert = choice.chosen

        if sid.name == "issuer_and_serial_number":
            issuer_serial = sid.chosen
            if (cert.issuer == issuer_serial["issuer"]
                    and cert.serial_number == issuer_serial["serial_number"].native):
                return x509.load_der_x509_certificate(cert.dump())
        elif cert.key_identifier == sid.chosen.native:
            return x509.load_der_x509_certificate(cert.dump())

    return None


def _check_signature(
    cert: x509.Certificate,
    signature: bytes,
    signed_bytes: bytes,
    digest: hashes.HashAlgorithm,
    algorithm: str,
) -> None:
    public_key = cert.public_key()

    if isinstance(public_key, rsa.RSAPublicKey):
        if algorithm == "rsassa_pss":
            pad = padding.PSS(mgf=padding.MGF1(digest), salt_length=padding.PSS.AUTO)
        else:
            pad = padding.PKCS1v15()
        public_key.verify(signature, signed_bytes, pad, digest)
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, signed_bytes, ec.ECDSA(digest))
    else:
        raise SignatureError(
            f"Unsupported signer key type: {type(public_key).__name__}"
        )


def verify_signature(
    data: bytes,
    certificate: Optional[Union[CertificateSource, x509.Certificate]] = None,
) -> VerificationResult:
    """
    Verify an S/MIME signed message.

    Args:
        data: The raw message.
        certificate: Signer certificate to check against. Defaults to the
            certificate embedded in the signature.

    Returns:
        VerificationResult with the signed content.

    Raises:
        SignatureError: If the message carries no usable signature.
    """
    data = to_crlf(data)
    der, content = _extract(data)

    try:
        info = cms.ContentInfo.load(der)
        if info["content_type"].native != "signed_data":
            raise SignatureError("CMS structure is not SignedData")
        signed_data = info["content"]
        signer_info = signed_data["signer_infos"][0]
    except (ValueError, TypeError, IndexError) as e:
        raise SignatureError(f"Malformed signature: {e}") from e

    if content is None:
        content = signed_data["encap_content_info"]["content"].native
        if content is None:
            raise SignatureError("Opaque signature carries no content")

    if certificate is not None:
        signer = load_certificate(certificate)
    else:
        signer = _find_signer(signed_data, signer_info)
        if signer is None:
            raise SignatureError("Signer certificate not found in signature")

    digest_name = signer_info["digest_algorithm"]["algorithm"].native
    if digest_name not in DIGESTS:
        return VerificationResult(False, content, signer, f"Unsupported digest {digest_name}")
    digest = DIGESTS[digest_name]()

    signed_attrs = signer_info["signed_attrs"]
    if signed_attrs.native:
        hasher = hashes.Hash(digest)
        hasher.update(content)
        content_digest = hasher.finalize()

        expected = None
        for attr in signed_attrs:
            if attr["type"].native == "message_digest":
                expected = attr["values"][0].native
        if expected is None or not hmac.compare_digest(expected, content_digest):
            return VerificationResult(False, content, signer, "Message digest mismatch")

        # Signed attributes are signed as an explicit SET OF
        signed_bytes = b"\x31" + signed_attrs.dump()[1:]
    else:
        signed_bytes = content

    try:
        _check_signature(
            signer,
            signer_info["signature"].native,
            signed_bytes,
            digest,
            signer_info["signature_algorithm"]["algorithm"].native,
        )
    except InvalidSignature:
        return VerificationResult(False, content, signer, "Invalid signature")

    logger.debug("Verified signature by %s", signer.subject.rfc4514_string())
    return VerificationResult(True, content, signer)


def decrypt_message(
    data: bytes,
    certificate: Union[CertificateSource, x509.Certificate],
    private_key: KeySource,
    passphrase: Optional[str] = "",
) -> bytes:
    """
    Open an S/MIME enveloped message.

    Args:
        data: The raw message.
        certificate: The recipient certificate.
        private_key: The recipient private key.
        passphrase: Passphrase for the private key, if any.

    Returns:
        The decrypted MIME entity as CRLF bytes.

    Raises:
        DecryptionError: If the message is not encrypted or cannot be opened
            with this key.
    """
    message = message_from_bytes(to_crlf(data))
    content_type = message.get_content_type()
    if content_type not in ENVELOPE_TYPES or message.get_param("smime-type") not in (
        None,
        "enveloped-data",
    ):
        raise DecryptionError(f"Message is not S/MIME encrypted ({content_type})")

    cert = load_certificate(certificate)
    key = load_private_key(private_key, passphrase)

    try:
        decrypted = pkcs7.pkcs7_decrypt_der(message.get_payload(decode=True), cert, key, [])
    except (ValueError, TypeError) as e:
        raise DecryptionError(f"Failed to decrypt message: {e}") from e

    return to_crlf(decrypted)

"""Tests for signature verification and decryption."""

import base64
from email import message_from_bytes

import pytest

from smimemailer.exceptions import DecryptionError, SignatureError
from smimemailer.signer import SMIMESigner
from smimemailer.verify import decrypt_message, verify_signature


def seal(message, identity=None, encrypt_to=None, **options):
    signer = SMIMESigner(options)
    if identity is not None:
        signer.set_sign_certificate(identity.cert_path, identity.key_path)
    if encrypt_to is not None:
        signer.set_encrypt_certificates(encrypt_to)
    return signer.seal(message, message.recipients).as_bytes()


class TestVerifySignature:

    def test_detached(self, sender, make_message):
        result = verify_signature(seal(make_message(), sender))

        assert result.valid
        assert result.reason is None
        assert result.signer == sender.cert
        assert result.content.startswith(b"Content-Type: text/plain")

    def test_tampered_content(self, sender, make_message):
        data = seal(make_message(), sender)
        tampered = data.replace(b"The numbers are in.", b"The numbers are up.")

        result = verify_signature(tampered)

        assert not result.valid
        assert result.reason == "Message digest mismatch"

    def test_wrong_certificate(self, sender, alice, make_message):
        result = verify_signature(seal(make_message(), sender), alice.cert)

        assert not result.valid
        assert result.reason == "Invalid signature"

    def test_lf_line_endings(self, sender, make_message):
        data = seal(make_message(), sender).replace(b"\r\n", b"\n")
        assert verify_signature(data).valid

    def test_opaque(self, sender, make_message):
        data = seal(make_message(), sender, detached=False)

        sealed = message_from_bytes(data)
        assert sealed.get_content_type() == "application/pkcs7-mime"
        assert sealed.get_param("smime-type") == "signed-data"

        result = verify_signature(data)

        assert result.valid
        assert result.signer == sender.cert
        assert result.content.startswith(b"Content-Type: text/plain")
        assert b"The numbers are in." in result.content

    def test_tampered_opaque_content(self, sender, make_message):
        data = seal(make_message(), sender, detached=False)
        head, body = data.split(b"\r\n\r\n", 1)
        der = base64.b64decode(body)
        tampered = der.replace(b"The numbers are in.", b"The numbers are up.")
        assert tampered != der

        result = verify_signature(head + b"\r\n\r\n" + base64.encodebytes(tampered))

        assert not result.valid
        assert result.reason == "Message digest mismatch"

    def test_opaque_without_signed_attributes(self, sender, make_message):
        data = seal(make_message(), sender, detached=False, no_attributes=True)
        assert verify_signature(data).valid

    @pytest.mark.parametrize("hash_algorithm", ["sha384", "sha512"])
    def test_hash_algorithms(self, sender, make_message, hash_algorithm):
        data = seal(make_message(), sender, hash_algorithm=hash_algorithm)
        assert verify_signature(data).valid

    def test_ec_signer(self, ec_sender, make_message):
        result = verify_signature(seal(make_message(), ec_sender))

        assert result.valid
        assert result.signer == ec_sender.cert

    def test_without_signed_attributes(self, sender, make_message):
        data = seal(make_message(), sender, no_attributes=True)
        assert verify_signature(data).valid

    def test_without_embedded_certificate(self, sender, make_message):
        data = seal(make_message(), sender, no_certs=True)

        with pytest.raises(SignatureError, match="not found"):
            verify_signature(data)

        assert verify_signature(data, sender.cert_path).valid

    def test_extra_certificates_embedded(self, sender, alice, make_message):
        data = seal(make_message(), sender, extra_certs=[alice.cert_path])

        result = verify_signature(data)

        assert result.valid
        assert result.signer == sender.cert

    def test_unsigned_message(self, make_message):
        with pytest.raises(SignatureError, match="not signed"):
            verify_signature(seal(make_message()))

    def test_encrypted_message(self, alice, make_message):
        with pytest.raises(SignatureError, match="encrypted"):
            verify_signature(seal(make_message(), encrypt_to=alice.cert_path))


class TestDecryptMessage:

    def test_roundtrip_content(self, alice, make_message):
        data = seal(make_message(), encrypt_to=alice.cert_path)

        decrypted = decrypt_message(data, alice.cert_path, alice.key_path)

        assert decrypted.startswith(b"Content-Type: text/plain")
        assert b"The numbers are in.\r\nSee you Monday.\r\n" in decrypted

    def test_passphrase_protected_key(self, sender_with_passphrase, key_passphrase, make_message):
        identity = sender_with_passphrase
        data = seal(make_message(), encrypt_to=identity.cert_path)

        decrypted = decrypt_message(data, identity.cert, identity.key_path, key_passphrase)

        assert b"The numbers are in." in decrypted

    def test_wrong_recipient(self, alice, bob, make_message):
        data = seal(make_message(), encrypt_to=alice.cert_path)

        with pytest.raises(DecryptionError):
            decrypt_message(data, bob.cert, bob.key)

    def test_not_encrypted(self, alice, make_message):
        with pytest.raises(DecryptionError, match="not S/MIME encrypted"):
            decrypt_message(seal(make_message()), alice.cert, alice.key)

    def test_opaque_signature_is_not_an_envelope(self, sender, alice, make_message):
        data = seal(make_message(), sender, detached=False)

        with pytest.raises(DecryptionError):
            decrypt_message(data, alice.cert, alice.key)

"""Tests for certificate and key loading."""

import pytest
from cryptography.hazmat.primitives import serialization

from smimemailer.certificates import (
    certificate_email_addresses,
    get_certificate_info,
    key_matches_certificate,
    load_certificate,
    load_certificates,
    load_private_key,
)
from smimemailer.exceptions import CertificateError, KeyLoadError


class TestLoadCertificate:

    def test_from_path(self, alice):
        assert load_certificate(alice.cert_path) == alice.cert

    def test_from_path_string(self, alice):
        assert load_certificate(str(alice.cert_path)) == alice.cert

    def test_from_pem_text(self, alice):
        pem = alice.cert_path.read_text()
        assert load_certificate(pem) == alice.cert

    def test_from_der_bytes(self, alice):
        der = alice.cert.public_bytes(serialization.Encoding.DER)
        assert load_certificate(der) == alice.cert

    def test_loaded_certificate_passes_through(self, alice):
        assert load_certificate(alice.cert) is alice.cert

    def test_missing_file(self, tmp_path):
        with pytest.raises(CertificateError, match="Failed to read"):
            load_certificate(tmp_path / "nope.crt")

    def test_garbage(self):
        with pytest.raises(CertificateError, match="Failed to parse"):
            load_certificate(b"definitely not a certificate")

    def test_load_many_keeps_order(self, alice, bob):
        assert load_certificates([bob.cert_path, alice.cert_path]) == [bob.cert, alice.cert]


class TestLoadPrivateKey:

    def test_unencrypted(self, alice):
        key = load_private_key(alice.key_path)
        assert key_matches_certificate(key, alice.cert)

    def test_empty_passphrase_means_unencrypted(self, alice):
        key = load_private_key(alice.key_path, "")
        assert key_matches_certificate(key, alice.cert)

    def test_encrypted_with_passphrase(self, sender_with_passphrase, key_passphrase):
        key = load_private_key(sender_with_passphrase.key_path, key_passphrase)
        assert key_matches_certificate(key, sender_with_passphrase.cert)

    def test_encrypted_without_passphrase(self, sender_with_passphrase):
        with pytest.raises(KeyLoadError):
            load_private_key(sender_with_passphrase.key_path)

    def test_passphrase_on_plain_key(self, alice):
        with pytest.raises(KeyLoadError):
            load_private_key(alice.key_path, "unexpected")

    def test_missing_file(self, tmp_path):
        with pytest.raises(KeyLoadError):
            load_private_key(tmp_path / "nope.key")

    def test_ec_key(self, ec_sender):
        key = load_private_key(ec_sender.key_path)
        assert key_matches_certificate(key, ec_sender.cert)


class TestCertificateDetails:

    def test_key_mismatch(self, alice, bob):
        assert not key_matches_certificate(alice.key, bob.cert)

    def test_key_type_mismatch(self, ec_sender, alice):
        assert not key_matches_certificate(ec_sender.key, alice.cert)

    def test_email_addresses_are_not_duplicated(self, alice):
        assert certificate_email_addresses(alice.cert) == ["alice@x.com"]

    def test_info(self, alice):
        info = get_certificate_info(alice.cert_path)

        assert "CN=alice" in info.subject
        assert info.is_self_signed
        assert not info.is_expired
        assert info.is_valid()
        assert info.key_type == "RSA"
        assert info.key_size == 2048
        assert info.email_addresses == ["alice@x.com"]
        assert info.days_until_expiry >= 28

    def test_info_ec(self, ec_sender):
        info = get_certificate_info(ec_sender.cert)

        assert info.key_type == "EC (secp256r1)"
        assert info.key_size == 256

"""Tests for credential encryption."""

import pytest

from saasguard.core.exceptions import AuthenticationError
from saasguard.security.credentials import CredentialCipher, PlaintextCipher, get_cipher


class TestCredentialCipher:
    def test_encrypt_decrypt(self):
        cipher = CredentialCipher(CredentialCipher.generate_key())

        encrypted = cipher.encrypt("client-secret")

        assert encrypted != "client-secret"
        assert cipher.decrypt(encrypted) == "client-secret"

    def test_wrong_key_cannot_decrypt(self):
        encrypted = CredentialCipher(CredentialCipher.generate_key()).encrypt("secret")
        other = CredentialCipher(CredentialCipher.generate_key())

        with pytest.raises(AuthenticationError, match="could not be decrypted"):
            other.decrypt(encrypted)

    def test_invalid_key_rejected(self):
        with pytest.raises(AuthenticationError, match="Invalid encryption key"):
            CredentialCipher("not-a-fernet-key")

    def test_passphrase_derivation_is_deterministic(self):
        salt = b"0123456789abcdef"
        first = CredentialCipher.from_passphrase("correct horse", salt)
        second = CredentialCipher.from_passphrase("correct horse", salt)

        assert second.decrypt(first.encrypt("secret")) == "secret"


class TestGetCipher:
    def test_key_gives_fernet_cipher(self):
        assert isinstance(get_cipher(CredentialCipher.generate_key()), CredentialCipher)

    def test_no_key_gives_plaintext(self):
        cipher = get_cipher(None)
        assert isinstance(cipher, PlaintextCipher)
        assert cipher.decrypt(cipher.encrypt("secret")) == "secret"

"""
Credential encryption for identity provider secrets.

Provider client secrets are stored encrypted and only decrypted at the
moment a connector or revocation call needs them.
"""

import base64
from typing import Optional

import structlog
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from saasguard.core.exceptions import AuthenticationError

logger = structlog.get_logger(__name__)

PBKDF2_ITERATIONS = 480000


class CredentialCipher:
    """Symmetric encryption of stored credentials using Fernet."""

    def __init__(self, key: str):
        """
        Initialize cipher.

        Args:
            key: URL-safe base64 Fernet key
        """
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise AuthenticationError(f"Invalid encryption key: {e}")

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode()

    @classmethod
    def from_passphrase(cls, passphrase: str, salt: bytes) -> "CredentialCipher":
        """
        Derive a cipher from a passphrase.

        Args:
            passphrase: Secret passphrase
            salt: Per-deployment salt (at least 16 bytes)

        Returns:
            CredentialCipher using the derived key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))
        return cls(key.decode())

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored credential.

        Raises:
            AuthenticationError: If the value was not encrypted with this key
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("credential_decryption_failed")
            raise AuthenticationError("Stored credential could not be decrypted")


class PlaintextCipher:
    """Pass-through cipher for local development and tests."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


def get_cipher(encryption_key: Optional[str] = None):
    """Return a Fernet cipher when a key is configured, else a pass-through."""
    if encryption_key:
        return CredentialCipher(encryption_key)

    logger.warning("credential_encryption_disabled")
    return PlaintextCipher()

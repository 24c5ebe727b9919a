"""Credential handling."""

from saasguard.security.credentials import CredentialCipher, PlaintextCipher, get_cipher

__all__ = ["CredentialCipher", "PlaintextCipher", "get_cipher"]

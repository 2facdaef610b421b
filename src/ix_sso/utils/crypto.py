"""Symmetric encryption for refresh tokens stored on user records."""

from cryptography.fernet import Fernet, InvalidToken

from ..config import SSOSettings
from ..exceptions import ConfigurationError


class TokenCipher:
    """
    Fernet wrapper for encrypting refresh tokens at rest.

    Example usage:
        cipher = TokenCipher.from_settings(settings)
        ciphertext = cipher.encrypt(tokens.refresh_token)
        assert cipher.decrypt(ciphertext) == tokens.refresh_token
    """

    def __init__(self, key: str | bytes):
        """
        Args:
            key: URL-safe base64 Fernet key (see ``TokenCipher.generate_key``)

        Raises:
            ConfigurationError: If the key is empty or malformed
        """
        if not key:
            raise ConfigurationError.missing("token_encryption_key")
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError.invalid(
                "token_encryption_key", "must be a 32-byte url-safe base64 Fernet key"
            ) from e

    @classmethod
    def from_settings(cls, settings: SSOSettings) -> "TokenCipher":
        return cls(settings.token_encryption_key)

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a value produced by ``encrypt``.

        Raises:
            cryptography.fernet.InvalidToken: If the ciphertext was tampered
                with or encrypted under another key
        """
        return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")

    def try_decrypt(self, ciphertext: str | None) -> str | None:
        """Decrypt, returning None for missing or undecryptable values."""
        if not ciphertext:
            return None
        try:
            return self.decrypt(ciphertext)
        except (InvalidToken, ValueError):
            return None

"""At-rest protection for the hosted backend API key kept in client state."""

import base64
import binascii
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from shared.config import get_env
from shared.errors import ConfigurationError

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "NOTES_ENCRYPTION_KEY"


def _load_key(encryption_key: Optional[str]) -> tuple:
    """Return ``(key bytes, ephemeral)`` from the argument or the environment."""
    configured = encryption_key or get_env(KEY_ENV_VAR)
    if configured:
        return configured.strip().encode(), False
    logger.warning(
        f"{KEY_ENV_VAR} is not set; cloud credentials saved in this run "
        f"cannot be read after a restart"
    )
    return Fernet.generate_key(), True


class EncryptionService:
    """
    Fernet cipher for the API key column of ``cloud_credentials``.

    Ciphertext is base64-wrapped once more so it fits a plain TEXT column in
    both sqlite and Postgres. A key that does not decrypt a stored value is a
    configuration problem, not corruption, and is reported as such.
    """

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Args:
            encryption_key: Fernet key; defaults to ``NOTES_ENCRYPTION_KEY``.
                When neither is set a throwaway key is generated.

        Raises:
            ConfigurationError: If the key is not a valid Fernet key
        """
        self.key, self.ephemeral = _load_key(encryption_key)
        try:
            self.cipher = Fernet(self.key)
        except (ValueError, binascii.Error):
            raise ConfigurationError(
                f"{KEY_ENV_VAR} is not a valid key; create one with EncryptionService.generate_key()"
            )

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        token = self.cipher.encrypt(plaintext.encode())
        return base64.b64encode(token).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Reverse :meth:`encrypt`.

        Raises:
            ConfigurationError: If the value was written under another key
        """
        if not ciphertext:
            return ""
        try:
            return self.cipher.decrypt(base64.b64decode(ciphertext.encode())).decode()
        except (InvalidToken, binascii.Error):
            raise ConfigurationError(
                f"Stored cloud credentials were saved under a different {KEY_ENV_VAR}; "
                f"enter them again"
            )

    @staticmethod
    def generate_key() -> str:
        """A fresh key suitable for ``NOTES_ENCRYPTION_KEY``."""
        return Fernet.generate_key().decode()

"""Secret encryption/decryption services.

Provides Fernet symmetric encryption for SSH keys and join tokens at rest.
"""

from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from ..config import Settings
from ..errors import ConfigurationError, CryptoError
from ..logging import get_logger

logger = get_logger(__name__)


class SecretStore:
    """Encrypt and decrypt secrets with a single Fernet key."""

    def __init__(self, key: Union[str, bytes]):
        if isinstance(key, str):
            key = key.encode()
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid secret encryption key: {e}") from e

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretStore":
        """Build a store from ``secret_encryption_key``.

        Raises:
            ConfigurationError: If the key is missing in production
        """
        key: Optional[str] = (settings.secret_encryption_key or "").strip() or None
        if key:
            return cls(key)

        if settings.environment != "production":
            # Key lives for this process only; ciphertext will not survive a restart
            logger.warning("SECRET_ENCRYPTION_KEY not set. Generating temporary key.")
            return cls(Fernet.generate_key())

        raise ConfigurationError("SECRET_ENCRYPTION_KEY must be set in production")

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret value.

        Args:
            plaintext: Plain text value to encrypt

        Returns:
            Encrypted value as string
        """
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a secret value.

        Raises:
            CryptoError: If the ciphertext is malformed or was encrypted with another key
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, ValueError, TypeError) as e:
            raise CryptoError("Unable to decrypt secret value") from e

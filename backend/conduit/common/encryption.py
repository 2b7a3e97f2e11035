from cryptography.fernet import Fernet, InvalidToken
from pydantic import SecretStr

from conduit.common.logging_setup import get_logger

logger = get_logger(__name__)


class TokenDecryptionError(Exception):
    pass


class TokenCipher:
    """
    Symmetric encryption for OAuth2 tokens at rest.

    The key is a urlsafe base64-encoded 32-byte Fernet key
    (generate one with `Fernet.generate_key()`).
    """

    def __init__(self, key: str | bytes | SecretStr):
        if isinstance(key, SecretStr):
            key = key.get_secret_value()
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, value: str | SecretStr) -> str:
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        return self._fernet.encrypt(value.encode()).decode()

    def encrypt_optional(self, value: str | SecretStr | None) -> str | None:
        return None if value is None else self.encrypt(value)

    def decrypt(self, value: str) -> SecretStr:
        try:
            return SecretStr(self._fernet.decrypt(value.encode()).decode())
        except InvalidToken as e:
            # never include the ciphertext, it is as sensitive as the token itself
            logger.error("Failed to decrypt stored token, key mismatch or corrupted value")
            raise TokenDecryptionError("stored token could not be decrypted") from e

    def decrypt_optional(self, value: str | None) -> SecretStr | None:
        return None if value is None else self.decrypt(value)

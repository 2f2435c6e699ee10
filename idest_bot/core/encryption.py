"""Fernet encryption of the Idest access tokens kept in the database."""
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..config import settings


class TokenEncryption:
    """Encrypts and decrypts stored bearer tokens."""

    def __init__(self, key: Optional[str] = None):
        """
        Initialize encryption with a key.

        Args:
            key: Base64-encoded Fernet key. If None, taken from settings.ENCRYPTION_KEY.
        """
        if key is None:
            key = settings.ENCRYPTION_KEY

        if not key:
            raise ValueError(
                "ENCRYPTION_KEY not found. Generate one with: "
                "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
            )

        self.cipher = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""

        encrypted = self.cipher.encrypt(plaintext.encode())
        return encrypted.decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored token.

        Raises:
            ValueError: the value was encrypted with another key or is corrupted
        """
        if not ciphertext:
            return ""

        try:
            decrypted = self.cipher.decrypt(ciphertext.encode())
        except InvalidToken as e:
            raise ValueError("Stored token cannot be decrypted with the current key") from e
        return decrypted.decode()


def generate_key() -> str:
    """Generate a new Fernet key for encryption."""
    return Fernet.generate_key().decode()


# Global encryption instance (initialized lazily)
_encryptor: Optional[TokenEncryption] = None


def get_encryptor() -> TokenEncryption:
    """Get global encryption instance."""
    global _encryptor
    if _encryptor is None:
        _encryptor = TokenEncryption()
    return _encryptor


def encrypt(plaintext: str) -> str:
    """Encrypt a string using global encryptor."""
    return get_encryptor().encrypt(plaintext)


def decrypt(ciphertext: str) -> str:
    """Decrypt a string using global encryptor."""
    return get_encryptor().decrypt(ciphertext)

"""Encryption service for vendor credentials."""

import sys
from typing import Optional
from cryptography.fernet import Fernet
from app.config import settings

KEY_HINT = "Generate a key with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""


class EncryptionService:
    """Service for encrypting and decrypting provider API keys."""

    def __init__(self, key: Optional[str] = None):
        """Initialize encryption service.

        Args:
            key: Fernet key; defaults to ``settings.encryption_key``.
        """
        self._key = key or settings.encryption_key
        self._validate_encryption_key()
        self._fernet = Fernet(self._key.encode())

    def _validate_encryption_key(self) -> None:
        """Validate that the encryption key is properly configured.

        Raises:
            SystemExit: If encryption key is missing or invalid.
        """
        if not self._key:
            print("ERROR: ENCRYPTION_KEY environment variable is not set.", file=sys.stderr)
            print("The gateway cannot decrypt provider credentials without it.", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

        try:
            Fernet(self._key.encode())
        except Exception as e:
            print(f"ERROR: Invalid ENCRYPTION_KEY format: {e}", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext string.

        Returns:
            The encrypted string (base64 encoded).
        """
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt ciphertext string.

        Raises:
            InvalidToken: If the ciphertext is invalid or corrupted.
        """
        return self._fernet.decrypt(ciphertext.encode()).decode()

    def decrypt_optional(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt a credential column that may be empty (keyless local vendors)."""
        if not ciphertext:
            return None
        return self.decrypt(ciphertext)

    @staticmethod
    def mask(secret: str) -> str:
        """Mask a secret, keeping the first 3 and last 4 characters of long values."""
        if len(secret) > 10:
            return f"{secret[:3]}{'*' * 15}{secret[-4:]}"
        return "*" * len(secret)

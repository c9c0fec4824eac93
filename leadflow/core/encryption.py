"""Field-level encryption for synced mail and calendar content."""

import base64
import logging
from functools import lru_cache
from uuid import UUID

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from leadflow.core.config import settings

logger = logging.getLogger(__name__)

_ENCRYPTED_PREFIX = "enc:"


class EncryptionError(Exception):
    """Raised when a value cannot be encrypted or decrypted."""


@lru_cache(maxsize=512)
def _derive_fernet(master_key: str, org_id: str, context: str) -> Fernet:
    """Derive a Fernet key bound to one org and one field context."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=org_id.encode(),
        info=context.encode(),
    )
    derived = hkdf.derive(master_key.encode())
    return Fernet(base64.urlsafe_b64encode(derived))


class EncryptionService:
    """
    Encrypts individual fields per tenant.

    Ciphertext is prefixed with ``enc:``. When no key is configured in dev/test
    values pass through unchanged so local runs work without key material.
    """

    def __init__(self, master_key: str | None = None):
        self.master_key = settings.DATA_ENCRYPTION_KEY if master_key is None else master_key
        if not self.master_key and not settings.is_dev:
            raise RuntimeError(
                "DATA_ENCRYPTION_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )

    @property
    def enabled(self) -> bool:
        return bool(self.master_key)

    def _fernet(self, org_id: UUID | str, context: str) -> Fernet:
        return _derive_fernet(self.master_key, str(org_id), context)

    def encrypt_field(self, org_id: UUID | str, plaintext: str | None, context: str) -> str | None:
        """Encrypt a value for storage."""
        if plaintext is None:
            return None
        if plaintext == "" or not self.enabled:
            return plaintext
        token = self._fernet(org_id, context).encrypt(plaintext.encode()).decode()
        return f"{_ENCRYPTED_PREFIX}{token}"

    def decrypt_field(self, org_id: UUID | str, ciphertext: str | None, context: str) -> str | None:
        """Decrypt a stored value; plaintext rows (no prefix) are returned as-is."""
        if ciphertext is None or ciphertext == "":
            return ciphertext
        if not ciphertext.startswith(_ENCRYPTED_PREFIX):
            return ciphertext
        if not self.enabled:
            raise EncryptionError("Encrypted value found but DATA_ENCRYPTION_KEY is not configured")
        token = ciphertext[len(_ENCRYPTED_PREFIX) :]
        try:
            return self._fernet(org_id, context).decrypt(token.encode()).decode()
        except InvalidToken:
            raise EncryptionError(f"Invalid or corrupted encrypted data ({context})")


_service: EncryptionService | None = None


def get_encryption_service() -> EncryptionService:
    """Process-wide encryption service."""
    global _service
    if _service is None:
        _service = EncryptionService()
    return _service

"""
API Key Service

Per-user storage of third-party API keys. Plaintext keys are encrypted by
the CredentialVault before they reach the database and are only decrypted
when the idea pipeline needs one for an outbound call.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .credential_vault import CredentialVault
from .exceptions import ValidationError, Unauthorized, NotFound

logger = logging.getLogger(__name__)


class APIKeyService:
    """Encrypting facade over the API key records of a DatabaseManager"""

    def __init__(self, db, vault: CredentialVault):
        self.db = db
        self.vault = vault

    def _owned_record(self, key_id: str, user_id: str):
        record = self.db.get_api_key(key_id)
        if record is None:
            raise NotFound(f"API key not found: {key_id}")
        if record.user_id != user_id:
            raise Unauthorized(f"User {user_id} does not own API key {key_id}")
        return record

    def create_api_key(self, user_id: str, service: str, api_key: str):
        """
        Store a key for (user, service).

        An existing record for the same service is overwritten and
        reactivated rather than duplicated.
        """
        if not user_id or not str(user_id).strip():
            raise ValidationError("user_id is required")
        if not service or not service.strip():
            raise ValidationError("service is required")
        if not api_key or not api_key.strip():
            raise ValidationError("api_key is required")

        record = self.db.upsert_api_key(user_id, service.strip(), self.vault.encrypt(api_key.strip()))
        logger.info(f"Stored {record.service} API key for user {user_id}")
        return record

    def list_api_keys(self, user_id: str) -> List:
        return self.db.list_api_keys(user_id)

    def get_api_key(self, key_id: str, user_id: str):
        return self._owned_record(key_id, user_id)

    def get_api_key_by_service(self, user_id: str, service: str):
        return self.db.get_api_key_by_service(user_id, service)

    def update_api_key(self, key_id: str, user_id: str, api_key: Optional[str] = None,
                       is_active: Optional[bool] = None):
        """Replace the key material and/or toggle the record"""
        self._owned_record(key_id, user_id)
        encrypted = None
        if api_key is not None:
            if not api_key.strip():
                raise ValidationError("api_key must not be blank")
            encrypted = self.vault.encrypt(api_key.strip())
        return self.db.update_api_key(key_id, encrypted_key=encrypted, is_active=is_active)

    def delete_api_key(self, key_id: str, user_id: str) -> bool:
        self._owned_record(key_id, user_id)
        deleted = self.db.delete_api_key(key_id)
        logger.info(f"Deleted API key {key_id} for user {user_id}")
        return deleted

    def get_decrypted_api_key(self, user_id: str, service: str) -> Optional[str]:
        """
        Plaintext of the caller's active key for `service`.

        Returns:
            The key, or None when no active record exists

        Raises:
            DecryptionError: the stored ciphertext cannot be opened
        """
        record = self.db.get_api_key_by_service(user_id, service)
        if record is None or not record.is_active:
            return None
        return self.vault.decrypt(record.encrypted_key)

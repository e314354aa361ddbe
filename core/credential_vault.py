"""
Credential Vault for Mind Map Platform

Symmetric authenticated encryption (AES-256-GCM) of stored third-party
API keys.

Stored form: base64( nonce(12) || ciphertext || tag(16) )

Key derivation modes:
- padded: the configured secret is zero-padded (or truncated) to 32 bytes.
  This is not a real KDF, but every key already stored was sealed this way.
- pbkdf2: PBKDF2-HMAC-SHA256 over the secret. Ciphertexts produced in one
  mode cannot be opened in the other; switching modes requires re-encrypting
  the stored keys.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import DecryptionError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12

KDF_PADDED = "padded"
KDF_PBKDF2 = "pbkdf2"


def normalize_key(secret: bytes) -> bytes:
    """Zero-pad or truncate a secret to exactly 32 bytes"""
    if len(secret) < KEY_SIZE:
        return secret + b"\x00" * (KEY_SIZE - len(secret))
    return secret[:KEY_SIZE]


def derive_key_pbkdf2(secret: bytes, salt: bytes, iterations: int) -> bytes:
    """Derive a 32-byte key with PBKDF2-HMAC-SHA256"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret)


class CredentialVault:
    """
    Encrypts and decrypts API keys with AES-256-GCM.

    The vault holds only the derived key; it has no other state and is safe
    to share between requests.
    """

    def __init__(
        self,
        secret: str,
        kdf_mode: str = KDF_PADDED,
        salt: Optional[str] = None,
        iterations: int = 390000,
    ):
        """
        Args:
            secret: Configured encryption secret (may be empty; padded mode
                then yields an all-zero key, as the legacy store did)
            kdf_mode: "padded" or "pbkdf2"
            salt: PBKDF2 salt (pbkdf2 mode only)
            iterations: PBKDF2 iteration count (pbkdf2 mode only)
        """
        raw = (secret or "").encode("utf-8")

        if kdf_mode == KDF_PADDED:
            if not raw:
                logger.warning("API key encryption secret is empty; using an all-zero key")
            key = normalize_key(raw)
        elif kdf_mode == KDF_PBKDF2:
            if not salt:
                raise ValueError("pbkdf2 key derivation requires a salt")
            key = derive_key_pbkdf2(raw, salt.encode("utf-8"), iterations)
        else:
            raise ValueError(f"Unknown key derivation mode: {kdf_mode}")

        self.kdf_mode = kdf_mode
        self._aead = AESGCM(key)

    @classmethod
    def from_config(cls, security_config) -> "CredentialVault":
        """Build a vault from a SecurityConfig"""
        return cls(
            secret=security_config.encryption_key,
            kdf_mode=security_config.kdf_mode,
            salt=security_config.kdf_salt,
            iterations=security_config.kdf_iterations,
        )

    def encrypt(self, plaintext: str) -> str:
        """Seal plaintext under a fresh random nonce and base64-encode it"""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Open a stored credential.

        Raises:
            DecryptionError: bad base64, data shorter than the nonce, or
                authentication tag mismatch
        """
        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptionError(f"Stored credential is not valid base64: {e}") from e

        if len(data) < NONCE_SIZE:
            raise DecryptionError("Ciphertext too short")

        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Credential authentication failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted credential is not valid UTF-8") from e

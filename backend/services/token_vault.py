"""Encryption at rest for Plaid access tokens.

Access tokens are long-lived bearer credentials, so they are encrypted
with AES-256-GCM before they reach the database. The stored form is three
colon-separated hex fields::

    <nonce>:<auth tag>:<ciphertext>

with a fresh 16-byte random nonce per call and a 16-byte tag. The layout
is fixed; existing rows depend on it.
"""

import logging
import os
import secrets
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config import settings

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16


class TokenVaultError(Exception):
    """Base class for credential encryption failures."""


class EncryptionKeyNotConfiguredError(TokenVaultError):
    """No usable server-side encryption key."""


class InvalidTokenFormatError(TokenVaultError):
    """Stored value is not ``nonce:tag:ciphertext`` with the right lengths."""


class TokenAuthenticationError(TokenVaultError):
    """Authentication tag mismatch: tampered data or wrong key."""


def generate_encryption_key() -> str:
    """Return a new random 256-bit key as 64 hex characters."""
    return secrets.token_hex(KEY_LENGTH)


class TokenVault:
    """AES-256-GCM encrypt/decrypt bound to one key."""

    def __init__(self, hex_key: str):
        if not hex_key:
            raise EncryptionKeyNotConfiguredError(
                "PLAID_ENCRYPTION_KEY is not configured"
            )
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as exc:
            raise EncryptionKeyNotConfiguredError(
                "PLAID_ENCRYPTION_KEY must be hex encoded"
            ) from exc
        if len(key) != KEY_LENGTH:
            raise EncryptionKeyNotConfiguredError(
                f"PLAID_ENCRYPTION_KEY must be {KEY_LENGTH * 2} hex characters "
                f"({KEY_LENGTH} bytes), got {len(key)} bytes"
            )
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token; every call uses a new random nonce."""
        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, encrypted: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        Raises:
            InvalidTokenFormatError: wrong segment count, bad hex, or a
                nonce/tag of the wrong length. Checked before any
                cryptographic work happens.
            TokenAuthenticationError: the tag does not verify.
        """
        parts = encrypted.split(":") if isinstance(encrypted, str) else []
        if len(parts) != 3:
            raise InvalidTokenFormatError(
                "Invalid encrypted token format: expected nonce:tag:ciphertext"
            )
        try:
            nonce, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError as exc:
            raise InvalidTokenFormatError(
                "Invalid encrypted token format: segments must be hex"
            ) from exc

        if len(nonce) != NONCE_LENGTH:
            raise InvalidTokenFormatError(
                f"Invalid nonce length: expected {NONCE_LENGTH} bytes, got {len(nonce)}"
            )
        if len(tag) != TAG_LENGTH:
            raise InvalidTokenFormatError(
                f"Invalid auth tag length: expected {TAG_LENGTH} bytes, got {len(tag)}"
            )

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise TokenAuthenticationError(
                "Access token failed authentication; data may have been tampered with"
            ) from exc
        return plaintext.decode("utf-8")


@lru_cache
def get_token_vault() -> TokenVault:
    """Process-wide vault built from ``settings.PLAID_ENCRYPTION_KEY``."""
    vault = TokenVault(settings.PLAID_ENCRYPTION_KEY)
    logger.info("Token vault initialised")
    return vault


def encrypt_token(plaintext: str) -> str:
    return get_token_vault().encrypt(plaintext)


def decrypt_token(encrypted: str) -> str:
    return get_token_vault().decrypt(encrypted)

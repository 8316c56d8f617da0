"""
Encrypted Store — encrypts values at rest before handing them to another store.

Format of a stored value (base64 text):
    [nonce 12B][encrypted_payload + tag 16B]
with the key derived as HKDF-SHA256(master_key, context).

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import secrets
import logging
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .base import SecretStore

logger = logging.getLogger("ledger.storage")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return it as base64 string."""
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte encryption key using HKDF-SHA256.

    Args:
        seed: Input key material (master key bytes).
        context: Context string for domain separation.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


class EncryptedStore:
    """Secret store wrapper applying AEAD encryption to every value."""

    def __init__(
        self,
        inner: SecretStore,
        master_key: bytes,
        context: str = "ledger-store",
        cipher: str = "aesgcm",
    ):
        if len(master_key) != KEY_LENGTH:
            raise ValueError(
                f"Master key must be exactly {KEY_LENGTH} bytes, "
                f"got {len(master_key)}"
            )
        if cipher not in _CIPHERS:
            raise ValueError(f"Unsupported cipher backend: {cipher}")
        self._inner = inner
        self._context = context
        self._cipher = _CIPHERS[cipher](derive_key(master_key, context))

    def _encrypt(self, key: str, value: Any) -> str:
        nonce = os.urandom(NONCE_SIZE)
        # the key name is bound as associated data so values cannot be swapped
        ct = self._cipher.encrypt(nonce, orjson.dumps(value), key.encode("utf-8"))
        return base64.b64encode(nonce + ct).decode("ascii")

    def _decrypt(self, key: str, stored: str) -> Any:
        raw = base64.b64decode(stored)
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise ValueError(
                f"ciphertext too short: {len(raw)} bytes "
                f"(minimum {NONCE_SIZE + TAG_SIZE})"
            )
        plaintext = self._cipher.decrypt(
            raw[:NONCE_SIZE], raw[NONCE_SIZE:], key.encode("utf-8")
        )
        return orjson.loads(plaintext)

    async def get(self, key: str, default: Any = None) -> Any:
        stored = await self._inner.get(key)
        if stored is None:
            return default
        try:
            return self._decrypt(key, stored)
        except (InvalidTag, ValueError, TypeError) as err:
            logger.error("Failed to decrypt stored value key=%s: %s", key, type(err).__name__)
            return default

    async def set(self, key: str, value: Any) -> bool:
        try:
            stored = self._encrypt(key, value)
        except TypeError as err:
            logger.error("Failed to encrypt value key=%s: %s", key, err)
            return False
        return await self._inner.set(key, stored)

    async def delete(self, key: str) -> bool:
        return await self._inner.delete(key)

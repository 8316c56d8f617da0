"""
Identity Derivation — secrets, bundle hashes and salted lookup keys.

All identity material is derived with SHAKE-256:
- Secret: SHAKE256("<username>:<password>:<salt>") → 2048 hex chars
- Bundle: SHAKE256(secret) → 64 hex chars, the user's ledger record id
- Lookup keys: SHAKE256("<data>:<salt>") so usernames never reach
  the ledger in cleartext.

Security Note:
    Never log secrets, passwords or raw usernames. Bundle hashes
    may be logged.
"""
import math
import secrets
import logging
from typing import Optional

from cryptography.hazmat.primitives import hashes

from .exceptions import ConfigurationError

logger = logging.getLogger("ledger.identity")

SECRET_LENGTH = 2048
BUNDLE_LENGTH = 64
HEX_ALPHABET = 'abcdef0123456789'


def shake256_hex(data: str, length: int) -> str:
    """Return ``length`` hex characters of the SHAKE-256 digest of ``data``.

    Args:
        data: Text to hash (UTF-8 encoded).
        length: Number of hex characters to return.

    Returns:
        Lower-case hex string of exactly ``length`` characters.
    """
    if length < 1:
        raise ValueError(f"Hash length must be positive, got {length}")
    digest = hashes.Hash(hashes.SHAKE256(digest_size=math.ceil(length / 2)))
    digest.update(data.encode("utf-8"))
    return digest.finalize().hex()[:length]


def random_string(length: int = 256, alphabet: str = HEX_ALPHABET) -> str:
    """Generate a random string using a CSPRNG."""
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def generate_secret(seed: Optional[str] = None, length: int = SECRET_LENGTH) -> str:
    """Derive a secret from a seed, or generate a random one without a seed."""
    if seed:
        return shake256_hex(seed, length)
    return random_string(length)


def generate_bundle_hash(secret: str) -> str:
    """Derive the bundle hash (ledger identity) of a secret."""
    return shake256_hex(secret, BUNDLE_LENGTH)


class IdentityDeriver:
    """Derives identity material using a fixed, process-wide salt.

    Every method is pure: the same inputs and salt always give the
    same output.
    """

    def __init__(self, salt: Optional[str] = None):
        self._salt = salt

    @property
    def salted(self) -> bool:
        return bool(self._salt)

    def _require_salt(self, operation: str) -> str:
        if not self._salt:
            logger.error("No salt configured for %s", operation)
            raise ConfigurationError(
                f"{operation}: salt is required for secure hashing"
            )
        return self._salt

    def derive_secret(self, username: str, password: str) -> str:
        """Derive the login secret for a username/password combination.

        Raises:
            ConfigurationError: If no salt is configured.
        """
        salt = self._require_salt("derive_secret")
        return generate_secret(f"{username}:{password}:{salt}")

    def derive_bundle_id(self, secret: str) -> str:
        """Return the bundle id (ledger record id) for ``secret``."""
        if not secret:
            raise ValueError("Cannot derive a bundle id from an empty secret")
        return generate_bundle_hash(secret)

    def fingerprint(self, secret: Optional[str]) -> Optional[str]:
        """Short unsalted fingerprint used to bind tokens to a secret."""
        if not secret:
            return None
        return shake256_hex(f"fingerprint:{secret}", 32)

    def hash(self, data: str, length: int = 64, salted: bool = True) -> str:
        """Hash a string, optionally with the configured salt.

        Args:
            data: Value to hash (e.g. a username).
            length: Number of hex characters to return.
            salted: Append the process salt before hashing.

        Raises:
            ConfigurationError: If ``salted`` and no salt is configured.
        """
        if salted:
            salt = self._require_salt("hash")
            return shake256_hex(f"{data}:{salt}", length)
        return shake256_hex(f"{data}", length)

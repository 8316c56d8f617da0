"""Secret Store — credential persistence for ledger sessions.

Security Note (Threat Model):
    ``MemoryStore`` and ``RedisStore`` keep the raw secret readable by
    anyone with access to the process or the redis instance. Wrap them
    with ``EncryptedStore`` when the backend is shared.
"""

from .base import SecretStore, MemoryStore, validate_key
from .redis import RedisStore
from .encrypted import EncryptedStore, generate_master_key

__all__ = [
    "SecretStore",
    "MemoryStore",
    "RedisStore",
    "EncryptedStore",
    "generate_master_key",
    "validate_key",
]

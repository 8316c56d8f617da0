"""
Secret Store — scoped key-value persistence for session credentials.

Provides the contract used by the auth session and the controller:
- ``get(key, default)`` — return a stored value or default
- ``set(key, value)`` — persist a value, returns an ack
- ``delete(key)`` — remove a value, returns an ack

A failing operation reports ``False`` (or the default) and never
corrupts other keys.
"""
import logging
from typing import Any, Protocol

import orjson

logger = logging.getLogger("ledger.storage")


def validate_key(key: str) -> None:
    """Validate a store key name.

    Raises:
        ValueError: If key is empty, too long, or contains ':'.
    """
    if not key:
        raise ValueError("Store key cannot be empty")
    if len(key) > 255:
        raise ValueError("Store key cannot exceed 255 characters")
    if ":" in key:
        raise ValueError("Store key cannot contain ':'")


class SecretStore(Protocol):
    """Contract for credential persistence."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> bool: ...

    async def delete(self, key: str) -> bool: ...


class MemoryStore:
    """Process-local store.

    Values are kept serialized so later mutation of the caller's
    object does not leak into the store.
    """

    def __init__(self):
        self._data: dict[str, bytes] = {}

    async def get(self, key: str, default: Any = None) -> Any:
        validate_key(key)
        raw = self._data.get(key)
        if raw is None:
            return default
        return orjson.loads(raw)

    async def set(self, key: str, value: Any) -> bool:
        validate_key(key)
        try:
            self._data[key] = orjson.dumps(value)
        except TypeError as err:
            logger.error("Store set failed: key=%s: %s", key, err)
            return False
        logger.debug("Store set: key=%s", key)
        return True

    async def delete(self, key: str) -> bool:
        validate_key(key)
        self._data.pop(key, None)
        logger.debug("Store delete: key=%s", key)
        return True

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._data

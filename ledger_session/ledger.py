"""
Ledger Client contract — the RPC surface Ledger Session depends on.

The client itself (wire protocol, signing, routing between endpoints)
is external. Responses are plain mappings, or JSON text that decodes
to one.
"""
from typing import Any, Optional, Protocol, Union
from collections.abc import Callable, Mapping, Sequence

import orjson

from .exceptions import TransportError


class LedgerClient(Protocol):
    """Capability used by the auth session and the meta models."""

    async def query_meta(
        self,
        meta_type: str,
        meta_id: Optional[str] = None,
        filters: Optional[Sequence[Mapping[str, Any]]] = None,
        query_args: Optional[Mapping[str, Any]] = None,
        latest: bool = True,
    ) -> Any:
        """Return ``{"instances": [...], "paginatorInfo": {...}}``."""

    async def create_meta(
        self, meta_type: str, meta_id: str, meta: Mapping[str, str]
    ) -> Any:
        """Return ``{"success": bool, "message": str | None}``."""

    async def request_auth_token(self, secret: Optional[str]) -> Any:
        """Return ``{"token": str, "expiresInMs": int}``."""

    def set_secret(self, secret: Optional[str]) -> None: ...

    def has_secret(self) -> bool: ...

    def set_auth_token(self, token: Optional[str]) -> None: ...

    def get_auth_token(self) -> Optional[str]: ...

    async def deinitialize(self) -> None: ...


# Builds a client bound to the live endpoint set.
ClientFactory = Callable[[list[str]], LedgerClient]


def response_payload(response: Union[Mapping, str, bytes, None]) -> dict:
    """Normalize a ledger response into a dict.

    Raises:
        TransportError: If the response is missing or not a JSON object.
    """
    if response is None:
        raise TransportError("Ledger returned an empty response")
    if isinstance(response, (str, bytes)):
        try:
            response = orjson.loads(response)
        except orjson.JSONDecodeError as err:
            raise TransportError(f"Ledger returned invalid JSON: {err}") from err
    if not isinstance(response, Mapping):
        raise TransportError(
            f"Ledger returned an unexpected payload: {type(response).__name__}"
        )
    return dict(response)

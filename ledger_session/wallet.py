"""
Wallet helpers — encrypt and decrypt strings through a wallet capability.

The wallet performs the actual cryptography; these helpers only wrap
its output in a base64(JSON) envelope suitable for meta values.
"""
import base64
import binascii
import logging
from typing import Any, Optional, Protocol, Union
from collections.abc import Sequence

import orjson

logger = logging.getLogger("ledger.wallet")


class EncryptionWallet(Protocol):
    """Wallet capability able to encrypt for several public keys."""

    def get_my_enc_public_key(self) -> str: ...

    def encrypt_my_message(self, data: Any, *public_keys: str) -> Any: ...

    def decrypt_message(self, payload: Any) -> Any: ...


def encrypt_string(
    data: Any,
    wallet: EncryptionWallet,
    public_keys: Union[str, Sequence[str]] = (),
) -> Optional[str]:
    """Encrypt ``data`` for the wallet owner and for ``public_keys``.

    Returns:
        base64 envelope, or None when there is nothing to encrypt.
    """
    if not data:
        return None
    if isinstance(public_keys, str):
        public_keys = [public_keys]
    encrypted = wallet.encrypt_my_message(
        data, wallet.get_my_enc_public_key(), *public_keys
    )
    return base64.b64encode(orjson.dumps(encrypted)).decode("ascii")


def decrypt_string(
    data: Optional[str],
    wallet: EncryptionWallet,
    fallback: Any = None,
) -> Any:
    """Decrypt an envelope produced by :func:`encrypt_string`.

    Data that is not an envelope is returned as the fallback
    (or unchanged when no fallback is given).
    """
    if not data:
        return None
    try:
        payload = orjson.loads(base64.b64decode(data, validate=True))
    except (binascii.Error, ValueError) as err:
        # probably not actually encrypted
        logger.debug("Value is not an encrypted envelope: %s", err)
        return fallback if fallback is not None else data
    decrypted = wallet.decrypt_message(payload)
    return decrypted if decrypted is not None else fallback

"""Ledger meta models."""

from .meta import (
    NULL_SENTINEL,
    MetaFilter,
    MetaModel,
    MetaQueryResult,
    PaginatorInfo,
    QueryArgs,
    SaveResult,
    TypeRegistry,
    aggregate_metas,
    default_registry,
    serialize_meta_value,
)
from .bundle import Invite, WalletBundle

__all__ = [
    "NULL_SENTINEL",
    "MetaFilter",
    "MetaModel",
    "MetaQueryResult",
    "PaginatorInfo",
    "QueryArgs",
    "SaveResult",
    "TypeRegistry",
    "aggregate_metas",
    "default_registry",
    "serialize_meta_value",
    "Invite",
    "WalletBundle",
]

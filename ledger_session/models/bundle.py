"""User profile record, keyed by the user's bundle hash."""
from typing import Optional, Union
from collections.abc import Sequence

from .meta import MetaFilter, MetaModel, MetaQueryResult, QueryArgs, TypeRegistry
from ..ledger import LedgerClient


def _match_any(key: str, values: Union[str, Sequence[str]], comparison: str) -> list[MetaFilter]:
    if isinstance(values, str):
        return [MetaFilter(key=key, value=values, comparison=comparison)]
    return [
        MetaFilter(key=key, value=value, comparison=comparison, criterion='OR')
        for value in values
    ]


class WalletBundle(MetaModel):
    meta_type = 'walletBundle'

    async def query(
        self,
        client: LedgerClient,
        bundle_hash: Optional[str] = None,
        username_hash: Optional[str] = None,
    ) -> bool:
        """Load a user profile by bundle hash and/or hashed username."""
        filters = []
        if username_hash:
            filters.append(MetaFilter(key='usernameHash', value=username_hash))
        return await super().query(client, meta_id=bundle_hash, filters=filters)

    @classmethod
    async def query_all(
        cls,
        client: LedgerClient,
        bundle_hash: Optional[str] = None,
        bundle_hashes: Optional[Union[str, Sequence[str]]] = None,
        app_slug: Optional[str] = None,
        username_hashes: Optional[Union[str, Sequence[str]]] = None,
        public_name: Optional[str] = None,
        ref_hash: Optional[str] = None,
        query_args: Optional[QueryArgs] = None,
        registry: Optional[TypeRegistry] = None,
    ) -> MetaQueryResult:
        """Retrieve a list of user profiles.

        Args:
            client: Ledger client.
            bundle_hash: Exact bundle to look up.
            bundle_hashes: Partial match on one or several bundle hashes.
            app_slug: Only profiles registered by this application.
            username_hashes: One or several hashed usernames.
            public_name: Partial match on the public name.
            ref_hash: Profiles referred by this hash.
            query_args: Pagination and ordering.
            registry: Type registry, defaults to the process-wide one.
        """
        filters = []
        if app_slug:
            filters.append(MetaFilter(key='appSlug', value=app_slug))
        if public_name:
            filters.append(MetaFilter(key='publicName', value=public_name, comparison='=~'))
        if ref_hash:
            filters.append(MetaFilter(key='refhash', value=ref_hash))
        if username_hashes:
            filters.extend(_match_any('usernameHash', username_hashes, '='))
        if bundle_hashes:
            filters.extend(_match_any('metaId', bundle_hashes, '=~'))
        return await super().query_all(
            client,
            meta_id=bundle_hash,
            filters=filters,
            query_args=query_args,
            registry=registry,
        )


class Invite(MetaModel):
    meta_type = 'invite'

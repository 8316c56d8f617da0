"""Shared fixtures: an in-memory ledger and a connected controller."""
import asyncio
from typing import Any, Optional

import pytest

from ledger_session.conf import LedgerSettings
from ledger_session.controller import IdentityController
from ledger_session.models import TypeRegistry
from ledger_session.storage import MemoryStore


class FakeLedgerClient:
    """In-memory ledger implementing the client capability."""

    def __init__(self, token_ttl_ms: int = 60_000):
        self.token_ttl_ms = token_ttl_ms
        self.records: dict[tuple[str, str], dict] = {}
        self.queries: list[dict] = []
        self.created: list[dict] = []
        self.token_requests: list[Optional[str]] = []
        self.secret: Optional[str] = None
        self.auth_token: Optional[str] = None
        self.deinitialized = 0
        self.fail_query = False
        self.fail_token = False
        self.reject_create = False
        self.token_gate: Optional[asyncio.Event] = None

    def add_record(self, meta_type: str, meta_id: str, events: list, created_at: str = '1700000000000'):
        record = self.records.setdefault(
            (meta_type, meta_id), {'createdAt': created_at, 'events': []}
        )
        record['events'].extend(events)

    @staticmethod
    def _matches(meta_id: str, events: list, flt: dict) -> bool:
        if flt['key'] == 'metaId':
            current = meta_id
        else:
            current = None
            for event in events:
                if event['key'] == flt['key']:
                    current = event['value']
        if current is None:
            return False
        if flt.get('comparison', '=') == '=~':
            return flt['value'] in current
        return current == flt['value']

    async def query_meta(
        self,
        meta_type: str,
        meta_id: Optional[str] = None,
        filters: Optional[list] = None,
        query_args: Optional[dict] = None,
        latest: bool = True,
    ) -> Any:
        self.queries.append({
            'meta_type': meta_type,
            'meta_id': meta_id,
            'filters': filters or [],
            'query_args': query_args,
            'latest': latest,
        })
        if self.fail_query:
            raise ConnectionError("ledger unreachable")
        filters = filters or []
        required = [f for f in filters if f.get('criterion') != 'OR']
        optional = [f for f in filters if f.get('criterion') == 'OR']
        instances = []
        for (rtype, rid), record in self.records.items():
            if rtype != meta_type or (meta_id and rid != meta_id):
                continue
            events = record['events']
            if not all(self._matches(rid, events, f) for f in required):
                continue
            if optional and not any(self._matches(rid, events, f) for f in optional):
                continue
            instances.append({
                'metaId': rid,
                'createdAt': record['createdAt'],
                'metas': [dict(e) for e in events],
            })
        result = {'instances': instances}
        if query_args:
            result['paginatorInfo'] = {
                'currentPage': query_args['page'],
                'total': len(instances),
            }
        return result

    async def create_meta(self, meta_type: str, meta_id: str, meta: dict) -> Any:
        self.created.append({'meta_type': meta_type, 'meta_id': meta_id, 'meta': dict(meta)})
        if self.reject_create:
            return {'success': False, 'message': 'rejected by validator'}
        self.add_record(meta_type, meta_id, [{'key': k, 'value': v} for k, v in meta.items()])
        return {'success': True}

    async def request_auth_token(self, secret: Optional[str]) -> Any:
        self.token_requests.append(secret)
        if self.token_gate is not None:
            await self.token_gate.wait()
        if self.fail_token:
            raise ConnectionError("token endpoint unreachable")
        return {
            'token': f'token-{len(self.token_requests)}',
            'expiresInMs': self.token_ttl_ms,
        }

    def set_secret(self, secret: Optional[str]) -> None:
        self.secret = secret

    def has_secret(self) -> bool:
        return self.secret is not None

    def set_auth_token(self, token: Optional[str]) -> None:
        self.auth_token = token

    def get_auth_token(self) -> Optional[str]:
        return self.auth_token

    async def deinitialize(self) -> None:
        self.deinitialized += 1
        self.secret = None
        self.auth_token = None


class StaticProber:
    """Prober stand-in answering with a fixed live set."""

    def __init__(self, live: Optional[list] = None):
        self.live = live
        self.calls: list[list] = []

    async def probe(self, uris):
        self.calls.append(list(uris))
        if self.live is None:
            return list(uris)
        return [uri for uri in uris if uri in self.live]


@pytest.fixture
def ledger():
    return FakeLedgerClient()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def settings():
    return LedgerSettings(
        salt='SALT',
        app_slug='test-app',
        server_uris=['http://node-a:8080/graphql', 'http://node-b:8080/graphql'],
    )


@pytest.fixture
def registry(settings):
    return TypeRegistry.from_settings(settings)


@pytest.fixture
def prober():
    return StaticProber()


@pytest.fixture
async def controller(settings, store, ledger, prober):
    ctrl = IdentityController(settings, store, lambda uris: ledger, prober=prober)
    yield ctrl
    # cancel any pending renewal
    await ctrl.logout()


@pytest.fixture
async def connected(controller):
    assert await controller.connect()
    return controller


@pytest.fixture
def make_controller(ledger, store):
    """Build a controller bound to the fake ledger with custom settings."""
    def _make(**overrides):
        values = {
            'salt': 'SALT',
            'app_slug': 'test-app',
            'server_uris': ['http://node-a:8080/graphql'],
        }
        values.update(overrides)
        return IdentityController(
            LedgerSettings(**values), store, lambda uris: ledger, prober=StaticProber()
        )
    return _make

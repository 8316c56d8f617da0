"""
Tests for secret stores.

Tests cover:
- Key validation
- MemoryStore isolation from caller mutation
- RedisStore namespacing, TTL and failure reporting
- EncryptedStore confidentiality, tamper detection and wrong keys
"""
import base64
import secrets

import pytest

from ledger_session.storage import (
    EncryptedStore,
    MemoryStore,
    RedisStore,
    generate_master_key,
    validate_key,
)


class FakeRedis:
    """Minimal asyncio redis stand-in."""

    def __init__(self):
        self.data: dict = {}
        self.ttls: dict = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis down")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value):
        self._check()
        self.data[key] = value

    async def setex(self, key, ttl, value):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        self._check()
        self.data.pop(key, None)


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def master_key():
    return secrets.token_bytes(32)


class TestValidateKey:

    @pytest.mark.parametrize('key', ['', 'a:b', 'x' * 256])
    def test_invalid(self, key):
        with pytest.raises(ValueError):
            validate_key(key)

    def test_valid(self):
        validate_key('authToken')


class TestMemoryStore:

    async def test_set_get_delete(self):
        store = MemoryStore()
        assert await store.set('secret', 's1')
        assert await store.get('secret') == 's1'
        assert 'secret' in store
        assert await store.delete('secret')
        assert await store.get('secret', 'gone') == 'gone'

    async def test_delete_missing_is_ack(self):
        assert await MemoryStore().delete('missing')

    async def test_isolated_from_mutation(self):
        store = MemoryStore()
        value = {'token': 't'}
        await store.set('authToken', value)
        value['token'] = 'changed'
        assert await store.get('authToken') == {'token': 't'}

    async def test_unserializable(self):
        store = MemoryStore()
        assert not await store.set('secret', object())
        assert store.keys() == []

    async def test_invalid_key(self):
        with pytest.raises(ValueError):
            await MemoryStore().get('a:b')


class TestRedisStore:

    async def test_namespaced(self, redis):
        store = RedisStore(redis, namespace='app')
        assert await store.set('secret', 's1')
        assert 'app:secret' in redis.data
        assert await store.get('secret') == 's1'
        assert await store.delete('secret')
        assert await store.get('secret') is None

    async def test_ttl(self, redis):
        store = RedisStore(redis, ttl=60)
        await store.set('authToken', 't')
        assert redis.ttls == {'ledger:authToken': 60}

    async def test_failures_are_reported(self, redis):
        store = RedisStore(redis)
        await store.set('secret', 's1')
        redis.fail = True
        assert not await store.set('secret', 's2')
        assert not await store.delete('secret')
        assert await store.get('secret', 'fallback') == 'fallback'
        redis.fail = False
        assert await store.get('secret') == 's1'

    async def test_invalid_json(self, redis):
        redis.data['ledger:secret'] = b'not json'
        assert await RedisStore(redis).get('secret') is None


class TestEncryptedStore:

    @pytest.mark.parametrize('cipher', ['aesgcm', 'chacha20'])
    async def test_round_trip(self, master_key, cipher):
        inner = MemoryStore()
        store = EncryptedStore(inner, master_key, cipher=cipher)
        assert await store.set('secret', 'top-secret')
        assert await store.get('secret') == 'top-secret'
        raw = await inner.get('secret')
        assert 'top-secret' not in raw
        assert 'top-secret' not in base64.b64decode(raw).decode('latin-1')

    async def test_tampered_value(self, master_key):
        inner = MemoryStore()
        store = EncryptedStore(inner, master_key)
        await store.set('secret', 'top-secret')
        raw = bytearray(base64.b64decode(await inner.get('secret')))
        raw[-1] ^= 0x01
        await inner.set('secret', base64.b64encode(bytes(raw)).decode('ascii'))
        assert await store.get('secret', 'default') == 'default'

    async def test_swapped_keys(self, master_key):
        inner = MemoryStore()
        store = EncryptedStore(inner, master_key)
        await store.set('secret', 's1')
        await inner.set('username', await inner.get('secret'))
        assert await store.get('username') is None

    async def test_wrong_master_key(self, master_key):
        inner = MemoryStore()
        await EncryptedStore(inner, master_key).set('secret', 's1')
        other = EncryptedStore(inner, secrets.token_bytes(32))
        assert await other.get('secret') is None

    async def test_other_context(self, master_key):
        inner = MemoryStore()
        await EncryptedStore(inner, master_key, context='a').set('secret', 's1')
        assert await EncryptedStore(inner, master_key, context='b').get('secret') is None

    async def test_short_ciphertext(self, master_key):
        inner = MemoryStore()
        await inner.set('secret', base64.b64encode(b'short').decode('ascii'))
        assert await EncryptedStore(inner, master_key).get('secret') is None

    async def test_delete(self, master_key):
        inner = MemoryStore()
        store = EncryptedStore(inner, master_key)
        await store.set('secret', 's1')
        assert await store.delete('secret')
        assert await store.get('secret') is None

    def test_invalid_master_key(self):
        with pytest.raises(ValueError):
            EncryptedStore(MemoryStore(), b'short')

    def test_invalid_cipher(self, master_key):
        with pytest.raises(ValueError):
            EncryptedStore(MemoryStore(), master_key, cipher='rot13')

    def test_generate_master_key(self):
        key = base64.b64decode(generate_master_key())
        assert len(key) == 32

"""
Tests for the endpoint prober against a real local aiohttp server.
"""
import time
import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from ledger_session.endpoints import EndpointProber


async def _ok(request):
    return web.Response(text='ok')


async def _slow(request):
    await asyncio.sleep(1.0)
    return web.Response(text='late')


async def _broken(request):
    return web.Response(status=500)


@pytest.fixture
async def server():
    app = web.Application()
    app.router.add_get('/a', _ok)
    app.router.add_get('/b', _slow)
    app.router.add_get('/c', _ok)
    app.router.add_get('/broken', _broken)
    srv = test_utils.TestServer(app)
    await srv.start_server()
    yield srv
    await srv.close()


class TestEndpointProber:

    async def test_excludes_timeout(self, server):
        prober = EndpointProber(timeout=0.2)
        a, b, c = (str(server.make_url(p)) for p in ('/a', '/b', '/c'))
        started = time.monotonic()
        live = await prober.probe([a, b, c])
        assert live == [a, c]
        assert time.monotonic() - started < 0.9

    async def test_excludes_error_status(self, server):
        prober = EndpointProber(timeout=1.0)
        a, broken = str(server.make_url('/a')), str(server.make_url('/broken'))
        assert await prober.probe([broken, a]) == [a]

    async def test_unreachable_endpoint(self, server):
        prober = EndpointProber(timeout=1.0)
        a = str(server.make_url('/a'))
        assert await prober.probe(['http://127.0.0.1:1/graphql', a]) == [a]

    async def test_none_live_is_empty(self):
        prober = EndpointProber(timeout=0.5)
        assert await prober.probe(['http://127.0.0.1:1/graphql']) == []

    async def test_empty_input(self):
        assert await EndpointProber().probe([]) == []

    async def test_duplicates_probed_once(self, server):
        prober = EndpointProber(timeout=1.0)
        a = str(server.make_url('/a'))
        assert await prober.probe([a, a]) == [a]

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            EndpointProber(timeout=0)

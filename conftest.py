"""
Shared fixtures: a scriptable fake upstream orders API and a proxy client factory.
"""

import asyncio

import pytest
from aiohttp import web

from orders_proxy import OrdersProxy

ORIGIN = 'http://localhost:3000'


class FakeUpstream:
    """Records every call and answers with canned (status, body) pairs per path."""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.delay = 0
        self.base_url = None

    async def handle(self, request: web.Request) -> web.Response:
        self.calls.append(request.path_qs)
        if self.delay:
            await asyncio.sleep(self.delay)
        status, body = self.responses.get(request.path, (404, b'{"error": "not found"}'))
        return web.Response(status=status, body=body, content_type='application/json')

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/api/v1/orders', self.handle)
        app.router.add_get('/api/v1/orders/{id}', self.handle)
        return app


@pytest.fixture
async def upstream(aiohttp_server):
    fake = FakeUpstream()
    server = await aiohttp_server(fake.app())
    fake.base_url = str(server.make_url('/api/v1'))
    return fake


@pytest.fixture
def make_client(aiohttp_client, upstream):
    async def factory(**kwargs):
        kwargs.setdefault('upstream_url', upstream.base_url)
        kwargs.setdefault('allowed_origin', ORIGIN)
        kwargs.setdefault('upstream_timeout', 5)
        kwargs.setdefault('pass_through_status', False)
        proxy = OrdersProxy(**kwargs)
        client = await aiohttp_client(proxy.app)
        return proxy, client

    return factory

"""
Server Binder (assay/server.py)

Ephemeral servers must be reachable inside the bound scope and gone
afterwards; borrowed endpoints must never be closed.
"""

import types

import httpx
import pytest
import uvicorn

from assay.config import HarnessConfig
from assay.faults import BindFault
from assay.server import Endpoint, ServerBinder


# ============================================================================
# Endpoint
# ============================================================================

class TestEndpoint:

    def test_url(self):
        assert Endpoint("http", "127.0.0.1", 8000).url == "http://127.0.0.1:8000"

    def test_url_without_port(self):
        assert Endpoint("https", "example.com", None).url == "https://example.com"

    def test_ipv6_host(self):
        assert Endpoint("http", "::1", 80).url == "http://[::1]:80"

    def test_resolve_joins_path(self):
        ep = Endpoint("http", "127.0.0.1", 8000, base_path="/api")
        assert ep.resolve("/users") == "http://127.0.0.1:8000/api/users"
        assert ep.resolve("users") == "http://127.0.0.1:8000/api/users"

    def test_resolve_absolute_passthrough(self):
        ep = Endpoint("http", "127.0.0.1", 8000)
        assert ep.resolve("http://other:1/x") == "http://other:1/x"

    def test_from_url(self):
        ep = Endpoint.from_url("http://localhost:9000/base/")
        assert (ep.scheme, ep.host, ep.port, ep.base_path) == ("http", "localhost", 9000, "/base")
        assert ep.owned is False

    def test_from_url_rejects_non_http(self):
        with pytest.raises(BindFault):
            Endpoint.from_url("ftp://example.com/")

    def test_equality_ignores_owned(self):
        assert Endpoint("http", "h", 1, owned=True) == Endpoint("http", "h", 1)


# ============================================================================
# Ephemeral servers
# ============================================================================

class TestEphemeralServer:

    async def test_reachable_only_while_bound(self, app, binder, assert_unreachable):
        async with binder.bound(app) as endpoint:
            assert endpoint.owned
            assert endpoint.host == "127.0.0.1"
            assert endpoint.port > 0
            async with httpx.AsyncClient() as client:
                resp = await client.get(endpoint.resolve("/"))
            assert resp.json() == {"ok": True}

        assert binder.listens == 1
        assert binder.closes == 1
        await assert_unreachable(endpoint.resolve("/"))

    async def test_released_on_error(self, app, binder, assert_unreachable):
        with pytest.raises(RuntimeError):
            async with binder.bound(app) as endpoint:
                raise RuntimeError("boom")
        assert binder.closes == 1
        await assert_unreachable(endpoint.resolve("/"))

    async def test_distinct_ports(self, app, binder):
        first = await binder.bind(app)
        second = await binder.bind(app)
        try:
            assert first.port != second.port
        finally:
            await binder.release(first)
            await binder.release(second)
        assert binder.closes == 2

    async def test_release_twice_is_noop(self, app, binder):
        endpoint = await binder.bind(app)
        await binder.release(endpoint)
        await binder.release(endpoint)
        assert binder.closes == 1

    async def test_wsgi_application(self):
        def wsgi_app(environ, start_response):
            start_response("200 OK", [("Content-Type", "text/plain")])
            return [b"wsgi ok"]

        binder = ServerBinder(HarnessConfig(interface="wsgi", lifespan="off"))
        async with binder.bound(wsgi_app) as endpoint:
            async with httpx.AsyncClient() as client:
                resp = await client.get(endpoint.resolve("/"))
        assert resp.text == "wsgi ok"

    async def test_app_attribute_unwrapped(self, app, binder):
        wrapper = types.SimpleNamespace(app=app)
        async with binder.bound(wrapper) as endpoint:
            assert endpoint.owned
        assert binder.listens == 1


# ============================================================================
# Borrowed endpoints
# ============================================================================

class TestBorrowedEndpoint:

    async def test_live_uvicorn_server_not_closed(self, live_server, binder):
        async with binder.bound(live_server) as endpoint:
            assert not endpoint.owned
        assert binder.listens == 0
        assert binder.closes == 0
        async with httpx.AsyncClient() as client:
            resp = await client.get(endpoint.resolve("/"))
        assert resp.status_code == 200

    async def test_url_string(self, binder):
        endpoint = await binder.bind("http://127.0.0.1:5555")
        assert endpoint == Endpoint("http", "127.0.0.1", 5555)
        await binder.release(endpoint)
        assert binder.listens == 0

    async def test_httpx_url(self, binder):
        endpoint = await binder.bind(httpx.URL("https://example.com/api"))
        assert endpoint.url == "https://example.com/api"

    async def test_server_address_object(self, binder):
        listening = types.SimpleNamespace(server_address=("127.0.0.1", 8123))
        endpoint = await binder.bind(listening)
        assert endpoint == Endpoint("http", "127.0.0.1", 8123)
        assert not endpoint.owned


# ============================================================================
# Bind failures
# ============================================================================

class TestBindFailures:

    async def test_unsupported_object(self, binder):
        with pytest.raises(BindFault):
            await binder.bind(object())

    async def test_unstarted_uvicorn_server(self, app, binder):
        server = uvicorn.Server(uvicorn.Config(app))
        with pytest.raises(BindFault):
            await binder.bind(server)

    async def test_unimportable_app_string(self, binder):
        with pytest.raises(BindFault) as exc_info:
            await binder.bind("assay_no_such_module:app")
        assert exc_info.value.code == "BIND_FAILED"
        assert binder.endpoints == []

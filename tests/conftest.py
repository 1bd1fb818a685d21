"""
Shared test fixtures and helpers for the Assay test suite.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest
import uvicorn

from assay.faults import BindFault
from assay.server import ServerBinder

# Register Assay pytest fixtures
from assay.fixtures import harness_config, settings_override  # noqa: F401


MULTIPART_BOUNDARY = "test-boundary-123456789"
MULTIPART_PAYLOAD = (
    f"--{MULTIPART_BOUNDARY}\r\n"
    'Content-Disposition: form-data; name="errors"\r\n\r\n'
    f"there was an error\r\n--{MULTIPART_BOUNDARY}--\r\n"
)


# ============================================================================
# Demo ASGI application
# ============================================================================


class DemoApp:
    """
    Raw ASGI application exercising everything the harness inspects.

    ``hits`` counts HTTP requests received, per path.
    """

    def __init__(self):
        self.hits: Dict[str, int] = {}

    async def __call__(self, scope, receive, send):
        if scope["type"] == "lifespan":
            await self._lifespan(receive, send)
            return
        if scope["type"] != "http":
            return

        path = scope["path"]
        self.hits[path] = self.hits.get(path, 0) + 1
        body = await _read_body(receive)
        headers = {
            k.decode("latin-1"): v.decode("latin-1") for k, v in scope["headers"]
        }
        query = {
            key: values[0] if len(values) == 1 else values
            for key, values in parse_qs(scope["query_string"].decode(), keep_blank_values=True).items()
        }

        if path == "/":
            await _json(send, 200, {"ok": True})
        elif path == "/inspect":
            await _json(send, 200, {
                "method": scope["method"],
                "path": path,
                "query": query,
                "headers": headers,
                "body": body.decode("utf-8", "replace"),
            })
        elif path == "/echo":
            content_type = headers.get("content-type", "")
            if "json" in content_type and body:
                parsed: Any = json.loads(body)
            else:
                parsed = body.decode("utf-8", "replace")
            await _json(send, 200, {"body": parsed, "query": query})
        elif path == "/text":
            await _respond(send, 200, b"hello world", "text/plain; charset=utf-8")
        elif path == "/multipart":
            await _respond(
                send, 200, MULTIPART_PAYLOAD.encode(),
                f"multipart/form-data; boundary={MULTIPART_BOUNDARY}",
            )
        elif path == "/bad-json":
            await _respond(send, 200, b"{not json", "application/json")
        elif path == "/problem":
            await _respond(send, 422, b'{"title": "invalid"}', "application/problem+json")
        elif path == "/form":
            await _respond(send, 200, b"a=1&b=2&b=3", "application/x-www-form-urlencoded")
        elif path == "/login":
            await _json(send, 200, {"logged_in": True}, extra=[
                (b"set-cookie", b"session=abc123; Path=/; HttpOnly"),
                (b"set-cookie", b"theme=dark; Path=/"),
            ])
        elif path == "/logout":
            await _json(send, 200, {"logged_in": False}, extra=[
                (b"set-cookie", b"session=; Max-Age=0; Path=/"),
            ])
        elif path == "/logout-expires":
            await _json(send, 200, {"logged_in": False}, extra=[
                (b"set-cookie", b"session=; Path=/; Expires=Thu, 01 Jan 1970 00:00:00 GMT"),
            ])
        elif path == "/admin/login":
            await _json(send, 200, {"admin": True}, extra=[
                (b"set-cookie", b"admin=1; Path=/admin"),
                (b"set-cookie", b"tracker=1; Domain=example.com; Path=/"),
            ])
        elif path in ("/whoami", "/admin/whoami"):
            await _json(send, 200, {"cookie": headers.get("cookie")})
        elif path == "/redirect":
            await _respond(send, 302, b"", "text/plain", extra=[(b"location", b"/")])
        elif path == "/status":
            await _respond(send, int(query.get("code", "200")), b"", "text/plain")
        elif path == "/headers":
            await _json(send, 200, {}, extra=[(b"x-request-id", b"req-42")])
        elif path == "/slow":
            await asyncio.sleep(float(query.get("delay", "2")))
            await _json(send, 200, {"slow": True})
        else:
            await _json(send, 404, {"error": "not found"})

    async def _lifespan(self, receive, send):
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return


async def _read_body(receive) -> bytes:
    chunks: List[bytes] = []
    while True:
        message = await receive()
        if message["type"] != "http.request":
            break
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


async def _respond(send, status: int, body: bytes, content_type: str, extra: Optional[list] = None):
    headers = [
        (b"content-type", content_type.encode("latin-1")),
        (b"content-length", str(len(body)).encode()),
    ]
    headers.extend(extra or [])
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": body})


async def _json(send, status: int, data: Any, extra: Optional[list] = None):
    await _respond(send, status, json.dumps(data).encode(), "application/json", extra)


# ============================================================================
# Binder spy
# ============================================================================


class CountingBinder(ServerBinder):
    """ServerBinder that records every listen / close it performs."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.listens = 0
        self.closes = 0
        self.endpoints = []

    async def _listen(self, app):
        self.listens += 1
        endpoint = await super()._listen(app)
        self.endpoints.append(endpoint)
        return endpoint

    async def _close(self, endpoint, server, serve_task):
        self.closes += 1
        await super()._close(endpoint, server, serve_task)


async def _assert_unreachable(url: str) -> None:
    async with httpx.AsyncClient(timeout=2.0) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get(url)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def app():
    return DemoApp()


@pytest.fixture
def binder():
    return CountingBinder()


@pytest.fixture
def assert_unreachable():
    """Assert nothing accepts connections at a URL any more."""
    return _assert_unreachable


@pytest.fixture
async def live_server(app):
    """
    A uvicorn server started (and stopped) outside the harness.

    Requests against it must borrow the address and never close it.
    """
    config = uvicorn.Config(app, host="127.0.0.1", port=0, log_level="error", log_config=None)
    server = uvicorn.Server(config)
    serve_task = asyncio.create_task(server.serve())
    for _ in range(100):
        if server.started:
            break
        await asyncio.sleep(0.05)
    if not server.started:
        serve_task.cancel()
        raise BindFault("live server did not start")
    yield server
    server.should_exit = True
    await asyncio.wait_for(serve_task, timeout=5.0)

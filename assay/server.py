"""
Assay - Server Binder.

Turns an application into a reachable :class:`Endpoint` for the duration of
one request.  Applications that already listen somewhere are *borrowed* and
never closed; bare ASGI / WSGI callables are served by a :mod:`uvicorn`
server on an OS-assigned loopback port that lives exactly as long as the
request that started it.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Union

import httpx
import uvicorn

from .config import HarnessConfig, resolve_config
from .faults import BindFault

logger = logging.getLogger("assay.server")


@dataclass(frozen=True)
class Endpoint:
    """
    A reachable network address.

    ``owned`` endpoints were created by a :class:`ServerBinder` and are
    stopped by it on release; borrowed ones are left untouched.
    """

    scheme: str
    host: str
    port: Optional[int]
    base_path: str = ""
    owned: bool = field(default=False, compare=False)

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        netloc = host if self.port is None else f"{host}:{self.port}"
        return f"{self.scheme}://{netloc}{self.base_path}"

    def resolve(self, path: str) -> str:
        """Join *path* onto this endpoint (absolute URLs pass through)."""
        if path.startswith(("http://", "https://")):
            return path
        if path and not path.startswith("/"):
            path = "/" + path
        return self.url.rstrip("/") + path

    @classmethod
    def from_url(cls, url: Union[str, httpx.URL]) -> "Endpoint":
        parsed = httpx.URL(url)
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise BindFault(f"not an absolute http(s) URL: {str(url)!r}", application=url)
        return cls(
            scheme=parsed.scheme,
            host=parsed.host,
            port=parsed.port,
            base_path=parsed.path.rstrip("/"),
        )

    def __str__(self) -> str:
        return self.url


class ServerBinder:
    """
    Owns the bind / listen / close lifecycle scoped to one request.

    Usage::

        binder = ServerBinder()
        async with binder.bound(app) as endpoint:
            ...  # endpoint.url is reachable here

    ``bind`` / ``release`` are also public for callers that manage the
    scope themselves; each owned endpoint must be released exactly once.
    """

    def __init__(self, config: Optional[HarnessConfig] = None):
        self._config = config
        self._servers: Dict[Endpoint, tuple] = {}

    @property
    def config(self) -> HarnessConfig:
        return resolve_config(self._config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def bound(self, application: Any) -> AsyncIterator[Endpoint]:
        """Bind *application* and release it on every exit path."""
        endpoint = await self.bind(application)
        try:
            yield endpoint
        finally:
            await self.release(endpoint)

    async def bind(self, application: Any) -> Endpoint:
        """Return an endpoint for *application*, starting a server if needed."""
        borrowed = self._borrowed_endpoint(application)
        if borrowed is not None:
            logger.debug("Using borrowed endpoint %s", borrowed)
            return borrowed

        app = _unwrap(application)
        if not callable(app) and not isinstance(app, str):
            raise BindFault(
                f"unsupported application object {type(application).__name__}",
                application=application,
            )
        return await self._listen(app)

    async def release(self, endpoint: Endpoint) -> None:
        """Stop the server behind an owned endpoint (no-op for borrowed ones)."""
        if not endpoint.owned:
            return
        entry = self._servers.pop(endpoint, None)
        if entry is None:
            return
        server, serve_task = entry
        await self._close(endpoint, server, serve_task)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _borrowed_endpoint(self, application: Any) -> Optional[Endpoint]:
        if isinstance(application, Endpoint):
            return application
        if isinstance(application, httpx.URL) or (
            isinstance(application, str) and "://" in application
        ):
            return Endpoint.from_url(application)
        if isinstance(application, uvicorn.Server):
            if not application.started:
                raise BindFault("uvicorn.Server has not been started", application=application)
            return _endpoint_from_uvicorn(application, self.config.host)
        address = getattr(application, "server_address", None)
        if isinstance(address, tuple) and len(address) >= 2:
            scheme = "https" if getattr(application, "ssl_context", None) else "http"
            return Endpoint(scheme=scheme, host=str(address[0]), port=int(address[1]))
        return None

    async def _listen(self, app: Any) -> Endpoint:
        config = self.config
        uv_config = uvicorn.Config(
            app,
            host=config.host,
            port=0,
            interface=config.interface,
            lifespan=config.lifespan,
            log_level=config.log_level,
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=config.shutdown_timeout,
        )
        server = uvicorn.Server(uv_config)
        serve_task = asyncio.create_task(_serve(server))

        try:
            await self._wait_started(server, serve_task, config.startup_timeout)
        except BaseException:
            server.should_exit = True
            await _finish(serve_task, config.shutdown_timeout)
            raise

        sock = server.servers[0].sockets[0]
        port = sock.getsockname()[1]
        endpoint = Endpoint(scheme="http", host=config.host, port=port, owned=True)
        self._servers[endpoint] = (server, serve_task)
        logger.info("Ephemeral server listening on %s", endpoint)
        return endpoint

    async def _wait_started(self, server: uvicorn.Server, serve_task: asyncio.Task, timeout: float):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not server.started:
            if serve_task.done():
                reason = "server exited during startup"
                if not serve_task.cancelled() and serve_task.exception() is not None:
                    reason = f"{reason} ({serve_task.exception()!r})"
                elif not serve_task.cancelled() and serve_task.result() is not None:
                    reason = f"{reason} (exit code {serve_task.result()})"
                raise BindFault(reason, application=server.config.app)
            if loop.time() >= deadline:
                raise BindFault(
                    f"server did not start within {timeout}s",
                    application=server.config.app,
                )
            await asyncio.sleep(0.01)

    async def _close(self, endpoint: Endpoint, server: uvicorn.Server, serve_task: asyncio.Task):
        server.should_exit = True
        if not await _finish(serve_task, self.config.shutdown_timeout + 1.0):
            logger.warning("Ephemeral server %s did not stop in time; cancelled", endpoint)
        logger.info("Ephemeral server on %s closed", endpoint)


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------

async def _serve(server: uvicorn.Server) -> Any:
    # uvicorn reports bind and import failures with sys.exit(); SystemExit
    # must not leave the task.
    try:
        await server.serve()
    except SystemExit as exc:
        return exc.code
    return None


def _unwrap(application: Any) -> Any:
    """Return the ASGI/WSGI callable (or ``"module:attr"`` string) behind *application*."""
    if callable(application) or isinstance(application, str):
        return application
    inner = getattr(application, "app", None)
    if inner is not None and callable(inner):
        return inner
    return application


def _endpoint_from_uvicorn(server: uvicorn.Server, default_host: str) -> Endpoint:
    for srv in server.servers:
        for sock in srv.sockets:
            host, port = sock.getsockname()[:2]
            if host in ("0.0.0.0", "::"):
                host = default_host
            return Endpoint(scheme="http", host=host, port=port)
    raise BindFault("uvicorn.Server has no listening sockets", application=server)


async def _finish(task: asyncio.Task, timeout: float) -> bool:
    """
    Wait for *task* to end, cancelling it after *timeout*.

    Returns ``True`` when the task ended on its own.  Exceptions raised by
    the task (uvicorn exits startup failures with ``SystemExit``) are
    consumed here since they were already reported as a bind failure.
    """
    done, _ = await asyncio.wait({task}, timeout=timeout)
    clean = bool(done)
    if not clean:
        task.cancel()
        await asyncio.wait({task})
    if not task.cancelled():
        exc = task.exception()
        if exc is not None:
            logger.debug("Ephemeral server task ended with %r", exc)
    return clean

"""
Assay - Request builder and completion coordinator.

A :class:`Test` accumulates one request through a fluent surface, queues
expectations, and on dispatch drives bind -> send -> receive -> evaluate
-> release exactly once.  The outcome is published through a
:class:`Settlement` that both completion protocols observe:

    # awaitable
    response = await request(app).get("/").expect(200)

    # explicit callback
    request(app).get("/").expect(200).end(lambda err, res: ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .config import HarnessConfig, resolve_config
from .expectations import (
    BodyExpectation,
    Expectation,
    ExpectationQueue,
    HeaderExpectation,
    Pattern,
    PredicateExpectation,
    StatusExpectation,
)
from .faults import Fault, InvalidStateFault, TimeoutFault
from .pending import PendingRequest
from .response import Parser, Response
from .server import Endpoint, ServerBinder
from .settlement import Callback, Settlement
from .transport import Transport

logger = logging.getLogger("assay.builder")

_MISSING = object()

TYPE_ALIASES = {
    "json": "application/json",
    "form": "application/x-www-form-urlencoded",
    "urlencoded": "application/x-www-form-urlencoded",
    "text": "text/plain",
    "html": "text/html",
    "xml": "application/xml",
    "multipart": "multipart/form-data",
}


class TestState(str, Enum):
    BUILDING = "building"
    DISPATCHED = "dispatched"
    SETTLED = "settled"


class Test:
    """
    One HTTP request plus its ordered expectations.

    Request configuration is only allowed while ``BUILDING``.  Attaching
    a completion protocol (``end`` or ``await``) dispatches the request;
    attaching the second one joins the same exchange.  Expectations may
    still be queued while ``DISPATCHED``; they run once the response is
    fully received.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        app: Any,
        method: str,
        path: str,
        *,
        config: Optional[HarnessConfig] = None,
        binder: Optional[ServerBinder] = None,
        transport: Optional[Transport] = None,
        on_response: Optional[Callable[[Response], None]] = None,
        cookie_source: Optional[Callable[[str], Dict[str, str]]] = None,
    ):
        self._app = app
        self._config = config
        self._binder = binder or ServerBinder(config)
        self._transport = transport or Transport(config)
        self._on_response = on_response
        self._cookie_source = cookie_source
        self._pending = PendingRequest(method.upper(), path)
        self._expectations = ExpectationQueue()
        self._settlement = Settlement()
        self._state = TestState.BUILDING
        self._task: Optional[asyncio.Task] = None
        self._end_called = False
        self.endpoint: Optional[Endpoint] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> HarnessConfig:
        return resolve_config(self._config)

    @property
    def state(self) -> TestState:
        return self._state

    @property
    def method(self) -> str:
        return self._pending.method

    @property
    def path(self) -> str:
        return self._pending.path

    @property
    def expectations(self) -> ExpectationQueue:
        return self._expectations

    # ------------------------------------------------------------------
    # Request configuration
    # ------------------------------------------------------------------

    def _mutable(self, operation: str) -> PendingRequest:
        if self._state is not TestState.BUILDING:
            raise InvalidStateFault(operation, self._state)
        return self._pending

    def set(self, name: Union[str, Dict[str, str]], value: Optional[str] = None) -> "Test":
        """Set one header, or several from a mapping."""
        pending = self._mutable("set a header")
        items = _header_items(name, value)
        for key, val in items:
            pending.headers[key] = str(val)
        return self

    def unset(self, name: str) -> "Test":
        pending = self._mutable("unset a header")
        if name in pending.headers:
            del pending.headers[name]
        return self

    def type(self, content_type: str) -> "Test":
        """Set ``Content-Type`` (``"json"``, ``"form"`` ... are shorthands)."""
        return self.set("Content-Type", TYPE_ALIASES.get(content_type, content_type))

    def accept(self, content_type: str) -> "Test":
        return self.set("Accept", TYPE_ALIASES.get(content_type, content_type))

    def query(self, params: Union[str, Dict[str, Any]]) -> "Test":
        """Merge query parameters; a repeated key replaces the earlier value."""
        self._mutable("change the query").merge_query(params)
        return self

    def send(self, body: Any) -> "Test":
        """Set the body; successive mappings are merged."""
        self._mutable("set the body").merge_body(body)
        return self

    def field(self, name: str, value: Any) -> "Test":
        """Add a multipart form field."""
        self._mutable("add a field").fields.append((name, str(value)))
        return self

    def attach(
        self,
        name: str,
        content: Union[bytes, str, os.PathLike],
        filename: Optional[str] = None,
        content_type: str = "application/octet-stream",
    ) -> "Test":
        """
        Add a multipart file part.

        *content* is raw ``bytes``/``str`` or a path whose contents are read.
        """
        pending = self._mutable("attach a file")
        if isinstance(content, os.PathLike):
            path = Path(content)
            content = path.read_bytes()
            filename = filename or path.name
        pending.files.append((name, (filename or name, content, content_type)))
        return self

    def cookie(self, name: str, value: str) -> "Test":
        self._mutable("set a cookie").cookies[name] = value
        return self

    def auth(self, user: str, password: str) -> "Test":
        """HTTP basic authentication."""
        self._mutable("set credentials").auth = (user, password)
        return self

    def bearer(self, token: str) -> "Test":
        return self.set("Authorization", f"Bearer {token}")

    def redirects(self, count: int) -> "Test":
        """Follow up to *count* redirects (0 disables following)."""
        self._mutable("change redirects").redirects = count
        return self

    def timeout(self, seconds: Optional[float]) -> "Test":
        """Deadline for the exchange; overrides ``HarnessConfig.timeout``."""
        self._mutable("change the timeout").timeout = seconds
        return self

    def parse(self, parser: Parser) -> "Test":
        """Use *parser(text)* for ``response.body`` instead of the content-type lookup."""
        self._mutable("change the parser").parser = parser
        return self

    # ------------------------------------------------------------------
    # Expectations
    # ------------------------------------------------------------------

    def expect(self, first: Any, second: Any = _MISSING) -> "Test":
        """
        Queue an expectation.

        - ``expect(200)`` / ``expect(range(200, 300))``: status
        - ``expect(200, body)``: status, then body
        - ``expect("Content-Type", "text/html")``: header (str or pattern)
        - ``expect(callable)``: predicate on the response
        - ``expect(body)``: text, pattern, or deep-equal body
        """
        if second is not _MISSING:
            if _is_status(first):
                self.expect_status(first)
                return self.expect_body(second)
            if isinstance(first, str):
                return self.expect_header(first, second)
            raise TypeError(f"expect() cannot pair {first!r} with a second argument")
        if _is_status(first):
            return self.expect_status(first)
        if callable(first) and not isinstance(first, Pattern):
            return self._queue(PredicateExpectation(first))
        return self.expect_body(first)

    def expect_status(self, status) -> "Test":
        return self._queue(StatusExpectation(status))

    def expect_header(self, name: str, value: Union[None, str, Pattern] = None) -> "Test":
        return self._queue(HeaderExpectation(name, value))

    def expect_body(self, body: Any) -> "Test":
        return self._queue(BodyExpectation(body))

    def _queue(self, expectation: Expectation) -> "Test":
        if self._state is TestState.SETTLED:
            raise InvalidStateFault("add an expectation", self._state)
        self._expectations.add(expectation)
        return self

    # ------------------------------------------------------------------
    # Completion protocols
    # ------------------------------------------------------------------

    def end(self, callback: Optional[Callback] = None) -> "Test":
        """
        Dispatch and report the outcome to *callback(error, response)*.

        Inside a running event loop the exchange is scheduled and this
        returns immediately.  Without one, the exchange runs to completion
        first; with no callback a failure is raised.

        An exception raised by *callback* inside a running loop goes to the
        loop's exception handler; without a loop it propagates from here.
        """
        if self._end_called:
            raise InvalidStateFault("call end() twice", self._state)
        self._end_called = True

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return self._end_blocking(callback)

        if callback is not None:
            self._settlement.subscribe(callback)
        self._dispatch()
        if callback is not None and self._task is not None:
            self._task.add_done_callback(_report_callback_error)
        return self

    def _end_blocking(self, callback: Optional[Callback]) -> "Test":
        if self._state is TestState.BUILDING:
            self._begin()
            asyncio.run(self._run())
        elif not self._settlement.settled:
            raise InvalidStateFault("block on end()", "running in another event loop")
        if callback is not None:
            self._settlement.subscribe(callback)
        elif self._settlement.error is not None:
            raise self._settlement.error
        return self

    def __await__(self):
        return self._wait().__await__()

    async def _wait(self) -> Response:
        self._dispatch()
        if not self._settlement.settled:
            if self._task is None:
                raise InvalidStateFault("await", "running in another event loop")
            await self._task
        return self._settlement.result()

    def cancel(self) -> bool:
        """Cancel an in-flight exchange; its endpoint is still released."""
        if self._task is None or self._task.done():
            return False
        return self._task.cancel()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _dispatch(self) -> None:
        if self._state is not TestState.BUILDING:
            return
        self._begin()
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        # cancelled before _run got to start
        if task.cancelled() and not self._settlement.settled:
            self._settle(asyncio.CancelledError(), None)

    def _begin(self) -> None:
        self._pending.freeze()
        self._state = TestState.DISPATCHED
        logger.debug("Dispatching %s %s", self.method, self.path)

    async def _run(self) -> None:
        pending = self._pending
        timeout = pending.timeout if pending.timeout is not None else self.config.timeout
        try:
            async with self._binder.bound(self._app) as endpoint:
                self.endpoint = endpoint
                if self._cookie_source is not None:
                    scoped = self._cookie_source(endpoint.resolve(pending.path))
                    pending.cookies = {**scoped, **pending.cookies}
                try:
                    response = await asyncio.wait_for(
                        self._transport.send(endpoint, pending), timeout,
                    )
                except TimeoutFault:
                    raise
                except asyncio.TimeoutError as exc:
                    raise TimeoutFault(
                        timeout, method=pending.method, url=endpoint.resolve(pending.path),
                    ) from exc
                if self._on_response is not None:
                    self._on_response(response)
                self._expectations.evaluate(response)
        except asyncio.CancelledError as exc:
            self._settle(exc, None)
            raise
        except Fault as exc:
            self._settle(exc, None)
        except Exception as exc:
            logger.debug("%s %s raised %r", pending.method, pending.path, exc)
            self._settle(exc, None)
        else:
            self._settle(None, response)

    def _settle(self, error: Optional[BaseException], response: Optional[Response]) -> None:
        self._state = TestState.SETTLED
        if error is None:
            logger.debug("%s %s passed %d expectation(s)", self.method, self.path, len(self._expectations))
            self._settlement.resolve(response)
        else:
            logger.debug("%s %s failed: %s", self.method, self.path, error)
            self._settlement.reject(error)

    def __repr__(self) -> str:
        return f"<Test {self.method} {self.path} [{self._state.value}]>"


def _report_callback_error(task: asyncio.Task) -> None:
    # Faults settle; only an end() callback can leave an exception on the task.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("end() callback raised %r", exc)
        task.get_loop().call_exception_handler({
            "message": "Exception in Test.end() callback",
            "exception": exc,
            "task": task,
        })


def _header_items(name, value):
    if isinstance(name, dict):
        return name.items()
    if value is None:
        raise TypeError(f"set() needs a value for header {name!r}")
    return [(name, value)]


def _is_status(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, (range, set, frozenset))

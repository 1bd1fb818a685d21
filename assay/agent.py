"""
Assay - Entry points and session agents.

``request(app)`` returns a :class:`Requester` whose verb methods each start
a fresh :class:`Test`.  ``agent(app)`` returns an :class:`Agent`, which adds
persisted cookies, default headers and a default query on top.

Verb methods are installed explicitly by :func:`install_verbs`; a verb may
never replace an existing attribute, and a subclass may never redefine an
installed verb.  ``Agent.query`` and ``Agent.get`` therefore always coexist.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Iterable, Optional, Tuple, Union

import httpx

from .builder import Test, _header_items
from .config import HarnessConfig
from .pending import parse_query
from .response import Response
from .server import ServerBinder

logger = logging.getLogger("assay.agent")

VERBS: Tuple[str, ...] = ("get", "post", "put", "patch", "delete", "head", "options")


def _verb_method(verb: str):
    method = verb.upper()

    def issue(self, path: str = "/") -> Test:
        return self._make_test(method, path)

    issue.__name__ = verb
    issue.__doc__ = f"Start a ``{method}`` request against *path*."
    return issue


def install_verbs(cls: type, verbs: Iterable[str] = VERBS) -> type:
    """
    Add one method per HTTP verb to *cls*.

    Raises ``TypeError`` if a verb name is already taken on *cls* (for
    instance ``query``), so no method is ever silently replaced.
    """
    installed = tuple(getattr(cls, "_verbs", ()))
    for verb in verbs:
        if hasattr(cls, verb):
            raise TypeError(
                f"cannot install HTTP verb {verb!r}: {cls.__name__}.{verb} already exists"
            )
        func = _verb_method(verb)
        func.__qualname__ = f"{cls.__name__}.{verb}"
        setattr(cls, verb, func)
        installed += (verb,)
    cls._verbs = installed
    return cls


class Requester:
    """
    Issues one-shot requests against a fixed application.

    Usage::

        response = await request(app).get("/health").expect(200)
    """

    _verbs: Tuple[str, ...] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        clash = set(vars(cls)) & set(cls._verbs)
        if clash:
            raise TypeError(
                f"{cls.__name__} redefines HTTP verb method(s): {', '.join(sorted(clash))}"
            )

    def __init__(
        self,
        app: Any,
        *,
        config: Optional[HarnessConfig] = None,
        binder: Optional[ServerBinder] = None,
    ):
        self._app = app
        self._config = config
        self._binder = binder or ServerBinder(config)

    @property
    def app(self) -> Any:
        return self._app

    def _make_test(self, method: str, path: str) -> Test:
        return Test(self._app, method, path, config=self._config, binder=self._binder)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._app!r}>"


install_verbs(Requester)


class Agent(Requester):
    """
    Session-persisting requester.

    Cookies set by any response are kept in an :class:`httpx.Cookies` jar
    and sent on later requests of the same agent whose URL matches their
    ``Path`` and ``Domain``; expired cookies (``Max-Age<=0`` or a past
    ``Expires``) are dropped.  Default headers and query parameters set on the agent
    are applied first, so per-request values win.

    Usage::

        session = agent(app)
        await session.post("/login").send({"user": "alice"}).expect(200)
        await session.get("/me").expect(200, {"user": "alice"})
    """

    def __init__(
        self,
        app: Any,
        *,
        headers: Optional[Dict[str, str]] = None,
        config: Optional[HarnessConfig] = None,
        binder: Optional[ServerBinder] = None,
    ):
        super().__init__(app, config=config, binder=binder)
        self._headers = httpx.Headers(headers or {})
        self._query: Dict[str, Any] = {}
        self._jar = httpx.Cookies()

    # ------------------------------------------------------------------
    # Session defaults
    # ------------------------------------------------------------------

    def query(self, params: Union[str, Dict[str, Any]]) -> "Agent":
        """Add default query parameters for every later request."""
        self._query = {**self._query, **parse_query(params)}
        return self

    def set(self, name: Union[str, Dict[str, str]], value: Optional[str] = None) -> "Agent":
        """Add default header(s) for every later request."""
        headers = httpx.Headers(self._headers)
        for key, val in _header_items(name, value):
            headers[key] = str(val)
        self._headers = headers
        return self

    def unset(self, name: str) -> "Agent":
        headers = httpx.Headers(self._headers)
        if name in headers:
            del headers[name]
        self._headers = headers
        return self

    def auth(self, user: str, password: str) -> "Agent":
        token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
        return self.set("Authorization", f"Basic {token}")

    def bearer(self, token: str) -> "Agent":
        return self.set("Authorization", f"Bearer {token}")

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._headers)

    # ------------------------------------------------------------------
    # Cookie jar
    # ------------------------------------------------------------------

    @property
    def cookies(self) -> Dict[str, str]:
        """Read-only ``{name: value}`` copy of the cookie jar."""
        return {cookie.name: cookie.value for cookie in self._jar.jar}

    def clear_cookies(self) -> None:
        self._jar = httpx.Cookies()

    def _cookies_for(self, url: str) -> Dict[str, str]:
        """Cookies whose path and domain match *url*."""
        scoped = httpx.Request("GET", url)
        self._jar.set_cookie_header(scoped)
        header = scoped.headers.get("cookie")
        if not header:
            return {}
        pairs = (item.partition("=") for item in header.split("; "))
        return {name: value for name, _, value in pairs}

    def _store_cookies(self, response: Response) -> None:
        if not response.headers.get_list("set-cookie"):
            return
        raw = httpx.Response(
            response.status_code,
            headers=response.headers,
            request=httpx.Request(response.request_method, response.request_url),
        )
        jar = httpx.Cookies(self._jar)
        jar.extract_cookies(raw)
        self._jar = jar
        logger.debug("Agent cookie jar now holds %s", sorted(self.cookies))

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def _make_test(self, method: str, path: str) -> Test:
        test = Test(
            self._app,
            method,
            path,
            config=self._config,
            binder=self._binder,
            on_response=self._store_cookies,
            cookie_source=self._cookies_for,
        )
        if self._query:
            test.query(dict(self._query))
        for key, value in self._headers.items():
            test.set(key, value)
        return test


def request(
    app: Any,
    *,
    config: Optional[HarnessConfig] = None,
    binder: Optional[ServerBinder] = None,
) -> Requester:
    """Return a :class:`Requester` for one-shot requests against *app*."""
    return Requester(app, config=config, binder=binder)


def agent(
    app: Any,
    *,
    headers: Optional[Dict[str, str]] = None,
    config: Optional[HarnessConfig] = None,
    binder: Optional[ServerBinder] = None,
) -> Agent:
    """Return an :class:`Agent` that persists cookies and defaults across requests."""
    return Agent(app, headers=headers, config=config, binder=binder)

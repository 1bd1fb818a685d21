"""
Assay - Response model and body parsers.

A :class:`Response` is built once from the transport's reply and then
shared read-only by every queued expectation.  ``body`` is the single
parsed-body field; ``text`` always holds the raw payload.
"""

from __future__ import annotations

import json as stdlib_json
import logging
import time
from http.cookiejar import http2time
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qsl

import httpx

logger = logging.getLogger("assay.response")

Parser = Callable[[str], Any]


# -----------------------------------------------------------------------
# Body parsers
# -----------------------------------------------------------------------

def _parse_json(text: str) -> Any:
    return stdlib_json.loads(text) if text.strip() else None


def _parse_form(text: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        if key in result:
            existing = result[key]
            result[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            result[key] = value
    return result


PARSERS: Dict[str, Parser] = {
    "application/json": _parse_json,
    "application/x-www-form-urlencoded": _parse_form,
}


def find_parser(content_type: str) -> Optional[Parser]:
    """
    Return the parser for a bare media type, or ``None``.

    Only exact registry hits and ``+json`` structured suffixes parse;
    everything else (``multipart/*`` included) stays raw text.
    """
    parser = PARSERS.get(content_type)
    if parser is None and content_type.endswith("+json"):
        parser = _parse_json
    return parser


def parse_body(content_type: str, text: str, parser: Optional[Parser] = None) -> Any:
    """Parse *text*; malformed payloads degrade to ``None``."""
    parser = parser or find_parser(content_type)
    if parser is None:
        return None
    try:
        return parser(text)
    except Exception as exc:
        logger.debug("Body of type %r left unparsed: %r", content_type, exc)
        return None


# -----------------------------------------------------------------------
# Response
# -----------------------------------------------------------------------

class Response:
    """
    Captured HTTP response.

    Provides a friendly, read-only API for expectations and assertions.
    """

    __slots__ = (
        "_status_code", "_headers", "_content", "_text", "_body",
        "_content_type", "_charset", "_elapsed", "_request_method",
        "_request_url",
    )

    def __init__(
        self,
        status_code: int,
        headers: httpx.Headers,
        content: bytes,
        text: str,
        *,
        elapsed: float = 0.0,
        request_method: str = "",
        request_url: str = "",
        parser: Optional[Parser] = None,
    ):
        self._status_code = status_code
        self._headers = headers
        self._content = content
        self._text = text
        self._elapsed = elapsed
        self._request_method = request_method
        self._request_url = request_url

        ct = headers.get("content-type", "")
        self._content_type = ct.split(";")[0].strip().lower()
        self._charset = "utf-8"
        if "charset=" in ct:
            self._charset = ct.split("charset=")[-1].split(";")[0].strip().strip('"')
        self._body = parse_body(self._content_type, text, parser)

    @classmethod
    def from_httpx(
        cls,
        raw: httpx.Response,
        *,
        elapsed: float = 0.0,
        parser: Optional[Parser] = None,
    ) -> "Response":
        return cls(
            raw.status_code,
            raw.headers,
            raw.content,
            raw.text,
            elapsed=elapsed,
            request_method=raw.request.method,
            request_url=str(raw.request.url),
            parser=parser,
        )

    # -- Fields ----------------------------------------------------------

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def status(self) -> int:
        return self._status_code

    @property
    def headers(self) -> httpx.Headers:
        """Case-insensitive header mapping."""
        return self._headers

    @property
    def content(self) -> bytes:
        return self._content

    @property
    def text(self) -> str:
        """Body decoded as text."""
        return self._text

    @property
    def body(self) -> Any:
        """Parsed body (JSON / form), or ``None`` when the type is not parsed."""
        return self._body

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def charset(self) -> str:
        return self._charset

    @property
    def elapsed(self) -> float:
        """Exchange duration in milliseconds."""
        return self._elapsed

    @property
    def request_method(self) -> str:
        return self._request_method

    @property
    def request_url(self) -> str:
        return self._request_url

    # -- Convenience accessors -------------------------------------------

    def json(self) -> Any:
        """Parse body as JSON regardless of the declared content type."""
        return stdlib_json.loads(self._text)

    @property
    def cookies(self) -> Dict[str, str]:
        """Cookies set (not expired) by this response's ``Set-Cookie`` headers."""
        return {
            name: value
            for name, value, expired in parse_set_cookie(self._headers.get_list("set-cookie"))
            if not expired
        }

    @property
    def is_success(self) -> bool:
        return 200 <= self._status_code < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self._status_code < 400

    @property
    def is_client_error(self) -> bool:
        return 400 <= self._status_code < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self._status_code < 600

    @property
    def location(self) -> Optional[str]:
        """Return Location header (useful for redirects)."""
        return self._headers.get("location")

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._headers.get(name, default)

    def has_header(self, name: str) -> bool:
        """Check if header exists."""
        return name in self._headers

    def __repr__(self) -> str:
        return (
            f"<Response [{self._status_code}] "
            f"{self._content_type or '-'} {len(self._content)}B "
            f"{self._elapsed:.1f}ms>"
        )


def parse_set_cookie(lines) -> list:
    """
    Extract ``(name, value, expired)`` triples from ``Set-Cookie`` lines.

    ``expired`` is true for ``Max-Age=0`` (or negative) and past ``Expires``
    deletions; ``Max-Age`` wins when both are present.
    """
    cookies = []
    for line in lines:
        pair, *attributes = line.split(";")
        if "=" not in pair:
            continue
        name, _, value = pair.partition("=")
        max_age = expires = None
        for attr in attributes:
            key, _, val = attr.strip().partition("=")
            key = key.lower()
            if key == "max-age":
                try:
                    max_age = int(val)
                except ValueError:
                    pass
            elif key == "expires":
                expires = http2time(val.strip())
        if max_age is not None:
            expired = max_age <= 0
        else:
            expired = expires is not None and expires <= time.time()
        cookies.append((name.strip(), value.strip().strip('"'), expired))
    return cookies

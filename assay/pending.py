"""
Assay - Pending request accumulator.

A :class:`PendingRequest` collects everything one ``Test`` will send.  It
is frozen when the request is dispatched; ``encode`` turns it into the
keyword arguments of :meth:`httpx.AsyncClient.build_request`.
"""

from __future__ import annotations

import json as stdlib_json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

import httpx

from .response import Parser

_UNSET = object()


@dataclass
class PendingRequest:
    method: str
    path: str
    query: Dict[str, Any] = field(default_factory=dict)
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    cookies: Dict[str, str] = field(default_factory=dict)
    body: Any = _UNSET
    fields: List[Tuple[str, str]] = field(default_factory=list)
    files: List[Tuple[str, tuple]] = field(default_factory=list)
    auth: Optional[Tuple[str, str]] = None
    redirects: Optional[int] = None
    timeout: Optional[float] = None
    parser: Optional[Parser] = None
    frozen: bool = False

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def freeze(self) -> None:
        self.frozen = True

    def merge_query(self, params: Any) -> None:
        """Merge a mapping or query string; later keys replace earlier ones."""
        self.query.update(parse_query(params))

    def merge_body(self, body: Any) -> None:
        if isinstance(body, dict) and isinstance(self.body, dict):
            self.body = {**self.body, **body}
        else:
            self.body = body

    @property
    def has_body(self) -> bool:
        return self.body is not _UNSET

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self) -> Dict[str, Any]:
        """
        Return ``build_request`` keyword arguments (minus ``method``/``url``).

        Body format follows an explicit ``Content-Type`` when one is set,
        otherwise the value's shape: mappings and lists become JSON,
        text and bytes are sent unchanged.
        """
        headers = httpx.Headers(self.headers)
        kwargs: Dict[str, Any] = {"params": _flatten(self.query)}

        if self.cookies:
            jar = "; ".join(f"{k}={v}" for k, v in self.cookies.items())
            existing = headers.get("cookie")
            headers["cookie"] = f"{existing}; {jar}" if existing else jar

        if self.fields or self.files:
            content, content_type = build_multipart(self.fields, self.files)
            headers["content-type"] = content_type
            kwargs["content"] = content
        elif self.has_body:
            content_type = headers.get("content-type", "").split(";")[0].strip().lower()
            body = self.body
            if content_type:
                if content_type == "application/json" or content_type.endswith("+json"):
                    kwargs["content"] = body if isinstance(body, (str, bytes)) else stdlib_json.dumps(body)
                elif content_type == "application/x-www-form-urlencoded" and not isinstance(body, (str, bytes)):
                    kwargs["content"] = urlencode(_flatten(body), doseq=True)
                else:
                    kwargs["content"] = body if isinstance(body, (str, bytes)) else str(body)
            elif isinstance(body, (dict, list)):
                headers["content-type"] = "application/json"
                kwargs["content"] = stdlib_json.dumps(body)
            elif body is not None:
                kwargs["content"] = body if isinstance(body, (str, bytes)) else str(body)

        if isinstance(kwargs.get("content"), str):
            kwargs["content"] = kwargs["content"].encode("utf-8")

        kwargs["headers"] = headers
        return kwargs


def _flatten(params: Dict[str, Any]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for key, value in params.items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None:
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            pairs.append((key, str(item)))
    return pairs


def build_multipart(
    fields: List[Tuple[str, str]],
    files: List[Tuple[str, tuple]],
) -> Tuple[bytes, str]:
    """
    Build a multipart/form-data body from form fields and files.

    Each file entry is ``(field_name, (filename, content, content_type))``.

    Returns:
        ``(body_bytes, content_type_header)``
    """
    boundary = f"----AssayBoundary{uuid.uuid4().hex[:16]}"
    parts: list[bytes] = []

    for name, value in fields:
        parts.append(
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
            f"{value}\r\n".encode("utf-8")
        )

    for field_name, (filename, content, content_type) in files:
        if isinstance(content, str):
            content = content.encode("utf-8")
        parts.append(
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{field_name}"; filename="{filename}"\r\n'
            f"Content-Type: {content_type}\r\n\r\n".encode("utf-8")
            + content
            + b"\r\n"
        )

    parts.append(f"--{boundary}--\r\n".encode("utf-8"))
    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


def parse_query(params: Any) -> Dict[str, Any]:
    """Normalise a mapping or query string to ``{key: value | [values]}``."""
    if isinstance(params, bytes):
        params = params.decode("utf-8")
    if not isinstance(params, str):
        return {str(key): value for key, value in dict(params).items()}
    result: Dict[str, Any] = {}
    for key, value in parse_qsl(params.lstrip("?"), keep_blank_values=True):
        if key in result:
            existing = result[key]
            result[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            result[key] = value
    return result

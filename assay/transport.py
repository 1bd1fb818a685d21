"""
Assay - Transport client.

Performs the wire exchange for one frozen :class:`PendingRequest` with
:mod:`httpx` and wraps the reply in a :class:`Response`.  httpx failures
are mapped onto the harness fault taxonomy; nothing is retried.
"""

from __future__ import annotations

import logging
import time as _time
from typing import Optional

import httpx

from .config import HarnessConfig, resolve_config
from .faults import TimeoutFault, TransportFault
from .pending import PendingRequest
from .response import Response
from .server import Endpoint

logger = logging.getLogger("assay.transport")


class Transport:
    """Sends one request per call through a short-lived ``httpx.AsyncClient``."""

    def __init__(self, config: Optional[HarnessConfig] = None):
        self._config = config

    @property
    def config(self) -> HarnessConfig:
        return resolve_config(self._config)

    async def send(self, endpoint: Endpoint, pending: PendingRequest) -> Response:
        config = self.config
        redirects = pending.redirects if pending.redirects is not None else config.redirects
        url = endpoint.resolve(pending.path)
        method = pending.method

        async with httpx.AsyncClient(
            follow_redirects=redirects > 0,
            max_redirects=max(redirects, 0),
            verify=config.verify,
            timeout=None,
            trust_env=False,
        ) as client:
            try:
                request = client.build_request(method, url, **pending.encode())
            except httpx.InvalidURL as exc:
                raise TransportFault(str(exc), method=method, url=url) from exc
            send_kwargs = {"auth": pending.auth} if pending.auth else {}
            logger.debug("Sending %s %s", method, request.url)
            start_time = _time.monotonic()
            try:
                raw = await client.send(request, **send_kwargs)
            except httpx.TimeoutException as exc:
                raise TimeoutFault(None, method=method, url=url) from exc
            except httpx.TooManyRedirects as exc:
                raise TransportFault(
                    f"more than {redirects} redirects", method=method, url=url,
                ) from exc
            except httpx.HTTPError as exc:
                raise TransportFault(
                    str(exc) or type(exc).__name__, method=method, url=url,
                ) from exc
            elapsed_ms = (_time.monotonic() - start_time) * 1000

        response = Response.from_httpx(raw, elapsed=elapsed_ms, parser=pending.parser)
        logger.debug("Received %r for %s %s", response, method, url)
        return response

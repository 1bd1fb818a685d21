"""
Assay - Single-assignment settlement cell.

One request produces one outcome.  Completion protocols (the ``end``
callback and ``await``) subscribe to the same :class:`Settlement` and
observe that outcome exactly once.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional

from .faults import InvalidStateFault

Callback = Callable[[Optional[BaseException], Any], Any]


class Settlement:
    __slots__ = ("_settled", "_error", "_response", "_callbacks")

    def __init__(self):
        self._settled = False
        self._error: Optional[BaseException] = None
        self._response: Any = None
        self._callbacks: List[Callback] = []

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def response(self) -> Any:
        return self._response

    def resolve(self, response: Any) -> None:
        self._settle(None, response)

    def reject(self, error: BaseException) -> None:
        self._settle(error, None)

    def subscribe(self, callback: Callback) -> None:
        """Invoke *callback(error, response)* on settlement (now, if settled)."""
        if self._settled:
            callback(self._error, self._response)
        else:
            self._callbacks.append(callback)

    def result(self) -> Any:
        """Return the response or raise the error."""
        if not self._settled:
            raise InvalidStateFault("read the result", "pending")
        if self._error is not None:
            raise self._error
        return self._response

    def _settle(self, error: Optional[BaseException], response: Any) -> None:
        if self._settled:
            raise InvalidStateFault("settle", "settled")
        self._settled = True
        self._error = error
        self._response = response
        callbacks, self._callbacks = self._callbacks, []
        failure: Optional[BaseException] = None
        for callback in callbacks:
            try:
                callback(error, response)
            except Exception as exc:
                if failure is None:
                    failure = exc
        if failure is not None:
            raise failure

    def __repr__(self) -> str:
        if not self._settled:
            return "<Settlement pending>"
        if self._error is not None:
            return f"<Settlement rejected {self._error!r}>"
        return f"<Settlement resolved {self._response!r}>"

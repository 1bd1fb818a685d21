"""
Assay - Expectations and the ordered expectation queue.

Every expectation exposes ``check(response)`` which returns ``None`` on
success or an :class:`ExpectationFault` describing the mismatch.  The
queue evaluates them in registration order and stops at the first
failure.
"""

from __future__ import annotations

import json as stdlib_json
import re
from http import HTTPStatus
from typing import Any, Callable, Container, List, Optional, Union

from .faults import ExpectationFault
from .response import Response

Pattern = re.Pattern


def _reason(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown"


def _show(value: Any) -> str:
    if isinstance(value, Pattern):
        return repr(value)
    try:
        return stdlib_json.dumps(value, sort_keys=True, default=repr)
    except (TypeError, ValueError):
        return repr(value)


class Expectation:
    """Base class for queued expectations."""

    def check(self, response: Response) -> Optional[ExpectationFault]:
        raise NotImplementedError

    def fail(self, message: str, response: Response, expected: Any = None, actual: Any = None):
        return ExpectationFault(
            message,
            expectation=self,
            expected=expected,
            actual=actual,
            response=response,
        )


class StatusExpectation(Expectation):
    """
    Status code check.

    *expected* is an ``int`` (exact match) or any container of codes,
    e.g. ``range(200, 300)`` or ``{200, 204}``.
    """

    def __init__(self, expected: Union[int, Container[int]]):
        self.expected = expected

    def check(self, response):
        actual = response.status_code
        if isinstance(self.expected, int):
            if actual == self.expected:
                return None
            return self.fail(
                f'expected {self.expected} "{_reason(self.expected)}", '
                f'got {actual} "{_reason(actual)}"',
                response, self.expected, actual,
            )
        if actual in self.expected:
            return None
        return self.fail(
            f'expected status in {self.expected!r}, got {actual} "{_reason(actual)}"',
            response, self.expected, actual,
        )

    def __repr__(self) -> str:
        return f"<StatusExpectation {self.expected!r}>"


class HeaderExpectation(Expectation):
    """
    Header check (case-insensitive name).

    ``value=None`` only requires the header to exist; a string must match
    exactly; a compiled pattern must ``search`` the header value.
    """

    def __init__(self, name: str, value: Union[None, str, Pattern] = None):
        self.name = name
        self.value = value

    def check(self, response):
        actual = response.headers.get(self.name)
        if actual is None:
            return self.fail(f'expected "{self.name}" header field', response, self.value, None)
        if self.value is None:
            return None
        if isinstance(self.value, Pattern):
            if self.value.search(actual):
                return None
            return self.fail(
                f'expected "{self.name}" matching {self.value!r}, got "{actual}"',
                response, self.value, actual,
            )
        if actual == str(self.value):
            return None
        return self.fail(
            f'expected "{self.name}" of "{self.value}", got "{actual}"',
            response, self.value, actual,
        )

    def __repr__(self) -> str:
        return f"<HeaderExpectation {self.name}: {self.value!r}>"


class BodyExpectation(Expectation):
    """
    Body check.

    - ``str``: exact match against ``response.text``
    - compiled pattern: ``search`` against ``response.text``
    - callable: receives ``response.body``; a falsy return or an exception fails
    - anything else: deep equality against ``response.body``
    """

    def __init__(self, expected: Any):
        self.expected = expected

    def check(self, response):
        expected = self.expected
        if isinstance(expected, str):
            if response.text == expected:
                return None
            return self.fail(
                f"expected {expected!r} response body, got {response.text!r}",
                response, expected, response.text,
            )
        if isinstance(expected, Pattern):
            if expected.search(response.text):
                return None
            return self.fail(
                f"expected body {response.text!r} to match {expected!r}",
                response, expected, response.text,
            )
        if callable(expected):
            try:
                ok = expected(response.body)
            except Exception as exc:
                return self.fail(
                    f"response body did not satisfy {_name(expected)}: {exc}",
                    response, expected, response.body,
                )
            if ok:
                return None
            return self.fail(
                f"response body {_show(response.body)} did not satisfy {_name(expected)}",
                response, expected, response.body,
            )
        if response.body == expected:
            return None
        return self.fail(
            f"expected {_show(expected)} response body, got {_show(response.body)}",
            response, expected, response.body,
        )

    def __repr__(self) -> str:
        return f"<BodyExpectation {self.expected!r}>"


class PredicateExpectation(Expectation):
    """
    Arbitrary check on the whole :class:`Response`.

    The predicate fails by raising, or by returning an exception instance.
    Any other return value is ignored.
    """

    def __init__(self, predicate: Callable[[Response], Any]):
        self.predicate = predicate

    def check(self, response):
        try:
            result = self.predicate(response)
        except Exception as exc:
            return self._wrap(exc, response)
        if isinstance(result, BaseException):
            return self._wrap(result, response)
        return None

    def _wrap(self, exc: BaseException, response: Response) -> ExpectationFault:
        if isinstance(exc, ExpectationFault):
            exc.expectation = self
            exc.response = response
            return exc
        fault = self.fail(str(exc) or f"{_name(self.predicate)} failed", response)
        fault.__cause__ = exc
        return fault

    def __repr__(self) -> str:
        return f"<PredicateExpectation {_name(self.predicate)}>"


def _name(func: Callable) -> str:
    return getattr(func, "__qualname__", None) or repr(func)


class ExpectationQueue:
    """
    Ordered expectations; evaluation short-circuits at the first failure.
    """

    def __init__(self):
        self._items: List[Expectation] = []
        self.evaluated = 0

    def add(self, expectation: Expectation) -> None:
        self._items.append(expectation)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def evaluate(self, response: Response) -> Response:
        """
        Run every expectation in order.

        Returns the response when all pass; raises the first
        :class:`ExpectationFault` otherwise.  ``evaluated`` records how
        many expectations ran.
        """
        self.evaluated = 0
        index = 0
        while index < len(self._items):
            expectation = self._items[index]
            index += 1
            self.evaluated = index
            fault = expectation.check(response)
            if fault is not None:
                fault.index = index
                fault.metadata["index"] = index
                raise fault
        return response

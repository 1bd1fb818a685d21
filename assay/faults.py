"""
Assay Faults - Core types and fault taxonomy.

Defines:
- Fault base class (structured fault objects)
- FaultDomain (explicit fault domains)
- Severity levels
- The harness faults surfaced through the completion protocols
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines the logging level used when a fault is reported.
    """
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the stage of a request lifecycle where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


# Standard Domains
FaultDomain.BIND = FaultDomain("bind", "Endpoint binding errors")
FaultDomain.TRANSPORT = FaultDomain("transport", "Wire exchange errors")
FaultDomain.TIMEOUT = FaultDomain("timeout", "Deadline exceeded")
FaultDomain.EXPECTATION = FaultDomain("expectation", "Failed expectations")
FaultDomain.STATE = FaultDomain("state", "Builder misuse")


# Domain defaults
DOMAIN_DEFAULTS = {
    FaultDomain.BIND: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.TRANSPORT: {"severity": Severity.ERROR, "retryable": False},
    FaultDomain.TIMEOUT: {"severity": Severity.ERROR, "retryable": False},
    FaultDomain.EXPECTATION: {"severity": Severity.ERROR, "retryable": False},
    FaultDomain.STATE: {"severity": Severity.FATAL, "retryable": False},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    Attributes:
        code: Stable machine-readable identifier (e.g., "BIND_FAILED")
        message: Human-readable summary
        severity: Fault severity (INFO, WARN, ERROR, FATAL)
        domain: Fault domain (BIND, TRANSPORT, ...)
        retryable: Whether the caller may sensibly retry
        metadata: Additional context data

    No fault is retried by the harness itself; ``retryable`` is advisory.
    """

    code: Optional[str] = None
    message: Optional[str] = None
    domain: Optional[FaultDomain] = None

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        self.code = code if code is not None else type(self).code
        self.message = message if message is not None else type(self).message
        self.domain = domain if domain is not None else type(self).domain

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "retryable": False})
        self.severity = severity or defaults["severity"]
        self.retryable = retryable if retryable is not None else defaults["retryable"]
        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging/serialization
        """
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "metadata": {
                key: value for key, value in self.metadata.items()
                if not key.startswith("_")
            },
        }


# ============================================================================
# Harness Faults
# ============================================================================

class BindFault(Fault):
    """No reachable endpoint could be obtained for the application."""

    def __init__(self, reason: str, *, application: Any = None, **kwargs):
        super().__init__(
            code="BIND_FAILED",
            message=f"Could not bind application: {reason}",
            domain=FaultDomain.BIND,
            metadata={"application": repr(application), **kwargs.get("metadata", {})},
        )


class TransportFault(Fault):
    """The underlying HTTP exchange failed (refused, reset, DNS, ...)."""

    def __init__(self, reason: str, *, method: str = "", url: str = "", **kwargs):
        super().__init__(
            code="TRANSPORT_FAILED",
            message=f"{method} {url} failed: {reason}".strip(),
            domain=FaultDomain.TRANSPORT,
            metadata={"method": method, "url": url, **kwargs.get("metadata", {})},
        )


class TimeoutFault(Fault, TimeoutError):
    """The configured deadline elapsed before the exchange completed."""

    def __init__(self, timeout: Optional[float], *, method: str = "", url: str = "", **kwargs):
        if timeout is None:
            message = f"{method} {url} timed out".strip()
        else:
            message = f"Timeout of {timeout}s exceeded for {method} {url}".rstrip()
        super().__init__(
            code="REQUEST_TIMEOUT",
            message=message,
            domain=FaultDomain.TIMEOUT,
            metadata={"timeout": timeout, "method": method, "url": url, **kwargs.get("metadata", {})},
        )
        self.timeout = timeout


class ExpectationFault(Fault, AssertionError):
    """
    Exactly one queued expectation failed.

    Carries the failing expectation, its 1-based position in the queue,
    and the ``expected`` / ``actual`` values when the comparison has them.
    """

    def __init__(
        self,
        message: str,
        *,
        expectation: Any = None,
        index: Optional[int] = None,
        expected: Any = None,
        actual: Any = None,
        response: Any = None,
        **kwargs,
    ):
        super().__init__(
            code="EXPECTATION_FAILED",
            message=message,
            domain=FaultDomain.EXPECTATION,
            metadata={"index": index, **kwargs.get("metadata", {})},
        )
        self.expectation = expectation
        self.index = index
        self.expected = expected
        self.actual = actual
        self.response = response


class InvalidStateFault(Fault):
    """A builder was dispatched twice or mutated after dispatch."""

    def __init__(self, operation: str, state: Any, **kwargs):
        state_name = getattr(state, "value", state)
        super().__init__(
            code="INVALID_STATE",
            message=f"Cannot {operation} once the request is {state_name}",
            domain=FaultDomain.STATE,
            metadata={"operation": operation, "state": state_name, **kwargs.get("metadata", {})},
        )

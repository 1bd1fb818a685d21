"""
Assay - Harness Configuration.

Provides :class:`HarnessConfig`, the module-level *active* config, and the
``override_settings`` context manager / decorator for replacing harness
settings during a test.
"""

from __future__ import annotations

import dataclasses
import functools
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass
class HarnessConfig:
    """
    Settings shared by every request issued through the harness.

    Attributes:
        host: Loopback interface ephemeral servers listen on.
        timeout: Default deadline (seconds) for one exchange; ``None`` waits forever.
        startup_timeout: How long to wait for an ephemeral server to start.
        shutdown_timeout: How long to wait for an ephemeral server to stop
            before its serve task is cancelled.
        log_level: Level handed to uvicorn's own loggers.
        lifespan: uvicorn lifespan mode (``"auto"``, ``"on"``, ``"off"``).
        interface: uvicorn interface (``"auto"``, ``"asgi3"``, ``"asgi2"``, ``"wsgi"``).
        redirects: Number of redirects to follow (0 disables following).
        verify: TLS verification for ``https`` endpoints.
    """

    host: str = "127.0.0.1"
    timeout: Optional[float] = None
    startup_timeout: float = 5.0
    shutdown_timeout: float = 3.0
    log_level: str = "error"
    lifespan: str = "auto"
    interface: str = "auto"
    redirects: int = 0
    verify: bool = True

    def copy(self, **changes: Any) -> "HarnessConfig":
        """Return a copy with *changes* applied."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


# -----------------------------------------------------------------------
# override_settings – Context manager / decorator
# -----------------------------------------------------------------------

class override_settings:
    """
    Temporarily override fields of the active :class:`HarnessConfig`.

    Context manager::

        with override_settings(timeout=2.0):
            ...

    Decorator::

        @override_settings(redirects=5)
        async def test_follows_login_redirect():
            ...

    Unknown field names raise ``AttributeError`` immediately.
    """

    def __init__(self, **overrides: Any):
        for key in overrides:
            if key not in _FIELD_NAMES:
                raise AttributeError(f"HarnessConfig has no setting {key!r}")
        self._overrides = overrides
        self._saved: Dict[str, Any] = {}

    # -- Context manager -------------------------------------------------

    def __enter__(self):
        self._apply()
        return self

    def __exit__(self, *exc_info):
        self._restore()

    # -- Async context manager -------------------------------------------

    async def __aenter__(self):
        self._apply()
        return self

    async def __aexit__(self, *exc_info):
        self._restore()

    # -- Decorator -------------------------------------------------------

    def __call__(self, func: Callable):
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                self._apply()
                try:
                    return await func(*args, **kwargs)
                finally:
                    self._restore()

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            self._apply()
            try:
                return func(*args, **kwargs)
            finally:
                self._restore()

        return sync_wrapper

    # -- Internals -------------------------------------------------------

    def _apply(self):
        target = get_active_config()
        for key, value in self._overrides.items():
            self._saved[key] = getattr(target, key)
            setattr(target, key, value)

    def _restore(self):
        target = get_active_config()
        for key, original_value in self._saved.items():
            setattr(target, key, original_value)
        self._saved.clear()


_FIELD_NAMES = frozenset(f.name for f in dataclasses.fields(HarnessConfig))


# -----------------------------------------------------------------------
# Module-level active config registry
# -----------------------------------------------------------------------

_active_config: HarnessConfig = HarnessConfig()


def set_active_config(cfg: HarnessConfig) -> None:
    """Replace the config used when ``request``/``agent`` get no explicit one."""
    global _active_config
    _active_config = cfg


def get_active_config() -> HarnessConfig:
    """Return the active config."""
    return _active_config


def resolve_config(config: Optional[HarnessConfig]) -> HarnessConfig:
    return config if config is not None else _active_config

"""
Assay - Pytest Fixtures.

Import the fixtures you need in ``conftest.py``::

    from assay.fixtures import harness_config, settings_override  # noqa: F401
"""

from __future__ import annotations

import pytest

from .config import HarnessConfig, get_active_config, override_settings, set_active_config


@pytest.fixture
def harness_config():
    """
    A fresh active :class:`HarnessConfig` for the duration of one test.

    The previously active config is restored afterwards.
    """
    previous = get_active_config()
    cfg = HarnessConfig()
    set_active_config(cfg)
    yield cfg
    set_active_config(previous)


@pytest.fixture
def settings_override(harness_config):
    """
    Fixture factory for overriding settings.

    Usage::

        def test_slow(settings_override):
            with settings_override(timeout=0.5):
                ...
    """
    return override_settings

"""
Assay - HTTP assertion testing for ASGI / WSGI applications.

Issues one real HTTP request against an application, captures the
response, and checks it against an ordered list of expectations.  Bare
applications are served on an ephemeral loopback port (uvicorn) for the
duration of that single request.

Usage:
    from assay import request, agent

    async def test_index():
        response = await request(app).get("/").expect(200).expect({"ok": True})
        assert response.body == {"ok": True}

    def test_index_sync():
        request(app).get("/").expect(200).end()

Components:
    - request / Requester:  one-shot requests, one Test per verb call
    - agent / Agent:        cookie, header and query persistence across requests
    - Test:                 fluent request builder + completion coordinator
    - ServerBinder:         bind / release of ephemeral endpoints
    - HarnessConfig:        shared settings, override_settings
    - Fault hierarchy:      BindFault, TransportFault, TimeoutFault,
                            ExpectationFault, InvalidStateFault
"""

__version__ = "0.1.0"

from .agent import Agent, Requester, VERBS, agent, install_verbs, request
from .builder import Test, TestState
from .config import HarnessConfig, get_active_config, override_settings, set_active_config
from .expectations import (
    BodyExpectation,
    Expectation,
    ExpectationQueue,
    HeaderExpectation,
    PredicateExpectation,
    StatusExpectation,
)
from .faults import (
    BindFault,
    ExpectationFault,
    Fault,
    FaultDomain,
    InvalidStateFault,
    Severity,
    TimeoutFault,
    TransportFault,
)
from .response import Response
from .server import Endpoint, ServerBinder
from .settlement import Settlement

__all__ = [
    # Entry points
    "request",
    "agent",
    "Requester",
    "Agent",
    "VERBS",
    "install_verbs",
    # Builder
    "Test",
    "TestState",
    "Response",
    "Settlement",
    # Expectations
    "Expectation",
    "ExpectationQueue",
    "StatusExpectation",
    "HeaderExpectation",
    "BodyExpectation",
    "PredicateExpectation",
    # Server
    "Endpoint",
    "ServerBinder",
    # Config
    "HarnessConfig",
    "override_settings",
    "get_active_config",
    "set_active_config",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "BindFault",
    "TransportFault",
    "TimeoutFault",
    "ExpectationFault",
    "InvalidStateFault",
]

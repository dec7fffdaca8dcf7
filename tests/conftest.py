"""
Shared pytest fixtures for the relayer test suite.

Every fixture is synchronous; objects that need a running loop (session
locks, in-flight tasks) are created lazily inside the async tests.
"""

import pytest

from fhe_relayer.adapters.engine import EngineHandle
from fhe_relayer.adapters.mock_engine import MockCryptoEngine
from fhe_relayer.config import RelayerSettings
from fhe_relayer.engine.authenticator import RequestAuthenticator
from fhe_relayer.engine.authorization import AuthorizationManager
from fhe_relayer.engine.executors import OperationExecutor
from fhe_relayer.engine.sessions import SessionManager
from fhe_relayer.servers.apps import RelayerServer
from fhe_relayer.servers.flows import setup_event_bus

from relayer_mocks import CHAIN_ID, SESSION_TTL, FakeClock, FakeCounterGateway


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    return MockCryptoEngine(CHAIN_ID, clock=clock)


@pytest.fixture
def engine_handle(engine):
    return EngineHandle.from_engine(engine)


@pytest.fixture
def gateway(engine):
    return FakeCounterGateway(engine)


@pytest.fixture
def authorization(engine_handle, clock):
    return AuthorizationManager(engine_handle, duration_days=1, clock=clock)


@pytest.fixture
def sessions(authorization, clock):
    return SessionManager(authorization, ttl_seconds=SESSION_TTL, clock=clock)


@pytest.fixture
def event_bus():
    return setup_event_bus()


@pytest.fixture
def executor(sessions, authorization, engine_handle, gateway, event_bus):
    return OperationExecutor(
        sessions,
        authorization,
        RequestAuthenticator(),
        engine_handle,
        gateway,
        event_bus,
    )


@pytest.fixture
def settings():
    return RelayerSettings(chain_id=CHAIN_ID, decryption_duration_days=1, session_ttl_seconds=SESSION_TTL)


@pytest.fixture
def app(engine_handle, gateway, settings, clock):
    return RelayerServer(engine_handle, gateway, settings=settings, clock=clock, title="Test Relayer")

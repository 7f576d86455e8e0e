#tests\conftest.py

"""Pytest configuration and fixtures."""

import pytest

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fleet_engine.core.events import PrintEventEmitter
from fleet_engine.core.models import MachineConfig
from fleet_engine.domain.models import UpdatePlan
from fleet_engine.infrastructure.memory.control_plane import (
    InMemoryControlPlane,
    InMemoryMachineClient,
)
from fleet_engine.infrastructure.sql.database import drop_db, get_session_factory, init_db
from fleet_engine.orchestrator.config import OrchestratorConfig
from fleet_engine.orchestrator.fleet_orchestrator import FleetOrchestrator


APP = "web"
OWNER = "deployer"


# ============================================
# Control plane
# ============================================

@pytest.fixture
def plane():
    """In-memory control plane that converges immediately."""
    return InMemoryControlPlane(poll_interval=0.005)


@pytest.fixture
def client(plane):
    """Client of the deploying operator."""
    return InMemoryMachineClient(plane, OWNER)


@pytest.fixture
def other_client(plane):
    """Client of a second operator working on the same app."""
    return InMemoryMachineClient(plane, "other-operator")


@pytest.fixture
def emitter():
    return PrintEventEmitter()


# ============================================
# Orchestrator
# ============================================

@pytest.fixture
def make_orchestrator(client, emitter):
    """Build an orchestrator; keyword arguments override OrchestratorConfig."""
    def _make(machine_client=None, **overrides):
        config = OrchestratorConfig(**{"wait_timeout_seconds": 2.0, **overrides})
        return FleetOrchestrator(
            client=machine_client or client,
            config=config,
            event_emitters=emitter,
        )
    return _make


@pytest.fixture
def plan():
    """Plan moving the app to app:v2."""
    return UpdatePlan(app_id=APP, config=MachineConfig(image="app:v2"), region="ord")


@pytest.fixture
def ops(plane):
    """Control plane operations one owner performed on one machine, in order."""
    def _ops(machine_id, owner=OWNER):
        return [c.op for c in plane.calls_for(owner=owner, machine_id=machine_id)]
    return _ops


# ============================================
# Database
# ============================================

@pytest.fixture
def test_engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)

    yield engine

    drop_db(engine)
    engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    """Create session factory for tests."""
    return get_session_factory(test_engine)

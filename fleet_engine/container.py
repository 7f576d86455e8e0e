#fleet_engine/container.py

"""Dependency injection container - wires all services together."""

from fleet_engine.config import settings
from fleet_engine.core.events import MultiEventEmitter, PrintEventEmitter
from fleet_engine.core.service import ReleaseService
from fleet_engine.infrastructure.sql.repository import SqlReleaseRepository
from fleet_engine.orchestrator.config import OrchestratorConfig
from fleet_engine.orchestrator.fleet_orchestrator import FleetOrchestrator
from machines_agent.client import MachinesApiClient


# ============================================
# CONTROL PLANE
# ============================================

machine_client = MachinesApiClient(
    base_url=settings.machines_api_url,
    token=settings.machines_api_token,
    owner=settings.lease_owner,
)


# ============================================
# REPOSITORIES
# ============================================

release_repository = SqlReleaseRepository()


# ============================================
# EVENTS
# ============================================

emitters = MultiEventEmitter([
    PrintEventEmitter()
])


# ============================================
# SERVICES
# ============================================

orchestrator = FleetOrchestrator(
    client=machine_client,
    config=OrchestratorConfig.from_settings(settings),
    event_emitters=emitters,
)

release_service = ReleaseService(
    orchestrator=orchestrator,
    release_repo=release_repository,
)

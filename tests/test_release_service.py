#tests\test_release_service.py

"""Test release recording around fleet updates."""

import threading
from uuid import uuid4

import pytest

from fleet_engine.core.errors import ReleaseNotFoundError
from fleet_engine.core.models import ReleaseStatus
from fleet_engine.core.service import ReleaseService
from fleet_engine.domain.models import AppConfig, HttpService
from fleet_engine.infrastructure.memory.repository import InMemoryReleaseRepository
from fleet_engine.infrastructure.sql.repository import SqlReleaseRepository


@pytest.fixture
def app_config():
    return AppConfig(
        app_name="web",
        primary_region="ord",
        image="app:v1",
        http_service=HttpService(internal_port=8080),
    )


@pytest.fixture
def repository():
    return InMemoryReleaseRepository()


@pytest.fixture
def service(make_orchestrator, repository):
    return ReleaseService(orchestrator=make_orchestrator(), release_repo=repository)


class TestDeploy:
    """Test ReleaseService.deploy."""

    def test_successful_rollout(self, plane, service, repository, app_config):
        plane.add_machine("web", "app:v1", machine_id="m1")
        plane.add_machine("web", "app:v1", machine_id="m2")

        release = service.deploy(app_config, "app:v2")

        assert release.status == ReleaseStatus.SUCCEEDED
        assert release.image == "app:v2"
        assert release.updated_machine_ids == ["m1", "m2"]
        assert len(release.machine_outcomes) == 2
        assert release.machine_outcomes[0]["state"] == "RELEASED"

        stored = repository.get(release.release_id)
        assert stored.status == ReleaseStatus.SUCCEEDED
        assert stored.version == release.version

        machine = plane.machine("web", "m1")
        assert [p.port for s in machine.config.services for p in s.ports] == [80, 443]

    def test_bootstrap_release(self, plane, service, app_config):
        release = service.deploy(app_config)

        assert release.status == ReleaseStatus.SUCCEEDED
        assert release.launched
        assert release.image == "app:v1"
        assert plane.machine("web", release.updated_machine_ids[0]).region == "ord"

    def test_failed_rollout(self, plane, other_client, service, app_config):
        plane.add_machine("web", "app:v1", machine_id="m1")
        plane.add_machine("web", "app:v1", machine_id="m2")
        other_client.acquire_lease("web", "m2", 60)

        release = service.deploy(app_config, "app:v2")

        assert release.status == ReleaseStatus.FAILED
        assert release.failed_machine_id == "m2"
        assert release.error_kind == "Conflict"
        assert release.updated_machine_ids == ["m1"]

    def test_cancelled_rollout(self, plane, service, app_config):
        plane.add_machine("web", "app:v1", machine_id="m1")
        cancel = threading.Event()
        cancel.set()

        release = service.deploy(app_config, "app:v2", cancel_event=cancel)

        assert release.status == ReleaseStatus.CANCELLED
        assert release.skipped_machine_ids == ["m1"]

    def test_missing_image_fails_release(self, plane, service):
        release = service.deploy(AppConfig(app_name="web"))

        assert release.status == ReleaseStatus.FAILED
        assert release.error_kind == "InvalidConfig"
        assert plane.calls == []

    def test_unexpected_error_marks_release_failed(self, plane, service, repository, app_config):
        plane.add_machine("web", "app:v1", machine_id="m1")
        plane.inject_fault("update", RuntimeError("bug"), machine_id="m1")

        with pytest.raises(RuntimeError):
            service.deploy(app_config, "app:v2")

        release = service.list_releases("web")[0]
        assert release.status == ReleaseStatus.FAILED
        assert release.error_kind == "RuntimeError"


class TestHistory:
    def test_list_newest_first(self, service, app_config):
        first = service.deploy(app_config, "app:v2")
        second = service.deploy(app_config, "app:v3")

        releases = service.list_releases("web")

        assert [r.release_id for r in releases] == [second.release_id, first.release_id]

    def test_get_unknown_release(self, service):
        with pytest.raises(ReleaseNotFoundError):
            service.get_release(uuid4())

    def test_deploy_with_sql_history(self, plane, make_orchestrator, test_session_factory, app_config):
        """Test the service against the SQL repository."""
        service = ReleaseService(
            orchestrator=make_orchestrator(),
            release_repo=SqlReleaseRepository(test_session_factory),
        )
        plane.add_machine("web", "app:v1", machine_id="m1")

        release = service.deploy(app_config, "app:v2")

        stored = service.get_release(release.release_id)
        assert stored.status == ReleaseStatus.SUCCEEDED
        assert stored.updated_machine_ids == ["m1"]
        assert stored.machine_outcomes[0]["machine_id"] == "m1"

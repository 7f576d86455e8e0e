#tests\test_sql_repository.py

"""Test SQL release repository."""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fleet_engine.core.errors import ReleaseNotFoundError, ReleasePersistenceError
from fleet_engine.core.models import Release, ReleaseStatus
from fleet_engine.infrastructure.memory.repository import InMemoryReleaseRepository
from fleet_engine.infrastructure.sql.repository import SqlReleaseRepository


@pytest.fixture(params=["sql", "memory"])
def repository(request, test_session_factory):
    """Both repositories honour the same contract."""
    if request.param == "sql":
        return SqlReleaseRepository(test_session_factory)
    return InMemoryReleaseRepository()


def make_release(app_id="web", image="app:v2", created_at=None) -> Release:
    release = Release(release_id=uuid4(), app_id=app_id, image=image)
    if created_at:
        release.created_at = created_at
    return release


class TestReleaseRepository:
    """Test release persistence."""

    def test_create_and_get(self, repository):
        release = make_release()

        repository.create(release)
        stored = repository.get(release.release_id)

        assert stored.release_id == release.release_id
        assert stored.app_id == "web"
        assert stored.image == "app:v2"
        assert stored.status == ReleaseStatus.PENDING
        assert stored.updated_machine_ids == []

    def test_get_missing_returns_none(self, repository):
        assert repository.get(uuid4()) is None

    def test_create_duplicate_fails(self, repository):
        release = make_release()
        repository.create(release)

        with pytest.raises(ReleasePersistenceError):
            repository.create(release)

    def test_update_persists_results(self, repository):
        release = make_release()
        repository.create(release)

        release.start()
        release.updated_machine_ids = ["m1"]
        release.skipped_machine_ids = ["m3"]
        release.failed_machine_id = "m2"
        release.machine_outcomes = [{"machine_id": "m2", "state": "FAILED", "error_kind": "Conflict"}]
        release.fail("Conflict", "machine m2 is leased")
        repository.update(release)

        stored = repository.get(release.release_id)
        assert stored.status == ReleaseStatus.FAILED
        assert stored.updated_machine_ids == ["m1"]
        assert stored.skipped_machine_ids == ["m3"]
        assert stored.failed_machine_id == "m2"
        assert stored.error_kind == "Conflict"
        assert stored.error_message == "machine m2 is leased"
        assert stored.machine_outcomes[0]["error_kind"] == "Conflict"
        assert stored.started_at is not None
        assert stored.finished_at is not None
        assert stored.version == 2

    def test_update_missing_fails(self, repository):
        with pytest.raises(ReleaseNotFoundError):
            repository.update(make_release())

    def test_list_by_app_newest_first(self, repository):
        now = datetime.now(timezone.utc)
        older = make_release(created_at=now - timedelta(minutes=5))
        newer = make_release(created_at=now)
        other_app = make_release(app_id="api")

        for release in (older, newer, other_app):
            repository.create(release)

        releases = repository.list_by_app("web")

        assert [r.release_id for r in releases] == [newer.release_id, older.release_id]

    def test_list_by_app_limit(self, repository):
        now = datetime.now(timezone.utc)
        for minutes in range(5):
            repository.create(make_release(created_at=now - timedelta(minutes=minutes)))

        assert len(repository.list_by_app("web", limit=3)) == 3

    def test_returned_release_is_detached(self, repository):
        release = make_release()
        repository.create(release)

        stored = repository.get(release.release_id)
        stored.updated_machine_ids.append("m9")

        assert repository.get(release.release_id).updated_machine_ids == []

# fleet_engine/infrastructure/memory/repository.py

import copy
from threading import Lock
from typing import List, Optional
from uuid import UUID

from fleet_engine.core.errors import ReleaseNotFoundError, ReleasePersistenceError
from fleet_engine.core.models import Release
from fleet_engine.core.repository import ReleaseRepository


class InMemoryReleaseRepository(ReleaseRepository):
    def __init__(self):
        self._store: dict[UUID, Release] = {}
        self._lock = Lock()

    def create(self, release: Release) -> None:
        with self._lock:
            if release.release_id in self._store:
                raise ReleasePersistenceError(f"Release {release.release_id} already exists")
            self._store[release.release_id] = copy.deepcopy(release)

    def get(self, release_id: UUID) -> Optional[Release]:
        with self._lock:
            release = self._store.get(release_id)
            return copy.deepcopy(release) if release else None

    def update(self, release: Release) -> None:
        with self._lock:
            if release.release_id not in self._store:
                raise ReleaseNotFoundError(f"Release {release.release_id} not found")
            self._store[release.release_id] = copy.deepcopy(release)

    def list_by_app(self, app_id: str, limit: int = 20) -> List[Release]:
        with self._lock:
            releases = [r for r in self._store.values() if r.app_id == app_id]
        releases.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in releases[:limit]]

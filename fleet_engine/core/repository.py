# fleet_engine/core/repository.py

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from fleet_engine.core.models import Release


class ReleaseRepository(ABC):
    """
    Persistence contract for release records.
    """

    @abstractmethod
    def create(self, release: Release) -> None:
        """
        Persist a new release.
        Must fail if release_id already exists.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, release_id: UUID) -> Optional[Release]:
        """
        Fetch release by ID.
        Returns None if not found.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, release: Release) -> None:
        """
        Persist updated release state.
        Raises ReleaseNotFoundError if it was never created.
        """
        raise NotImplementedError

    @abstractmethod
    def list_by_app(self, app_id: str, limit: int = 20) -> List[Release]:
        """
        Most recent releases of an app, newest first.
        """
        raise NotImplementedError

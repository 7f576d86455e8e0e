"""Release service - records each fleet update as a release."""

import logging
import threading
from typing import List, Optional
from uuid import UUID, uuid4

from fleet_engine.core.errors import InvalidConfigError, ReleaseNotFoundError, error_kind
from fleet_engine.core.models import Release
from fleet_engine.domain.models import AppConfig
from fleet_engine.domain.service import build_update_plan

logger = logging.getLogger(__name__)


class ReleaseService:
    """Runs fleet updates and keeps their history."""

    def __init__(self, orchestrator, release_repo):
        self._orchestrator = orchestrator
        self._repo = release_repo

    # -------------------------
    # DEPLOY
    # -------------------------

    def deploy(
        self,
        app_config: AppConfig,
        image: Optional[str] = None,
        region: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Release:
        """
        Roll image (or the app config's image) out to the app's fleet.

        The release is persisted before the run starts and updated with the
        run's outcome; the returned release is in a terminal status.
        """
        release = Release(
            release_id=uuid4(),
            app_id=app_config.app_name,
            image=image or app_config.image or "",
        )
        self._repo.create(release)

        release.start()
        self._repo.update(release)

        logger.info(f"[release] Release {release.release_id} of {release.app_id} started")

        try:
            plan = build_update_plan(app_config, image=image, region=region)
        except InvalidConfigError as e:
            logger.error(f"[release] ❌ Cannot build update plan for {release.app_id}: {e}")
            release.fail(error_kind(e), str(e))
            self._repo.update(release)
            return release

        try:
            result = self._orchestrator.apply_fleet_update(
                app_config.app_name,
                plan,
                cancel_event=cancel_event,
            )
        except Exception as e:
            release.fail(error_kind(e), str(e))
            self._repo.update(release)
            raise

        release.updated_machine_ids = list(result.updated)
        release.skipped_machine_ids = list(result.skipped)
        release.failed_machine_id = result.failed_at
        release.launched = result.launched
        release.machine_outcomes = [update.to_dict() for update in result.outcomes.values()]

        if result.ok:
            release.succeed()
        else:
            release.fail(result.error_kind, str(result.cause), cancelled=result.cancelled)

        self._repo.update(release)

        logger.info(
            f"[release] Release {release.release_id} finished: {release.status.value}"
        )
        return release

    # -------------------------
    # HISTORY
    # -------------------------

    def get_release(self, release_id: UUID) -> Release:
        release = self._repo.get(release_id)
        if release is None:
            raise ReleaseNotFoundError(f"Release {release_id} not found")
        return release

    def list_releases(self, app_id: str, limit: int = 20) -> List[Release]:
        return self._repo.list_by_app(app_id, limit=limit)

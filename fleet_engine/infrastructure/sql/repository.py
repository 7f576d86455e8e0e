# fleet_engine/infrastructure/sql/repository.py

"""SQL release repository using SQLAlchemy."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fleet_engine.core.errors import ReleaseNotFoundError, ReleasePersistenceError
from fleet_engine.core.models import Release
from fleet_engine.core.repository import ReleaseRepository
from fleet_engine.infrastructure.sql.database import get_session_factory
from fleet_engine.infrastructure.sql.models import ReleaseORM

logger = logging.getLogger(__name__)


# ============================================
# Mapping Functions
# ============================================

def orm_to_domain(orm: ReleaseORM) -> Release:
    """Convert ORM model to domain model."""
    return Release(
        release_id=UUID(orm.release_id),
        app_id=orm.app_id,
        image=orm.image,
        status=orm.status,
        updated_machine_ids=list(orm.updated_machine_ids or []),
        skipped_machine_ids=list(orm.skipped_machine_ids or []),
        failed_machine_id=orm.failed_machine_id,
        error_kind=orm.error_kind,
        error_message=orm.error_message,
        machine_outcomes=list(orm.machine_outcomes or []),
        launched=orm.launched,
        created_at=orm.created_at,
        started_at=orm.started_at,
        finished_at=orm.finished_at,
        version=orm.version,
    )


def apply_to_orm(release: Release, orm: ReleaseORM) -> None:
    """Copy mutable release state onto an ORM row."""
    orm.status = release.status
    orm.updated_machine_ids = list(release.updated_machine_ids)
    orm.skipped_machine_ids = list(release.skipped_machine_ids)
    orm.failed_machine_id = release.failed_machine_id
    orm.error_kind = release.error_kind
    orm.error_message = release.error_message
    orm.machine_outcomes = list(release.machine_outcomes)
    orm.launched = release.launched
    orm.started_at = release.started_at
    orm.finished_at = release.finished_at
    orm.version = release.version


def domain_to_orm(release: Release) -> ReleaseORM:
    """Convert domain model to ORM model."""
    orm = ReleaseORM(
        release_id=str(release.release_id),
        app_id=release.app_id,
        image=release.image,
        created_at=release.created_at,
    )
    apply_to_orm(release, orm)
    return orm


# ============================================
# Repository Implementation
# ============================================

class SqlReleaseRepository(ReleaseRepository):
    """SQLAlchemy implementation with an injectable session factory."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """
        Args:
            session_factory: SQLAlchemy session factory. If None, uses the default engine.
        """
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()

    # -------------------------
    # CREATE
    # -------------------------

    def create(self, release: Release) -> None:
        session = self._get_session()
        try:
            session.add(domain_to_orm(release))
            session.commit()
            logger.debug(f"[release_repo] create {release.release_id} -> done")
        except IntegrityError as e:
            session.rollback()
            raise ReleasePersistenceError(f"Release {release.release_id} already exists") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise ReleasePersistenceError(f"Failed to create release: {e}") from e
        finally:
            session.close()

    # -------------------------
    # READ
    # -------------------------

    def get(self, release_id: UUID) -> Optional[Release]:
        session = self._get_session()
        try:
            orm = session.get(ReleaseORM, str(release_id))
            if orm is None:
                return None
            return orm_to_domain(orm)
        finally:
            session.close()

    def list_by_app(self, app_id: str, limit: int = 20) -> List[Release]:
        session = self._get_session()
        try:
            stmt = (
                select(ReleaseORM)
                .where(ReleaseORM.app_id == app_id)
                .order_by(ReleaseORM.created_at.desc())
                .limit(limit)
            )
            return [orm_to_domain(orm) for orm in session.scalars(stmt)]
        finally:
            session.close()

    # -------------------------
    # UPDATE
    # -------------------------

    def update(self, release: Release) -> None:
        session = self._get_session()
        try:
            orm = session.get(ReleaseORM, str(release.release_id))
            if orm is None:
                raise ReleaseNotFoundError(f"Release {release.release_id} not found")

            apply_to_orm(release, orm)
            session.commit()
            logger.debug(
                f"[release_repo] update {release.release_id} -> {release.status.value} (v{release.version})"
            )
        except SQLAlchemyError as e:
            session.rollback()
            raise ReleasePersistenceError(f"Failed to update release: {e}") from e
        finally:
            session.close()

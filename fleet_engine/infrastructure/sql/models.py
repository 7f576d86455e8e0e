# fleet_engine/infrastructure/sql/models.py
"""SQLAlchemy ORM models for database tables."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text, Enum as SQLEnum

from fleet_engine.core.models import ReleaseStatus
from fleet_engine.infrastructure.sql.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReleaseORM(Base):
    """
    Release table - one row per orchestration run.

    Indexes:
    - Primary key on release_id
    - Composite index on (app_id, created_at) for release history
    """

    __tablename__ = "releases"

    # Primary key (UUID as string, portable across SQLite and PostgreSQL)
    release_id = Column(String(36), primary_key=True, nullable=False)

    app_id = Column(String(255), nullable=False, index=True)
    image = Column(String(512), nullable=False)

    status = Column(
        SQLEnum(ReleaseStatus, name="release_status"),
        nullable=False,
        default=ReleaseStatus.PENDING,
        index=True
    )

    # Results
    updated_machine_ids = Column(JSON, nullable=False, default=list)
    skipped_machine_ids = Column(JSON, nullable=False, default=list)
    failed_machine_id = Column(String(64), nullable=True)
    error_kind = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    machine_outcomes = Column(JSON, nullable=False, default=list)
    launched = Column(Boolean, nullable=False, default=False)

    # Lifecycle timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_release_app_created", "app_id", "created_at"),
    )

    def __repr__(self):
        return f"<ReleaseORM(id={self.release_id}, app={self.app_id}, status={self.status.value})>"

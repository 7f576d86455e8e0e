"""Event models for fleet updates."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fleet_engine.core.errors import error_kind


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FleetEvent:
    """Progress event of a fleet update."""

    event_type: str
    app_id: str
    machine_id: Optional[str]
    timestamp: datetime
    metadata: Dict[str, Any]

    @staticmethod
    def lease_acquired(app_id, lease):
        """Lease taken out on a machine."""
        return FleetEvent(
            event_type="machine.leased",
            app_id=app_id,
            machine_id=lease.machine_id,
            timestamp=_now(),
            metadata={
                "owner": lease.owner,
                "expires_at": lease.expires_at.isoformat(),
            },
        )

    @staticmethod
    def update_submitted(app_id, handle):
        """Update accepted by the control plane."""
        return FleetEvent(
            event_type="machine.updating",
            app_id=app_id,
            machine_id=handle.machine_id,
            timestamp=_now(),
            metadata={
                "instance_id": handle.instance_id,
            },
        )

    @staticmethod
    def machine_converged(app_id, machine_id, state):
        """Machine reached its target state."""
        return FleetEvent(
            event_type="machine.converged",
            app_id=app_id,
            machine_id=machine_id,
            timestamp=_now(),
            metadata={
                "state": state.value,
            },
        )

    @staticmethod
    def lease_released(app_id, machine_id, error=None):
        """Lease released (or release attempted)."""
        return FleetEvent(
            event_type="machine.released",
            app_id=app_id,
            machine_id=machine_id,
            timestamp=_now(),
            metadata={
                "release_error": str(error) if error else None,
            },
        )

    @staticmethod
    def machine_failed(app_id, machine_id, error):
        """Machine update failed."""
        return FleetEvent(
            event_type="machine.failed",
            app_id=app_id,
            machine_id=machine_id,
            timestamp=_now(),
            metadata={
                "error_kind": error_kind(error),
                "error_message": str(error),
            },
        )

    @staticmethod
    def machine_launched(app_id, machine):
        """New machine launched (bootstrap)."""
        return FleetEvent(
            event_type="machine.launched",
            app_id=app_id,
            machine_id=machine.id,
            timestamp=_now(),
            metadata={
                "image": machine.config.image,
                "region": machine.region,
            },
        )

    @staticmethod
    def run_completed(result):
        """Orchestration run finished."""
        return FleetEvent(
            event_type="run.completed",
            app_id=result.app_id,
            machine_id=result.failed_at,
            timestamp=_now(),
            metadata={
                "updated": list(result.updated),
                "skipped": list(result.skipped),
                "launched": result.launched,
                "error_kind": error_kind(result.cause),
            },
        )

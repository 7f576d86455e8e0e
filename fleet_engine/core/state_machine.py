#fleet_engine\core\state_machine.py

"""Per-machine update state machine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fleet_engine.core.errors import InvalidStateTransitionError, error_kind
from fleet_engine.core.models import Lease, MachineState, UpdateHandle


class UpdateState(Enum):
    PENDING = "PENDING"
    LEASED = "LEASED"
    UPDATING = "UPDATING"
    CONVERGED = "CONVERGED"
    RELEASED = "RELEASED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS = {
    UpdateState.PENDING: {
        UpdateState.LEASED,
        UpdateState.FAILED,
    },
    UpdateState.LEASED: {
        UpdateState.UPDATING,
        UpdateState.FAILED,
    },
    UpdateState.UPDATING: {
        UpdateState.CONVERGED,
        UpdateState.FAILED,
    },
    UpdateState.CONVERGED: {
        UpdateState.RELEASED,
    },
}


@dataclass
class MachineUpdate:
    """Progress of one machine through a fleet update."""

    machine_id: str
    state: UpdateState = UpdateState.PENDING

    # Last state reported by the control plane
    machine_state: Optional[MachineState] = None

    lease: Optional[Lease] = None
    handle: Optional[UpdateHandle] = None

    error: Optional[Exception] = None
    # State the machine was in when it failed
    failed_in: Optional[UpdateState] = None

    release_attempted: bool = False
    release_error: Optional[Exception] = None

    leased_at: Optional[datetime] = None
    updating_at: Optional[datetime] = None
    converged_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    # -------------------------
    # STATE TRANSITIONS
    # -------------------------

    def leased(self, lease: Lease) -> None:
        self._transition(UpdateState.LEASED)
        self.lease = lease

    def updating(self, handle: UpdateHandle) -> None:
        self._transition(UpdateState.UPDATING)
        self.handle = handle

    def converged(self, machine_state: MachineState) -> None:
        self._transition(UpdateState.CONVERGED)
        self.machine_state = machine_state

    def released(self) -> None:
        self._transition(UpdateState.RELEASED)

    def fail(self, error: Exception) -> None:
        failed_in = self.state
        self._transition(UpdateState.FAILED)
        self.failed_in = failed_in
        self.error = error

    # -------------------------
    # QUERIES
    # -------------------------

    @property
    def succeeded(self) -> bool:
        return self.state == UpdateState.RELEASED

    @property
    def failed(self) -> bool:
        return self.state == UpdateState.FAILED

    def holds_lease(self) -> bool:
        """True while a successfully acquired lease has not been released."""
        return self.lease is not None and not self.release_attempted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machine_id": self.machine_id,
            "state": self.state.value,
            "machine_state": self.machine_state.value if self.machine_state else None,
            "failed_in": self.failed_in.value if self.failed_in else None,
            "error_kind": error_kind(self.error),
            "error_message": str(self.error) if self.error else None,
            "release_attempted": self.release_attempted,
            "release_error": str(self.release_error) if self.release_error else None,
        }

    def _transition(self, new_state: UpdateState, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc)

        allowed = ALLOWED_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise InvalidStateTransitionError(
                f"Cannot transition machine {self.machine_id} from {self.state.value} to {new_state.value}"
            )

        # Timestamp semantics
        if new_state == UpdateState.LEASED:
            self.leased_at = now
        elif new_state == UpdateState.UPDATING:
            self.updating_at = now
        elif new_state == UpdateState.CONVERGED:
            self.converged_at = now
        else:
            self.finished_at = now

        self.state = new_state

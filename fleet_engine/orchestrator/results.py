"""Run results reported by the fleet orchestrator."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fleet_engine.core.errors import RunCancelledError, error_kind
from fleet_engine.core.state_machine import MachineUpdate


@dataclass
class RunResult:
    """
    Outcome of one apply_fleet_update call.

    updated lists machines that received the new config, in snapshot order.
    failed_at names the machine that stopped the run; it is None for
    run-scoped failures (invalid plan, snapshot fetch, bootstrap launch) and
    for a cancellation observed between machines.
    """

    app_id: str
    image: str
    updated: List[str] = field(default_factory=list)
    failed_at: Optional[str] = None
    cause: Optional[Exception] = None
    skipped: List[str] = field(default_factory=list)
    launched: bool = False
    outcomes: Dict[str, MachineUpdate] = field(default_factory=dict)

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.cause is None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.cause, RunCancelledError)

    @property
    def error_kind(self) -> Optional[str]:
        return error_kind(self.cause)

    def summary(self) -> str:
        if self.launched and self.ok:
            return f"Launched machine {self.updated[0]} with image {self.image}"
        if self.ok:
            return f"Updated {len(self.updated)} machine(s) to {self.image}"
        where = f" at machine {self.failed_at}" if self.failed_at else ""
        return (
            f"Stopped{where} after updating {len(self.updated)} machine(s): "
            f"{self.error_kind}: {self.cause}"
        )

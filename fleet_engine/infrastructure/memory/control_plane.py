# fleet_engine/infrastructure/memory/control_plane.py
"""In-memory machine control plane (local development and tests)."""

import copy
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Event, RLock
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from fleet_engine.core.errors import (
    LeaseConflictError,
    LeaseUnauthorizedError,
    MachineNotFoundError,
    RunCancelledError,
    WaitTimeoutError,
)
from fleet_engine.core.machine_client import MachineClient
from fleet_engine.core.models import (
    LaunchInput,
    Lease,
    Machine,
    MachineConfig,
    MachineState,
    UpdateHandle,
    parse_image_ref,
)
from fleet_engine.core.validation import validate_machine_config

logger = logging.getLogger(__name__)


GONE_STATES = {MachineState.DESTROYING, MachineState.DESTROYED}


@dataclass(frozen=True)
class Call:
    """One recorded control plane call."""
    op: str
    app_id: str
    machine_id: Optional[str]
    owner: str


class InMemoryControlPlane:
    """
    Machine store that enforces leases the way the real control plane does.

    Updates and launches converge convergence_delay seconds after they are
    accepted. Every call is recorded in `calls`.
    """

    def __init__(
        self,
        *,
        convergence_delay: float = 0.0,
        poll_interval: float = 0.01,
        volumes: Optional[Dict[str, str]] = None,
    ):
        self.convergence_delay = convergence_delay
        self.poll_interval = poll_interval
        # volume name -> region
        self.volumes: Dict[str, str] = dict(volumes or {})

        self.calls: List[Call] = []

        self._apps: Dict[str, Dict[str, Machine]] = {}
        self._leases: Dict[str, Lease] = {}
        # machine_id -> (due, target state)
        self._pending: Dict[str, Tuple[datetime, MachineState]] = {}
        self._stalled: set = set()
        self._faults: Dict[Tuple[str, Optional[str]], List[Exception]] = {}
        self._lock = RLock()

    # -------------------------
    # SEEDING / TEST CONTROLS
    # -------------------------

    def add_machine(
        self,
        app_id: str,
        image: str = "app:v1",
        *,
        state: MachineState = MachineState.STARTED,
        region: str = "",
        machine_id: Optional[str] = None,
        config: Optional[MachineConfig] = None,
    ) -> Machine:
        """Register an existing machine."""
        config = config or MachineConfig(image=image)
        machine = Machine(
            id=machine_id or _new_machine_id(),
            instance_id=_new_instance_id(),
            state=state,
            config=copy.deepcopy(config),
            region=region,
            image_ref=parse_image_ref(config.image),
        )
        with self._lock:
            self._apps.setdefault(app_id, {})[machine.id] = machine
        return copy.deepcopy(machine)

    def destroy(self, app_id: str, machine_id: str) -> None:
        """Simulate another actor destroying a machine."""
        with self._lock:
            machine = self._apps[app_id][machine_id]
            machine.state = MachineState.DESTROYED
            self._pending.pop(machine_id, None)
            self._leases.pop(machine_id, None)

    def stall(self, machine_id: str) -> None:
        """Never let this machine converge."""
        with self._lock:
            self._stalled.add(machine_id)

    def inject_fault(self, op: str, error: Exception, machine_id: Optional[str] = None) -> None:
        """Make the next `op` call (for machine_id, or any machine) raise error."""
        with self._lock:
            self._faults.setdefault((op, machine_id), []).append(error)

    def expire_lease(self, machine_id: str) -> None:
        """Force the current lease on a machine to expire now."""
        with self._lock:
            lease = self._leases.get(machine_id)
            if lease:
                self._leases[machine_id] = Lease(
                    machine_id=lease.machine_id,
                    nonce=lease.nonce,
                    owner=lease.owner,
                    expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
                )

    def steal_lease(self, machine_id: str, owner: str, ttl_seconds: int = 60) -> Lease:
        """Simulate another operator taking over a machine's lease."""
        with self._lock:
            lease = Lease.new(machine_id, owner, ttl_seconds)
            self._leases[machine_id] = lease
            return lease

    def current_lease(self, machine_id: str) -> Optional[Lease]:
        with self._lock:
            return self._leases.get(machine_id)

    def machine(self, app_id: str, machine_id: str) -> Machine:
        """Stored machine, converged as of now."""
        with self._lock:
            machine = self._apps[app_id][machine_id]
            self._refresh(machine)
            return copy.deepcopy(machine)

    def calls_for(
        self,
        *,
        owner: Optional[str] = None,
        op: Optional[str] = None,
        machine_id: Optional[str] = None,
    ) -> List[Call]:
        with self._lock:
            return [
                c for c in self.calls
                if (owner is None or c.owner == owner)
                and (op is None or c.op == op)
                and (machine_id is None or c.machine_id == machine_id)
            ]

    # -------------------------
    # CONTROL PLANE OPERATIONS
    # -------------------------

    def list(self, app_id: str, owner: str) -> List[Machine]:
        with self._lock:
            self._record("list", app_id, None, owner)
            machines = []
            for machine in self._apps.get(app_id, {}).values():
                self._refresh(machine)
                if machine.state in GONE_STATES:
                    continue
                machines.append(self._view(machine))
            return machines

    def get(self, app_id: str, machine_id: str, owner: str) -> Machine:
        with self._lock:
            self._record("get", app_id, machine_id, owner)
            return self._view(self._require_machine(app_id, machine_id))

    def acquire_lease(
        self,
        app_id: str,
        machine_id: str,
        ttl_seconds: int,
        owner: str,
        nonce: Optional[str] = None,
    ) -> Lease:
        with self._lock:
            self._record("acquire_lease", app_id, machine_id, owner)
            self._require_machine(app_id, machine_id)

            now = datetime.now(timezone.utc)
            current = self._leases.get(machine_id)

            if current and current.is_valid(now):
                if not nonce or nonce != current.nonce:
                    raise LeaseConflictError(
                        f"machine {machine_id} is leased by {current.owner} "
                        f"until {current.expires_at.isoformat()}"
                    )
                lease = Lease(
                    machine_id=machine_id,
                    nonce=current.nonce,
                    owner=current.owner,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                )
            else:
                lease = Lease.new(machine_id, owner, ttl_seconds)

            self._leases[machine_id] = lease
            return lease

    def update(
        self,
        app_id: str,
        machine_id: str,
        config: MachineConfig,
        nonce: str,
        owner: str,
    ) -> UpdateHandle:
        with self._lock:
            self._record("update", app_id, machine_id, owner)
            machine = self._require_machine(app_id, machine_id)

            lease = self._leases.get(machine_id)
            if lease is None or not lease.is_held_by(nonce):
                raise LeaseUnauthorizedError(f"lease nonce for machine {machine_id} is missing, stale or expired")

            validate_machine_config(config, region=machine.region, volumes=self.volumes)

            was_stopped = machine.state == MachineState.STOPPED
            machine.config = copy.deepcopy(config)
            machine.image_ref = parse_image_ref(config.image)
            machine.instance_id = _new_instance_id()
            machine.state = MachineState.REPLACING
            machine.updated_at = datetime.now(timezone.utc)

            target = MachineState.STOPPED if was_stopped else MachineState.STARTED
            self._schedule(machine, target)

            return UpdateHandle(machine_id=machine.id, instance_id=machine.instance_id)

    def wait(
        self,
        app_id: str,
        handle: UpdateHandle,
        state: MachineState,
        timeout_seconds: float,
        owner: str,
        cancel_event: Optional[Event] = None,
    ) -> MachineState:
        with self._lock:
            self._record("wait", app_id, handle.machine_id, owner)

        deadline = time.monotonic() + timeout_seconds

        while True:
            with self._lock:
                machine = self._apps.get(app_id, {}).get(handle.machine_id)
                if machine is None or machine.state in GONE_STATES:
                    raise MachineNotFoundError(f"machine {handle.machine_id} was destroyed")

                self._refresh(machine)
                if machine.instance_id == handle.instance_id and machine.state == state:
                    return machine.state
                current_state = machine.state

            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(f"wait on machine {handle.machine_id} cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(
                    f"machine {handle.machine_id} did not reach {state.value} within "
                    f"{timeout_seconds}s (current state: {current_state.value})"
                )

            pause = min(self.poll_interval, remaining)
            if cancel_event is not None:
                cancel_event.wait(pause)
            else:
                time.sleep(pause)

    def release_lease(self, app_id: str, machine_id: str, nonce: str, owner: str) -> None:
        with self._lock:
            self._record("release_lease", app_id, machine_id, owner)

            lease = self._leases.get(machine_id)
            if lease is None:
                return
            if lease.nonce == nonce or not lease.is_valid():
                del self._leases[machine_id]
                return

            logger.debug(f"[control-plane] Ignoring release of {machine_id}, lease is held by {lease.owner}")

    def launch(self, launch_input: LaunchInput, owner: str) -> Machine:
        with self._lock:
            self._record("launch", launch_input.app_id, None, owner)

            validate_machine_config(
                launch_input.config,
                region=launch_input.region,
                volumes=self.volumes,
            )

            machine = Machine(
                id=_new_machine_id(),
                instance_id=_new_instance_id(),
                state=MachineState.STARTING,
                config=copy.deepcopy(launch_input.config),
                name=launch_input.name or "",
                region=launch_input.region,
                image_ref=parse_image_ref(launch_input.config.image),
            )
            self._apps.setdefault(launch_input.app_id, {})[machine.id] = machine
            self._schedule(machine, MachineState.STARTED)

            logger.info(f"[control-plane] Launched machine {machine.id} in {launch_input.app_id}")
            return self._view(machine)

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    def _record(self, op: str, app_id: str, machine_id: Optional[str], owner: str) -> None:
        self.calls.append(Call(op=op, app_id=app_id, machine_id=machine_id, owner=owner))

        for key in ((op, machine_id), (op, None)):
            pending = self._faults.get(key)
            if pending:
                raise pending.pop(0)

    def _require_machine(self, app_id: str, machine_id: str) -> Machine:
        machine = self._apps.get(app_id, {}).get(machine_id)
        if machine is None or machine.state in GONE_STATES:
            raise MachineNotFoundError(f"machine {machine_id} not found in {app_id}")
        self._refresh(machine)
        return machine

    def _schedule(self, machine: Machine, target: MachineState) -> None:
        due = datetime.now(timezone.utc) + timedelta(seconds=self.convergence_delay)
        self._pending[machine.id] = (due, target)
        self._refresh(machine)

    def _refresh(self, machine: Machine) -> None:
        pending = self._pending.get(machine.id)
        if pending is None or machine.id in self._stalled:
            return

        due, target = pending
        if datetime.now(timezone.utc) >= due:
            machine.state = target
            del self._pending[machine.id]

    def _view(self, machine: Machine) -> Machine:
        view = copy.deepcopy(machine)
        view.lease = self._leases.get(machine.id)
        return view


class InMemoryMachineClient(MachineClient):
    """MachineClient bound to one lease owner of an in-memory control plane."""

    def __init__(self, plane: InMemoryControlPlane, owner: str):
        self.plane = plane
        self.owner = owner

    def list(self, app_id):
        return self.plane.list(app_id, self.owner)

    def get(self, app_id, machine_id):
        return self.plane.get(app_id, machine_id, self.owner)

    def acquire_lease(self, app_id, machine_id, ttl_seconds, nonce=None):
        return self.plane.acquire_lease(app_id, machine_id, ttl_seconds, self.owner, nonce=nonce)

    def update(self, app_id, machine_id, config, nonce):
        return self.plane.update(app_id, machine_id, config, nonce, self.owner)

    def wait(self, app_id, handle, state, timeout_seconds, cancel_event=None):
        return self.plane.wait(app_id, handle, state, timeout_seconds, self.owner, cancel_event=cancel_event)

    def release_lease(self, app_id, machine_id, nonce):
        self.plane.release_lease(app_id, machine_id, nonce, self.owner)

    def launch(self, launch_input):
        return self.plane.launch(launch_input, self.owner)


def _new_machine_id() -> str:
    return uuid4().hex[:14]


def _new_instance_id() -> str:
    return uuid4().hex[:26].upper()

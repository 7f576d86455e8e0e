# fleet_engine/orchestrator/fleet_orchestrator.py
"""Fleet orchestrator - applies an update plan to every machine of an app."""

import logging
import queue
import threading
from datetime import datetime, timezone
from typing import List, Optional

from fleet_engine.core.errors import (
    FleetError,
    InvalidConfigError,
    LeaseUnauthorizedError,
    RunCancelledError,
)
from fleet_engine.core.events import NullEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.core.machine_client import MachineClient
from fleet_engine.core.models import Lease, Machine, MachineState
from fleet_engine.core.state_machine import MachineUpdate, UpdateState
from fleet_engine.core.validation import validate_machine_config
from fleet_engine.domain.models import FleetSnapshot, UpdatePlan
from fleet_engine.orchestrator.config import OrchestratorConfig
from fleet_engine.orchestrator.lease_keeper import LeaseKeeper
from fleet_engine.orchestrator.results import RunResult
from fleet_engine.orchestrator.slots import SlotManager

logger = logging.getLogger(__name__)


class FleetOrchestrator:
    """
    Applies one update plan to every machine of an app.

    Flow:
    1. Validate the plan locally (an invalid plan touches nothing)
    2. Capture a fleet snapshot, used for the whole run
    3. Empty snapshot: launch one machine, no lease involved
    4. Otherwise, for each machine in snapshot order:
       a. Acquire a lease
       b. Submit the plan tagged with the lease nonce
       c. Wait for the machine to converge
       d. Release the lease, on every exit path
    5. Stop at the first failed machine

    With max_concurrency > 1 machines are dispatched to a bounded pool of
    worker threads; after the first failure no new machine is dispatched and
    in-flight machines finish.
    """

    def __init__(
        self,
        client: MachineClient,
        config: OrchestratorConfig,
        event_emitters=None,
    ):
        self._client = client
        self._config = config
        self._emitters = event_emitters or NullEventEmitter()

    # -------------------------
    # ENTRY POINT
    # -------------------------

    def apply_fleet_update(
        self,
        app_id: str,
        plan: UpdatePlan,
        cancel_event: Optional[threading.Event] = None,
    ) -> RunResult:
        """
        Apply the plan to every machine of the app.

        Setting cancel_event interrupts in-flight waits; held leases are
        released before this returns.
        """
        cancel_event = cancel_event or threading.Event()
        result = RunResult(app_id=app_id, image=plan.config.image)

        logger.info(f"[orchestrator] Starting fleet update of {app_id} to {plan.config.image}")

        # Run-scoped checks, before any mutation
        try:
            if plan.app_id != app_id:
                raise InvalidConfigError(f"plan was built for app {plan.app_id}, not {app_id}")
            validate_machine_config(plan.config)
        except InvalidConfigError as e:
            logger.error(f"[orchestrator] ❌ Invalid update plan for {app_id}: {e}")
            result.cause = e
            return self._finish(result)

        try:
            snapshot = FleetSnapshot.capture(app_id, self._client.list(app_id))
        except FleetError as e:
            logger.error(f"[orchestrator] ❌ Failed to list machines of {app_id}: {e}")
            result.cause = e
            return self._finish(result)

        logger.info(f"[orchestrator] {app_id} has {len(snapshot)} machine(s)")

        if snapshot.is_empty():
            self._bootstrap(result, plan)
        elif self._config.max_concurrency > 1:
            self._rolling_parallel(result, snapshot, plan, cancel_event)
        else:
            self._rolling_sequential(result, snapshot, plan, cancel_event)

        return self._finish(result)

    # -------------------------
    # BOOTSTRAP
    # -------------------------

    def _bootstrap(self, result: RunResult, plan: UpdatePlan) -> None:
        """Launch the first machine. Launch is not idempotent, so never retried."""
        logger.info(f"[orchestrator] Launching machine with image {plan.config.image}")

        try:
            machine = self._client.launch(plan.launch_input())
        except FleetError as e:
            logger.error(f"[orchestrator] ❌ Launch failed for {plan.app_id}: {e}")
            result.cause = e
            return

        result.launched = True
        result.updated.append(machine.id)
        self._emit(FleetEvent.machine_launched(plan.app_id, machine))

        logger.info(f"[orchestrator] ✅ Launched machine {machine.id}")

    # -------------------------
    # ROLLING UPDATE
    # -------------------------

    def _rolling_sequential(
        self,
        result: RunResult,
        snapshot: FleetSnapshot,
        plan: UpdatePlan,
        cancel_event: threading.Event,
    ) -> None:
        machines = list(snapshot.machines)

        for index, machine in enumerate(machines):
            if cancel_event.is_set():
                logger.warning(f"[orchestrator] Run cancelled before machine {machine.id}")
                result.cause = RunCancelledError(f"run cancelled before machine {machine.id}")
                result.skipped = [m.id for m in machines[index:]]
                return

            update = self._update_machine(snapshot.app_id, machine, plan, cancel_event)
            result.outcomes[machine.id] = update

            if update.failed:
                result.failed_at = machine.id
                result.cause = update.error
                result.skipped = [m.id for m in machines[index + 1:]]
                if result.skipped:
                    logger.error(
                        f"[orchestrator] Aborting run, {len(result.skipped)} machine(s) left untouched"
                    )
                return

            result.updated.append(machine.id)

    def _rolling_parallel(
        self,
        result: RunResult,
        snapshot: FleetSnapshot,
        plan: UpdatePlan,
        cancel_event: threading.Event,
    ) -> None:
        """
        Bounded-parallel rollout.

        Only this (dispatcher) thread touches the slots and the result;
        workers hand their MachineUpdate back through the outcome queue.
        """
        machines = list(snapshot.machines)
        slots = SlotManager(self._config.max_concurrency)
        outcomes: queue.Queue = queue.Queue()
        abort = threading.Event()
        dispatched = set()
        crashed: List[BaseException] = []

        def collect(block: bool) -> bool:
            try:
                machine_id, update, crash = outcomes.get(block=block)
            except queue.Empty:
                return False

            slots.free(machine_id)

            if crash is not None:
                crashed.append(crash)
                abort.set()
                return True

            result.outcomes[machine_id] = update
            if update.failed:
                if result.cause is None:
                    result.failed_at = machine_id
                    result.cause = update.error
                if not abort.is_set():
                    logger.error(f"[orchestrator] Machine {machine_id} failed, no new machines will be started")
                abort.set()
            return True

        logger.info(f"[orchestrator] Updating with up to {slots.capacity} machine(s) in parallel")

        for machine in machines:
            while collect(block=False):
                pass

            while slots.full():
                collect(block=True)

            if abort.is_set() or cancel_event.is_set():
                break

            slots.claim(machine.id)
            dispatched.add(machine.id)

            worker = threading.Thread(
                target=self._update_in_thread,
                args=(snapshot.app_id, machine, plan, cancel_event, outcomes),
                name=f"fleet-update-{machine.id}",
                daemon=True,
            )
            worker.start()

        # Let in-flight machines finish
        while slots.in_flight():
            collect(block=True)

        if crashed:
            raise crashed[0]

        if result.cause is None and cancel_event.is_set() and len(dispatched) < len(machines):
            result.cause = RunCancelledError("run cancelled before all machines were started")

        result.updated = [
            m.id for m in machines
            if m.id in result.outcomes and result.outcomes[m.id].succeeded
        ]
        result.skipped = [m.id for m in machines if m.id not in dispatched]

    def _update_in_thread(self, app_id, machine, plan, cancel_event, outcomes) -> None:
        try:
            update = self._update_machine(app_id, machine, plan, cancel_event)
        except BaseException as e:
            logger.error(f"[orchestrator] [{machine.id}] Unexpected error: {e}", exc_info=True)
            outcomes.put((machine.id, None, e))
            return
        outcomes.put((machine.id, update, None))

    # -------------------------
    # PER-MACHINE STATE MACHINE
    # -------------------------

    def _update_machine(
        self,
        app_id: str,
        machine: Machine,
        plan: UpdatePlan,
        cancel_event: threading.Event,
    ) -> MachineUpdate:
        """Pending -> Leased -> Updating -> Converged -> Released, or Failed."""
        update = MachineUpdate(machine_id=machine.id, machine_state=machine.state)
        target_state = self._target_state(machine)

        # Pending -> Leased
        try:
            if self._config.revalidate_membership:
                current = self._client.get(app_id, machine.id)
                update.machine_state = current.state

            logger.info(f"[orchestrator] Taking lease out on machine {machine.id}")
            lease = self._client.acquire_lease(app_id, machine.id, self._config.lease_ttl_seconds)
        except FleetError as e:
            self._record_failure(app_id, update, e)
            return update

        keeper = None
        try:
            update.leased(lease)
            self._emit(FleetEvent.lease_acquired(app_id, lease))

            keeper = LeaseKeeper(
                client=self._client,
                app_id=app_id,
                lease=lease,
                ttl_seconds=self._config.lease_ttl_seconds,
                renew_interval=self._config.renew_interval,
            )
            keeper.start()

            # Leased -> Updating
            logger.info(f"[orchestrator] Updating machine {machine.id}")
            handle = self._client.update(app_id, machine.id, plan.config, lease.nonce)
            update.updating(handle)
            self._emit(FleetEvent.update_submitted(app_id, handle))

            # Updating -> Converged
            logger.info(
                f"[orchestrator] Waiting for machine {machine.id} to reach {target_state.value}"
            )
            final_state = self._client.wait(
                app_id,
                handle,
                target_state,
                self._config.wait_timeout_seconds,
                cancel_event,
            )

            if keeper.lost:
                raise LeaseUnauthorizedError(
                    f"lease on machine {machine.id} was lost during the update: {keeper.error}"
                )

            update.converged(final_state)
            self._emit(FleetEvent.machine_converged(app_id, machine.id, final_state))

        except FleetError as e:
            self._record_failure(app_id, update, e)

        finally:
            if keeper is not None:
                keeper.stop()
                lease = keeper.lease
            # Converged -> Released, attempted on every path after a successful acquire
            self._release(app_id, update, lease)

        if update.succeeded:
            logger.info(f"[orchestrator] ✅ Machine {machine.id} updated")

        return update

    def _release(self, app_id: str, update: MachineUpdate, lease: Lease) -> None:
        """Best-effort release; a failure is logged, the lease expires on its own."""
        update.release_attempted = True

        try:
            self._client.release_lease(app_id, update.machine_id, lease.nonce)
            logger.info(f"[orchestrator] Released lease on machine {update.machine_id}")
        except FleetError as e:
            logger.warning(
                f"[orchestrator] ⚠️ Failed to release lease on machine {update.machine_id}, "
                f"it expires at {lease.expires_at.isoformat()}: {e}"
            )
            update.release_error = e

        if update.state == UpdateState.CONVERGED:
            update.released()

        self._emit(FleetEvent.lease_released(app_id, update.machine_id, update.release_error))

    def _record_failure(self, app_id: str, update: MachineUpdate, error: FleetError) -> None:
        update.fail(error)
        logger.error(
            f"[orchestrator] ❌ Machine {update.machine_id} failed while {update.failed_in.value}: "
            f"{error.kind}: {error}"
        )
        self._emit(FleetEvent.machine_failed(app_id, update.machine_id, error))

    @staticmethod
    def _target_state(machine: Machine) -> MachineState:
        """Stopped machines stay stopped after the update."""
        if machine.state == MachineState.STOPPED:
            return MachineState.STOPPED
        return MachineState.STARTED

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    def _finish(self, result: RunResult) -> RunResult:
        result.finished_at = datetime.now(timezone.utc)
        self._emit(FleetEvent.run_completed(result))

        if result.ok:
            logger.info(f"[orchestrator] ✅ {result.summary()}")
        else:
            logger.error(f"[orchestrator] ❌ {result.summary()}")

        return result

    def _emit(self, event: FleetEvent) -> None:
        self._emitters.emit([event])

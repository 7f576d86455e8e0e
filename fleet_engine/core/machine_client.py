# fleet_engine/core/machine_client.py

from abc import ABC, abstractmethod
from threading import Event
from typing import List, Optional

from fleet_engine.core.models import (
    LaunchInput,
    Lease,
    Machine,
    MachineConfig,
    MachineState,
    UpdateHandle,
)


class MachineClient(ABC):
    """
    Contract of the machine control plane.

    The control plane is the only authority on machine existence, state and
    lease ownership. Implementations raise the errors from
    fleet_engine.core.errors; every other failure surfaces as MachineApiError.
    """

    @abstractmethod
    def list(self, app_id: str) -> List[Machine]:
        """
        Current machines of an app. May be empty.
        Ordering is not guaranteed to be stable across calls.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, app_id: str, machine_id: str) -> Machine:
        """
        Fetch one machine.
        Raises MachineNotFoundError if it does not exist or was destroyed.
        """
        raise NotImplementedError

    @abstractmethod
    def acquire_lease(
        self,
        app_id: str,
        machine_id: str,
        ttl_seconds: int,
        nonce: Optional[str] = None,
    ) -> Lease:
        """
        Acquire (or, when nonce is the current one, extend) a lease.
        Raises LeaseConflictError if another holder owns it,
        MachineNotFoundError if the machine does not exist.
        """
        raise NotImplementedError

    @abstractmethod
    def update(
        self,
        app_id: str,
        machine_id: str,
        config: MachineConfig,
        nonce: str,
    ) -> UpdateHandle:
        """
        Submit a new config for a leased machine.
        Raises LeaseUnauthorizedError on nonce mismatch,
        InvalidConfigError when the config is rejected.
        """
        raise NotImplementedError

    @abstractmethod
    def wait(
        self,
        app_id: str,
        handle: UpdateHandle,
        state: MachineState,
        timeout_seconds: float,
        cancel_event: Optional[Event] = None,
    ) -> MachineState:
        """
        Block until the handle's instance reports state.
        Raises WaitTimeoutError, MachineNotFoundError, or RunCancelledError
        once cancel_event is set.
        """
        raise NotImplementedError

    @abstractmethod
    def release_lease(self, app_id: str, machine_id: str, nonce: str) -> None:
        """
        Release a lease. Idempotent: releasing an already released or
        expired lease is not an error.
        """
        raise NotImplementedError

    @abstractmethod
    def launch(self, launch_input: LaunchInput) -> Machine:
        """Create a new machine. Not idempotent."""
        raise NotImplementedError

# fleet_engine/orchestrator/lease_keeper.py
"""Lease keeper - renews a machine lease while its update is in flight."""

import logging
import threading
from typing import Optional

from fleet_engine.core.errors import FleetError
from fleet_engine.core.machine_client import MachineClient
from fleet_engine.core.models import Lease

logger = logging.getLogger(__name__)


class LeaseKeeper:
    """
    Re-acquires a lease with its current nonce every renew_interval seconds.

    On a failed renewal the keeper stops and records the error; the owner
    checks `lost` once its blocking call returns.
    """

    def __init__(
        self,
        *,
        client: MachineClient,
        app_id: str,
        lease: Lease,
        ttl_seconds: int,
        renew_interval: float,
    ):
        self._client = client
        self._app_id = app_id
        self._ttl_seconds = ttl_seconds
        self._renew_interval = renew_interval

        self.lease = lease
        self.error: Optional[Exception] = None
        self.renewals = 0

        self._stop_event = threading.Event()
        self._thread = None

    @property
    def lost(self) -> bool:
        return self.error is not None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"lease-keeper-{self.lease.machine_id}",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self._renew_interval):
            try:
                self.lease = self._client.acquire_lease(
                    self._app_id,
                    self.lease.machine_id,
                    self._ttl_seconds,
                    nonce=self.lease.nonce,
                )
                self.renewals += 1
                logger.debug(
                    f"[lease-keeper] Renewed lease on {self.lease.machine_id} "
                    f"until {self.lease.expires_at.isoformat()}"
                )
            except FleetError as e:
                logger.warning(f"[lease-keeper] Lost lease on {self.lease.machine_id}: {e}")
                self.error = e
                return

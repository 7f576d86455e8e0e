# machines_agent/client.py
"""Machines API client - JSON over HTTP control plane binding."""

import logging
import time
from typing import Any, Dict, Optional

import requests

from fleet_engine.core.errors import (
    InvalidConfigError,
    LeaseConflictError,
    LeaseUnauthorizedError,
    MachineApiError,
    MachineNotFoundError,
    RunCancelledError,
    WaitTimeoutError,
)
from fleet_engine.core.machine_client import MachineClient
from fleet_engine.core.models import UpdateHandle
from fleet_engine.core.schemas import (
    LaunchRequest,
    LeaseSchema,
    MachineConfigSchema,
    MachineSchema,
    UpdateRequest,
    UpdateResponse,
    WaitResponse,
)

logger = logging.getLogger(__name__)


NONCE_HEADER = "machine-lease-nonce"
OWNER_HEADER = "machine-lease-owner"

ERRORS_BY_STATUS = {
    400: InvalidConfigError,
    401: LeaseUnauthorizedError,
    403: LeaseUnauthorizedError,
    404: MachineNotFoundError,
    408: WaitTimeoutError,
    409: LeaseConflictError,
    422: InvalidConfigError,
}


class MachinesApiClient(MachineClient):
    """Client for the machines API."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        owner: str = "fleet-engine",
        session=None,
        timeout: float = 30,
        wait_slice_seconds: float = 5.0,
    ):
        """
        Initialize client.

        Args:
            base_url: Base URL of the machines API (e.g., "http://127.0.0.1:4280")
            token: Bearer token, sent when non-empty
            owner: Lease owner identity sent with every request
            session: requests.Session (or compatible) to send requests with
            timeout: Request timeout in seconds, added on top of long-poll waits
            wait_slice_seconds: Longest single long-poll; cancellation is
                checked between slices
        """
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.owner = owner
        self.session = session or requests.Session()
        self.timeout = timeout
        self.wait_slice_seconds = wait_slice_seconds

    # -------------------------
    # CONTRACT
    # -------------------------

    def list(self, app_id):
        response = self._request("GET", f"/v1/apps/{app_id}/machines")
        return [MachineSchema.model_validate(item).to_domain() for item in response.json()]

    def get(self, app_id, machine_id):
        response = self._request("GET", f"/v1/apps/{app_id}/machines/{machine_id}")
        return MachineSchema.model_validate(response.json()).to_domain()

    def acquire_lease(self, app_id, machine_id, ttl_seconds, nonce=None):
        response = self._request(
            "POST",
            f"/v1/apps/{app_id}/machines/{machine_id}/lease",
            params={"ttl": ttl_seconds},
            nonce=nonce,
        )
        return LeaseSchema.model_validate(response.json()).to_domain()

    def update(self, app_id, machine_id, config, nonce):
        payload = UpdateRequest(config=MachineConfigSchema.model_validate(config))
        response = self._request(
            "POST",
            f"/v1/apps/{app_id}/machines/{machine_id}",
            json=payload.model_dump(mode="json"),
            nonce=nonce,
        )
        data = UpdateResponse.model_validate(response.json())

        logger.info(f"[machines-client] Update of {machine_id} accepted, instance {data.instance_id}")
        return UpdateHandle(machine_id=data.machine_id, instance_id=data.instance_id)

    def wait(self, app_id, handle, state, timeout_seconds, cancel_event=None):
        """Long-poll in slices until the machine converges or the budget runs out."""
        deadline = time.monotonic() + timeout_seconds

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(f"wait on machine {handle.machine_id} cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(
                    f"machine {handle.machine_id} did not reach {state.value} within {timeout_seconds}s"
                )

            slice_seconds = min(self.wait_slice_seconds, remaining)
            try:
                response = self._request(
                    "GET",
                    f"/v1/apps/{app_id}/machines/{handle.machine_id}/wait",
                    params={
                        "instance_id": handle.instance_id,
                        "state": state.value,
                        "timeout": slice_seconds,
                    },
                    timeout=slice_seconds + self.timeout,
                )
            except WaitTimeoutError:
                continue

            return WaitResponse.model_validate(response.json()).state

    def release_lease(self, app_id, machine_id, nonce):
        self._request("DELETE", f"/v1/apps/{app_id}/machines/{machine_id}/lease", nonce=nonce)

    def launch(self, launch_input):
        payload = LaunchRequest(
            config=MachineConfigSchema.model_validate(launch_input.config),
            region=launch_input.region,
            name=launch_input.name,
            org_slug=launch_input.org_slug,
        )
        response = self._request(
            "POST",
            f"/v1/apps/{launch_input.app_id}/machines",
            json=payload.model_dump(mode="json"),
        )
        machine = MachineSchema.model_validate(response.json()).to_domain()

        logger.info(f"[machines-client] ✅ Launched machine {machine.id}")
        return machine

    # -------------------------
    # TRANSPORT
    # -------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        nonce: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        headers = {OWNER_HEADER: self.owner}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if nonce:
            headers[NONCE_HEADER] = nonce

        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers=headers,
                timeout=timeout or self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise MachineApiError(f"{method} {path} timed out") from e
        except requests.exceptions.ConnectionError as e:
            raise MachineApiError(f"Cannot connect to machines API at {self.base_url}") from e
        except requests.exceptions.RequestException as e:
            raise MachineApiError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise self._error_for(method, path, response)

        return response

    @staticmethod
    def _error_for(method: str, path: str, response) -> MachineApiError:
        try:
            data = response.json()
        except ValueError:
            data = None

        message = response.text
        if isinstance(data, dict):
            message = data.get("error") or data.get("detail") or message

        error_class = ERRORS_BY_STATUS.get(response.status_code, MachineApiError)
        logger.debug(f"[machines-client] {method} {path} -> {response.status_code}: {message}")
        return error_class(f"{method} {path} returned {response.status_code}: {message}")

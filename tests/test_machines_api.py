#tests\test_machines_api.py

"""Test the machines API client and the local agent server."""

import threading

import pytest
import requests
from fastapi.testclient import TestClient

from fleet_engine.core.errors import (
    InvalidConfigError,
    LeaseConflictError,
    LeaseUnauthorizedError,
    MachineApiError,
    MachineNotFoundError,
    RunCancelledError,
    WaitTimeoutError,
)
from fleet_engine.core.models import (
    LaunchInput,
    MachineConfig,
    MachineMount,
    MachineState,
    UpdateHandle,
)
from fleet_engine.orchestrator.config import OrchestratorConfig
from fleet_engine.orchestrator.fleet_orchestrator import FleetOrchestrator
from machines_agent.client import MachinesApiClient
from machines_agent.server import create_app


# ============================================
# Fake transport
# ============================================

class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeSession:
    """Returns queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def fake_client(*responses, **kwargs):
    session = FakeSession(*responses)
    client = MachinesApiClient("http://machines.test/", token="secret", owner="deployer", session=session, **kwargs)
    return client, session


class TestClientTransport:
    """Request building and error mapping."""

    def test_headers_and_url(self):
        lease_payload = {
            "machine_id": "m1",
            "nonce": "abc",
            "owner": "deployer",
            "expires_at": "2030-01-01T00:00:00+00:00",
        }
        client, session = fake_client(FakeResponse(200, lease_payload))

        lease = client.acquire_lease("web", "m1", 30, nonce="abc")

        method, url, kwargs = session.requests[0]
        assert method == "POST"
        assert url == "http://machines.test/v1/apps/web/machines/m1/lease"
        assert kwargs["params"] == {"ttl": 30}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["headers"]["machine-lease-owner"] == "deployer"
        assert kwargs["headers"]["machine-lease-nonce"] == "abc"
        assert lease.nonce == "abc"

    def test_no_nonce_header_for_fresh_acquire(self):
        client, session = fake_client(FakeResponse(409, {"error": "leased", "kind": "Conflict"}))

        with pytest.raises(LeaseConflictError):
            client.acquire_lease("web", "m1", 30)

        assert "machine-lease-nonce" not in session.requests[0][2]["headers"]

    @pytest.mark.parametrize("status_code, error_class", [
        (400, InvalidConfigError),
        (401, LeaseUnauthorizedError),
        (403, LeaseUnauthorizedError),
        (404, MachineNotFoundError),
        (408, WaitTimeoutError),
        (409, LeaseConflictError),
        (422, InvalidConfigError),
    ])
    def test_status_mapping(self, status_code, error_class):
        client, _ = fake_client(FakeResponse(status_code, {"detail": "nope"}))

        with pytest.raises(error_class, match="nope"):
            client.get("web", "m1")

    def test_server_error_is_api_error(self):
        client, _ = fake_client(FakeResponse(503, text="upstream unavailable"))

        with pytest.raises(MachineApiError) as exc_info:
            client.list("web")

        assert type(exc_info.value) is MachineApiError
        assert "upstream unavailable" in str(exc_info.value)

    def test_transport_failure_is_api_error(self):
        client, _ = fake_client(requests.exceptions.ConnectionError("refused"))

        with pytest.raises(MachineApiError) as exc_info:
            client.list("web")

        assert exc_info.value.kind == "ApiError"

    def test_wait_retries_timed_out_slices(self):
        """Test a long wait is split into several long-polls."""
        client, session = fake_client(
            FakeResponse(408, {"error": "not yet", "kind": "TimedOut"}),
            FakeResponse(200, {"ok": True, "state": "started"}),
            wait_slice_seconds=0.5,
        )

        state = client.wait("web", UpdateHandle("m1", "i2"), MachineState.STARTED, 10)

        assert state == MachineState.STARTED
        assert len(session.requests) == 2
        assert session.requests[0][2]["params"]["instance_id"] == "i2"
        assert session.requests[0][2]["params"]["timeout"] == 0.5

    def test_wait_cancelled_before_request(self):
        client, session = fake_client()
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RunCancelledError):
            client.wait("web", UpdateHandle("m1", "i2"), MachineState.STARTED, 10, cancel_event=cancel)

        assert session.requests == []


# ============================================
# Against the local agent server
# ============================================

@pytest.fixture
def api(plane):
    """HTTP client talking to the agent app in-process."""
    session = TestClient(create_app(plane))
    return MachinesApiClient("http://testserver", owner="deployer", session=session, wait_slice_seconds=0.02)


class TestAgentServer:
    """HTTP client against the agent app."""

    @pytest.fixture(autouse=True)
    def machine(self, plane):
        plane.add_machine("web", "app:v1", machine_id="m1", region="ord")

    def test_health(self, plane):
        response = TestClient(create_app(plane)).get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_list_and_get(self, api):
        machines = api.list("web")

        assert [m.id for m in machines] == ["m1"]
        assert machines[0].config.image == "app:v1"
        assert machines[0].state == MachineState.STARTED
        assert api.get("web", "m1").region == "ord"

    def test_get_missing(self, api):
        with pytest.raises(MachineNotFoundError):
            api.get("web", "missing")

    def test_lease_update_wait_release(self, plane, api):
        lease = api.acquire_lease("web", "m1", 30)
        renewed = api.acquire_lease("web", "m1", 30, nonce=lease.nonce)

        handle = api.update("web", "m1", MachineConfig(image="app:v2", env={"A": "1"}), lease.nonce)
        state = api.wait("web", handle, MachineState.STARTED, 1.0)
        api.release_lease("web", "m1", lease.nonce)
        api.release_lease("web", "m1", lease.nonce)

        assert renewed.nonce == lease.nonce
        assert state == MachineState.STARTED
        assert plane.machine("web", "m1").config.env == {"A": "1"}
        assert plane.current_lease("m1") is None
        assert {c.owner for c in plane.calls} == {"deployer"}

    def test_conflict(self, api, other_client):
        other_client.acquire_lease("web", "m1", 30)

        with pytest.raises(LeaseConflictError):
            api.acquire_lease("web", "m1", 30)

    def test_update_with_wrong_nonce(self, api):
        api.acquire_lease("web", "m1", 30)

        with pytest.raises(LeaseUnauthorizedError):
            api.update("web", "m1", MachineConfig(image="app:v2"), "wrong")

    def test_update_with_invalid_config(self, api):
        lease = api.acquire_lease("web", "m1", 30)
        config = MachineConfig(image="app:v2", mounts=[MachineMount(volume="data", path="/data")])

        with pytest.raises(InvalidConfigError):
            api.update("web", "m1", config, lease.nonce)

    def test_wait_timeout(self, plane, api):
        plane.stall("m1")
        lease = api.acquire_lease("web", "m1", 30)
        handle = api.update("web", "m1", MachineConfig(image="app:v2"), lease.nonce)

        with pytest.raises(WaitTimeoutError):
            api.wait("web", handle, MachineState.STARTED, 0.1)

    def test_launch(self, api):
        machine = api.launch(LaunchInput(app_id="api", config=MachineConfig(image="api:v1"), region="ams"))

        assert machine.region == "ams"
        assert machine.config.image == "api:v1"
        assert [m.id for m in api.list("api")] == [machine.id]

    def test_token_required(self, plane):
        session = TestClient(create_app(plane, token="secret"))

        anonymous = MachinesApiClient("http://testserver", session=session)
        with pytest.raises(LeaseUnauthorizedError):
            anonymous.list("web")

        authorized = MachinesApiClient("http://testserver", token="secret", session=session)
        assert [m.id for m in authorized.list("web")] == ["m1"]


class TestRolloutOverHttp:
    """Full fleet update through the HTTP binding."""

    def test_rolling_update(self, plane, api, plan):
        plane.add_machine("web", "app:v1", machine_id="m1")
        plane.add_machine("web", "app:v1", machine_id="m2")
        orchestrator = FleetOrchestrator(
            client=api,
            config=OrchestratorConfig(wait_timeout_seconds=2.0),
        )

        result = orchestrator.apply_fleet_update("web", plan)

        assert result.ok
        assert result.updated == ["m1", "m2"]
        for machine_id in ("m1", "m2"):
            assert plane.machine("web", machine_id).config.image == "app:v2"
            assert plane.current_lease(machine_id) is None

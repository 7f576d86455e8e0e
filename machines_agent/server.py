# machines_agent/server.py
"""
Machines Agent - local machines API.
Serves the control plane routes over an in-memory control plane.
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from fleet_engine.core.errors import FleetError, LeaseUnauthorizedError
from fleet_engine.core.models import LaunchInput, MachineState, UpdateHandle
from fleet_engine.core.schemas import (
    ErrorResponse,
    LaunchRequest,
    LeaseSchema,
    MachineSchema,
    UpdateRequest,
    UpdateResponse,
    WaitResponse,
)
from fleet_engine.infrastructure.memory.control_plane import InMemoryControlPlane

logger = logging.getLogger(__name__)


STATUS_BY_KIND = {
    "NotFound": 404,
    "Conflict": 409,
    "Unauthorized": 401,
    "InvalidConfig": 422,
    "TimedOut": 408,
}

ANONYMOUS_OWNER = "anonymous"


def create_app(plane: Optional[InMemoryControlPlane] = None, token: str = "") -> FastAPI:
    """Build the agent app; an empty token disables authentication."""
    plane = plane or InMemoryControlPlane(convergence_delay=1.0, poll_interval=0.1)

    app = FastAPI(
        title="Machines Agent",
        description="Local machines API for the fleet engine",
        version="1.0.0"
    )
    app.state.plane = plane

    # ============================================
    # ERROR HANDLING / AUTH
    # ============================================

    @app.exception_handler(FleetError)
    async def fleet_error_handler(request: Request, exc: FleetError):
        status_code = STATUS_BY_KIND.get(exc.kind, 500)
        if status_code == 500:
            logger.error(f"[agent] {request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(error=str(exc), kind=exc.kind).model_dump(),
        )

    @app.middleware("http")
    async def check_token(request: Request, call_next):
        if token and request.url.path.startswith("/v1/"):
            if request.headers.get("Authorization") != f"Bearer {token}":
                return JSONResponse(
                    status_code=401,
                    content=ErrorResponse(error="invalid or missing token", kind="Unauthorized").model_dump(),
                )
        return await call_next(request)

    # ============================================
    # ENDPOINTS
    # ============================================

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/v1/apps/{app_id}/machines", response_model=List[MachineSchema])
    def list_machines(
        app_id: str,
        owner: str = Header(ANONYMOUS_OWNER, alias="machine-lease-owner"),
    ):
        return [MachineSchema.model_validate(m) for m in plane.list(app_id, owner)]

    @app.post("/v1/apps/{app_id}/machines", response_model=MachineSchema)
    def launch_machine(
        app_id: str,
        request: LaunchRequest,
        owner: str = Header(ANONYMOUS_OWNER, alias="machine-lease-owner"),
    ):
        machine = plane.launch(
            LaunchInput(
                app_id=app_id,
                config=request.config.to_domain(),
                org_slug=request.org_slug,
                region=request.region,
                name=request.name,
            ),
            owner,
        )
        return MachineSchema.model_validate(machine)

    @app.get("/v1/apps/{app_id}/machines/{machine_id}", response_model=MachineSchema)
    def get_machine(
        app_id: str,
        machine_id: str,
        owner: str = Header(ANONYMOUS_OWNER, alias="machine-lease-owner"),
    ):
        return MachineSchema.model_validate(plane.get(app_id, machine_id, owner))

    @app.post("/v1/apps/{app_id}/machines/{machine_id}", response_model=UpdateResponse)
    def update_machine(
        app_id: str,
        machine_id: str,
        request: UpdateRequest,
        owner: str = Header(ANONYMOUS_OWNER, alias="machine-lease-owner"),
        nonce: Optional[str] = Header(None, alias="machine-lease-nonce"),
    ):
        handle = plane.update(app_id, machine_id, request.config.to_domain(), nonce, owner)
        machine = plane.machine(app_id, machine_id)
        return UpdateResponse(
            machine_id=handle.machine_id,
            instance_id=handle.instance_id,
            state=machine.state,
        )

    @app.post("/v1/apps/{app_id}/machines/{machine_id}/lease", response_model=LeaseSchema)
    def acquire_lease(
        app_id: str,
        machine_id: str,
        ttl: int = 30,
        owner: str = Header(ANONYMOUS_OWNER, alias="machine-lease-owner"),
        nonce: Optional[str] = Header(None, alias="machine-lease-nonce"),
    ):
        lease = plane.acquire_lease(app_id, machine_id, ttl, owner, nonce=nonce)
        return LeaseSchema.model_validate(lease)

    @app.delete("/v1/apps/{app_id}/machines/{machine_id}/lease")
    def release_lease(
        app_id: str,
        machine_id: str,
        owner: str = Header(ANONYMOUS_OWNER, alias="machine-lease-owner"),
        nonce: Optional[str] = Header(None, alias="machine-lease-nonce"),
    ):
        if not nonce:
            raise LeaseUnauthorizedError("machine-lease-nonce header is required")
        plane.release_lease(app_id, machine_id, nonce, owner)
        return {"ok": True}

    @app.get("/v1/apps/{app_id}/machines/{machine_id}/wait", response_model=WaitResponse)
    def wait_for_state(
        app_id: str,
        machine_id: str,
        instance_id: str,
        state: MachineState = MachineState.STARTED,
        timeout: float = 60.0,
        owner: str = Header(ANONYMOUS_OWNER, alias="machine-lease-owner"),
    ):
        handle = UpdateHandle(machine_id=machine_id, instance_id=instance_id)
        reached = plane.wait(app_id, handle, state, timeout, owner)
        return WaitResponse(ok=True, state=reached)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("🚀 Starting Machines Agent...")
    logger.info("📍 Listening on 127.0.0.1:4280")

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=4280,
        log_level="info"
    )

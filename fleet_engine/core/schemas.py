"""Pydantic schemas for validation and serialization."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fleet_engine.core.models import (
    ImageRef,
    Lease,
    Machine,
    MachineConfig,
    MachineGuest,
    MachineMetrics,
    MachineMount,
    MachinePort,
    MachineRestart,
    MachineService,
    MachineState,
    RestartPolicy,
)


class _Schema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============================================
# Machine config
# ============================================

class MachinePortSchema(_Schema):
    port: int
    handlers: List[str] = Field(default_factory=list)
    force_https: bool = False


class MachineServiceSchema(_Schema):
    protocol: str = "tcp"
    internal_port: int
    ports: List[MachinePortSchema] = Field(default_factory=list)


class MachineGuestSchema(_Schema):
    cpu_kind: str = "shared"
    cpus: int = 1
    memory_mb: int = 256
    kernel_args: List[str] = Field(default_factory=list)


class MachineMountSchema(_Schema):
    volume: str
    path: str
    size_gb: int = 0
    encrypted: bool = False


class MachineRestartSchema(_Schema):
    policy: RestartPolicy = RestartPolicy.ALWAYS
    max_retries: int = 0


class MachineMetricsSchema(_Schema):
    port: int
    path: str = "/metrics"


class MachineConfigSchema(_Schema):
    """Wire form of MachineConfig."""

    image: str
    env: Dict[str, str] = Field(default_factory=dict)
    guest: Optional[MachineGuestSchema] = None
    services: List[MachineServiceSchema] = Field(default_factory=list)
    mounts: List[MachineMountSchema] = Field(default_factory=list)
    restart: Optional[MachineRestartSchema] = None
    metrics: Optional[MachineMetricsSchema] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    def to_domain(self) -> MachineConfig:
        return MachineConfig(
            image=self.image,
            env=dict(self.env),
            guest=MachineGuest(**self.guest.model_dump()) if self.guest else None,
            services=[
                MachineService(
                    protocol=s.protocol,
                    internal_port=s.internal_port,
                    ports=[MachinePort(**p.model_dump()) for p in s.ports],
                )
                for s in self.services
            ],
            mounts=[MachineMount(**m.model_dump()) for m in self.mounts],
            restart=MachineRestart(**self.restart.model_dump()) if self.restart else None,
            metrics=MachineMetrics(**self.metrics.model_dump()) if self.metrics else None,
            metadata=dict(self.metadata),
        )


# ============================================
# Machine / lease
# ============================================

class ImageRefSchema(_Schema):
    registry: str = ""
    repository: str = ""
    tag: str = ""
    digest: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)


class LeaseSchema(_Schema):
    machine_id: str
    nonce: str
    owner: str
    expires_at: datetime

    def to_domain(self) -> Lease:
        return Lease(
            machine_id=self.machine_id,
            nonce=self.nonce,
            owner=self.owner,
            expires_at=self.expires_at,
        )


class MachineSchema(_Schema):
    """Wire form of Machine."""

    id: str
    instance_id: str
    state: MachineState
    config: MachineConfigSchema
    name: str = ""
    region: str = ""
    private_ip: Optional[str] = None
    image_ref: ImageRefSchema = Field(default_factory=ImageRefSchema)
    lease: Optional[LeaseSchema] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_domain(self) -> Machine:
        machine = Machine(
            id=self.id,
            instance_id=self.instance_id,
            state=self.state,
            config=self.config.to_domain(),
            name=self.name,
            region=self.region,
            private_ip=self.private_ip,
            image_ref=ImageRef(**self.image_ref.model_dump()),
            lease=self.lease.to_domain() if self.lease else None,
        )
        if self.created_at:
            machine.created_at = self.created_at
        if self.updated_at:
            machine.updated_at = self.updated_at
        return machine


# ============================================
# Requests / responses
# ============================================

class LaunchRequest(BaseModel):
    """Launch machine request."""
    config: MachineConfigSchema
    region: str = ""
    name: Optional[str] = None
    org_slug: str = ""


class UpdateRequest(BaseModel):
    """Update machine request."""
    config: MachineConfigSchema


class UpdateResponse(BaseModel):
    machine_id: str
    instance_id: str
    state: MachineState


class WaitResponse(BaseModel):
    ok: bool
    state: MachineState


class ErrorResponse(BaseModel):
    error: str
    kind: str

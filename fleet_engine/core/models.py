"""Core domain models (machines, configs, leases, releases)."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4


class MachineState(Enum):
    """Machine state, owned by the control plane."""

    CREATED = "created"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REPLACING = "replacing"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


class RestartPolicy(Enum):
    NO = "no"
    ON_FAILURE = "on-failure"
    ALWAYS = "always"


# ============================================
# MACHINE CONFIG
# ============================================

MEMORY_MB_PER_SHARED_CPU = 256
MEMORY_MB_PER_CPU = 2048


@dataclass
class MachineGuest:
    """Guest resources."""
    cpu_kind: str = "shared"
    cpus: int = 1
    memory_mb: int = MEMORY_MB_PER_SHARED_CPU
    kernel_args: List[str] = field(default_factory=list)


MACHINE_PRESETS: Dict[str, MachineGuest] = {
    "shared-cpu-1x": MachineGuest(cpu_kind="shared", cpus=1, memory_mb=1 * MEMORY_MB_PER_SHARED_CPU),
    "shared-cpu-2x": MachineGuest(cpu_kind="shared", cpus=2, memory_mb=2 * MEMORY_MB_PER_SHARED_CPU),
    "shared-cpu-4x": MachineGuest(cpu_kind="shared", cpus=4, memory_mb=4 * MEMORY_MB_PER_SHARED_CPU),
    "shared-cpu-8x": MachineGuest(cpu_kind="shared", cpus=8, memory_mb=8 * MEMORY_MB_PER_SHARED_CPU),
    "dedicated-cpu-1x": MachineGuest(cpu_kind="dedicated", cpus=1, memory_mb=1 * MEMORY_MB_PER_CPU),
    "dedicated-cpu-2x": MachineGuest(cpu_kind="dedicated", cpus=2, memory_mb=2 * MEMORY_MB_PER_CPU),
    "dedicated-cpu-4x": MachineGuest(cpu_kind="dedicated", cpus=4, memory_mb=4 * MEMORY_MB_PER_CPU),
    "dedicated-cpu-8x": MachineGuest(cpu_kind="dedicated", cpus=8, memory_mb=8 * MEMORY_MB_PER_CPU),
}


@dataclass
class MachinePort:
    """Exposed port and its edge handlers."""
    port: int
    handlers: List[str] = field(default_factory=list)
    force_https: bool = False


@dataclass
class MachineService:
    """Network service."""
    protocol: str
    internal_port: int
    ports: List[MachinePort] = field(default_factory=list)


@dataclass
class MachineMount:
    """Volume mount."""
    volume: str
    path: str
    size_gb: int = 0
    encrypted: bool = False


@dataclass
class MachineRestart:
    policy: RestartPolicy = RestartPolicy.ALWAYS
    # Only relevant with the on-failure policy
    max_retries: int = 0


@dataclass
class MachineMetrics:
    port: int
    path: str = "/metrics"


@dataclass
class MachineConfig:
    """Desired state for a machine."""
    image: str
    env: Dict[str, str] = field(default_factory=dict)
    guest: Optional[MachineGuest] = None
    services: List[MachineService] = field(default_factory=list)
    mounts: List[MachineMount] = field(default_factory=list)
    restart: Optional[MachineRestart] = None
    metrics: Optional[MachineMetrics] = None
    metadata: Dict[str, str] = field(default_factory=dict)


# ============================================
# MACHINE
# ============================================

@dataclass
class ImageRef:
    registry: str = ""
    repository: str = ""
    tag: str = ""
    digest: str = ""
    labels: Dict[str, str] = field(default_factory=dict)


def parse_image_ref(image: str) -> ImageRef:
    """Split 'registry/repository:tag@digest' into its parts."""
    rest, _, digest = image.partition("@")
    name, tag = rest, "latest"
    if ":" in rest.rsplit("/", 1)[-1]:
        name, tag = rest.rsplit(":", 1)

    registry = ""
    first, sep, remainder = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, name = first, remainder

    return ImageRef(registry=registry, repository=name, tag=tag, digest=digest)


@dataclass(frozen=True)
class Lease:
    """Time-bounded exclusive claim on one machine."""

    machine_id: str
    nonce: str
    owner: str
    expires_at: datetime

    @staticmethod
    def new(machine_id: str, owner: str, ttl_seconds: int, nonce: Optional[str] = None) -> "Lease":
        return Lease(
            machine_id=machine_id,
            nonce=nonce or uuid4().hex,
            owner=owner,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """A lease is valid only while now < expires_at."""
        now = now or datetime.now(timezone.utc)
        return now < self.expires_at

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.expires_at - now).total_seconds())

    def is_held_by(self, nonce: Optional[str], now: Optional[datetime] = None) -> bool:
        return bool(nonce) and nonce == self.nonce and self.is_valid(now)


@dataclass
class Machine:
    """One VM instance."""
    id: str
    instance_id: str
    state: MachineState
    config: MachineConfig
    name: str = ""
    region: str = ""
    private_ip: Optional[str] = None
    image_ref: ImageRef = field(default_factory=ImageRef)
    lease: Optional[Lease] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def full_image_ref(self) -> str:
        return f"{self.image_ref.repository}:{self.image_ref.tag}"


@dataclass(frozen=True)
class UpdateHandle:
    """In-flight change returned by an update call."""
    machine_id: str
    instance_id: str


@dataclass
class LaunchInput:
    """Input for launching a new machine."""
    app_id: str
    config: MachineConfig
    org_slug: str = ""
    region: str = ""
    name: Optional[str] = None


# ============================================
# RELEASE
# ============================================

class ReleaseStatus(Enum):
    """Release (orchestration run) status."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class Release:
    """One recorded orchestration run."""

    release_id: UUID
    app_id: str
    image: str

    status: ReleaseStatus = ReleaseStatus.PENDING

    # Results
    updated_machine_ids: List[str] = field(default_factory=list)
    skipped_machine_ids: List[str] = field(default_factory=list)
    failed_machine_id: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    machine_outcomes: List[Dict[str, Any]] = field(default_factory=list)
    launched: bool = False

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    version: int = 0

    # -------------------------
    # STATE TRANSITIONS
    # -------------------------

    def start(self) -> None:
        """Transition from PENDING to RUNNING."""
        if self.status != ReleaseStatus.PENDING:
            raise ValueError(f"Cannot start from {self.status.value} state")

        self.status = ReleaseStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)
        self.version += 1

    def succeed(self) -> None:
        """Transition from RUNNING to SUCCEEDED."""
        if self.status != ReleaseStatus.RUNNING:
            raise ValueError(f"Cannot succeed from {self.status.value} state")

        self.status = ReleaseStatus.SUCCEEDED
        self.finished_at = datetime.now(timezone.utc)
        self.version += 1

    def fail(self, error_kind: Optional[str], error_message: str, cancelled: bool = False) -> None:
        """Transition from RUNNING to FAILED (or CANCELLED)."""
        if self.status != ReleaseStatus.RUNNING:
            raise ValueError(f"Cannot fail from {self.status.value} state")

        self.status = ReleaseStatus.CANCELLED if cancelled else ReleaseStatus.FAILED
        self.finished_at = datetime.now(timezone.utc)
        self.error_kind = error_kind
        self.error_message = error_message
        self.version += 1

    def is_finished(self) -> bool:
        return self.status in (
            ReleaseStatus.SUCCEEDED,
            ReleaseStatus.FAILED,
            ReleaseStatus.CANCELLED,
        )

#fleet_engine\domain\models.py
"""Domain models for app configs, update plans and fleet snapshots."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fleet_engine.core.models import (
    LaunchInput,
    Machine,
    MachineConfig,
    MachineMetrics,
    MachineMount,
    MachinePort,
    MachineRestart,
    MachineService,
    RestartPolicy,
)


# ============================================
# APP CONFIG
# ============================================

@dataclass
class HttpService:
    """Shorthand for the usual HTTP + HTTPS service pair."""
    internal_port: int
    force_https: bool = True


@dataclass
class AppConfig:
    """Declared configuration of an application."""
    app_name: str
    org_slug: str = ""
    primary_region: str = ""

    # Base image, overridden by the build pipeline output
    image: Optional[str] = None

    env: Dict[str, str] = field(default_factory=dict)
    http_service: Optional[HttpService] = None
    services: List[MachineService] = field(default_factory=list)
    metrics: Optional[MachineMetrics] = None
    mounts: List[MachineMount] = field(default_factory=list)
    restart: Optional[MachineRestart] = None
    vm_size: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AppConfig":
        """
        Build an app config from its TOML/JSON document.

        Accepts the keys: app, org, primary_region, image (or build.image),
        env, http_service, services, metrics, mounts, restart, vm_size, metadata.
        Missing or mistyped keys raise ValueError.
        """
        if not data.get("app"):
            raise ValueError("app config requires 'app'")

        try:
            return AppConfig._parse(data)
        except KeyError as e:
            raise ValueError(f"app config is missing required key {e.args[0]!r}") from e
        except (TypeError, AttributeError) as e:
            raise ValueError(f"app config has a value of the wrong type: {e}") from e

    @staticmethod
    def _parse(data: Dict[str, Any]) -> "AppConfig":

        http_service = None
        if data.get("http_service"):
            raw = data["http_service"]
            http_service = HttpService(
                internal_port=int(raw["internal_port"]),
                force_https=bool(raw.get("force_https", True)),
            )

        services = [
            MachineService(
                protocol=raw.get("protocol", "tcp"),
                internal_port=int(raw["internal_port"]),
                ports=[
                    MachinePort(
                        port=int(p["port"]),
                        handlers=list(p.get("handlers", [])),
                        force_https=bool(p.get("force_https", False)),
                    )
                    for p in raw.get("ports", [])
                ],
            )
            for raw in data.get("services", [])
        ]

        metrics = None
        if data.get("metrics"):
            metrics = MachineMetrics(
                port=int(data["metrics"]["port"]),
                path=data["metrics"].get("path", "/metrics"),
            )

        mounts = [
            MachineMount(
                volume=raw.get("volume") or raw.get("source", ""),
                path=raw.get("path") or raw.get("destination", ""),
                size_gb=int(raw.get("size_gb", 0)),
                encrypted=bool(raw.get("encrypted", False)),
            )
            for raw in data.get("mounts", [])
        ]

        restart = None
        if data.get("restart"):
            restart = MachineRestart(
                policy=RestartPolicy(data["restart"].get("policy", "always")),
                max_retries=int(data["restart"].get("max_retries", 0)),
            )

        return AppConfig(
            app_name=data["app"],
            org_slug=data.get("org", ""),
            primary_region=data.get("primary_region", ""),
            image=data.get("image") or data.get("build", {}).get("image"),
            env={k: str(v) for k, v in data.get("env", {}).items()},
            http_service=http_service,
            services=services,
            metrics=metrics,
            mounts=mounts,
            restart=restart,
            vm_size=data.get("vm_size"),
            metadata={k: str(v) for k, v in data.get("metadata", {}).items()},
        )


# ============================================
# UPDATE PLAN
# ============================================

@dataclass(frozen=True)
class UpdatePlan:
    """Desired config applied identically to every machine of a run."""
    app_id: str
    config: MachineConfig
    org_slug: str = ""
    region: str = ""

    def launch_input(self) -> LaunchInput:
        return LaunchInput(
            app_id=self.app_id,
            config=self.config,
            org_slug=self.org_slug,
            region=self.region,
        )


# ============================================
# FLEET SNAPSHOT
# ============================================

@dataclass(frozen=True)
class FleetSnapshot:
    """Machines of one app, captured once per run."""
    app_id: str
    machines: tuple
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @staticmethod
    def capture(app_id: str, machines: List[Machine]) -> "FleetSnapshot":
        return FleetSnapshot(app_id=app_id, machines=tuple(machines))

    def is_empty(self) -> bool:
        return not self.machines

    def machine_ids(self) -> List[str]:
        return [m.id for m in self.machines]

    def __len__(self) -> int:
        return len(self.machines)

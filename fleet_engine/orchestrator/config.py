#fleet_engine\orchestrator\config.py
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class OrchestratorConfig:
    lease_ttl_seconds: int = 30
    # Defaults to half the TTL
    lease_renew_interval_seconds: Optional[float] = None

    wait_timeout_seconds: float = 60.0
    max_concurrency: int = 1

    revalidate_membership: bool = False

    @property
    def renew_interval(self) -> float:
        if self.lease_renew_interval_seconds:
            return self.lease_renew_interval_seconds
        return self.lease_ttl_seconds / 2

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorConfig":
        return cls(
            lease_ttl_seconds=settings.lease_ttl_seconds,
            lease_renew_interval_seconds=settings.lease_renew_interval_seconds,
            wait_timeout_seconds=settings.wait_timeout_seconds,
            max_concurrency=settings.max_concurrency,
            revalidate_membership=settings.revalidate_membership,
        )

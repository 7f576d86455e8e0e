# fleet_engine/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetSettings(BaseSettings):
    """Fleet engine configuration from environment variables (FLEET_*)."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Machines API
    machines_api_url: str = "http://127.0.0.1:4280"
    machines_api_token: str = ""

    # Leases
    lease_owner: str = "fleet-engine"
    lease_ttl_seconds: int = 30
    lease_renew_interval_seconds: Optional[float] = None

    # Rollout
    wait_timeout_seconds: float = 60.0
    max_concurrency: int = 1
    revalidate_membership: bool = False

    # Release history
    database_url: str = "sqlite:///./fleet_engine.db"
    echo_sql: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600

    log_level: str = "INFO"


settings = FleetSettings()

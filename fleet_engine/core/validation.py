#fleet_engine\core\validation.py
from typing import Mapping, Optional

from fleet_engine.core.errors import InvalidConfigError
from fleet_engine.core.models import MachineConfig, RestartPolicy


ALLOWED_PROTOCOLS = {"tcp", "udp"}
ALLOWED_HANDLERS = {"http", "tls", "pg_tls", "proxy_proto"}
ALLOWED_CPU_KINDS = {"shared", "dedicated", "performance"}


def _check_port(value: int, what: str) -> None:
    if not isinstance(value, int) or not 1 <= value <= 65535:
        raise InvalidConfigError(f"{what} must be between 1 and 65535 (got {value!r})")


def validate_machine_config(
    config: MachineConfig,
    *,
    region: Optional[str] = None,
    volumes: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Validate a machine config before it is sent anywhere.

    volumes maps volume name/id to its region. When given, every mount must
    reference a known volume in the machine's region.
    """
    # -------------------------
    # Image
    # -------------------------
    if not config.image or not config.image.strip():
        raise InvalidConfigError("image is required")

    # -------------------------
    # Services
    # -------------------------
    for service in config.services:
        if service.protocol not in ALLOWED_PROTOCOLS:
            raise InvalidConfigError(f"unsupported service protocol: {service.protocol!r}")

        _check_port(service.internal_port, "internal_port")

        if not service.ports:
            raise InvalidConfigError(
                f"service on internal port {service.internal_port} declares no ports"
            )

        for port in service.ports:
            _check_port(port.port, "port")
            unknown = set(port.handlers) - ALLOWED_HANDLERS
            if unknown:
                raise InvalidConfigError(f"unknown port handlers: {sorted(unknown)}")

    # -------------------------
    # Guest
    # -------------------------
    if config.guest is not None:
        if config.guest.cpu_kind not in ALLOWED_CPU_KINDS:
            raise InvalidConfigError(f"unsupported cpu_kind: {config.guest.cpu_kind!r}")
        if config.guest.cpus < 1:
            raise InvalidConfigError("guest cpus must be positive")
        if config.guest.memory_mb < 1:
            raise InvalidConfigError("guest memory_mb must be positive")

    # -------------------------
    # Restart policy
    # -------------------------
    if config.restart is not None:
        if config.restart.max_retries < 0:
            raise InvalidConfigError("restart max_retries must not be negative")
        if config.restart.max_retries and config.restart.policy != RestartPolicy.ON_FAILURE:
            raise InvalidConfigError("restart max_retries is only valid with the on-failure policy")

    # -------------------------
    # Mounts
    # -------------------------
    seen_paths = set()
    for mount in config.mounts:
        if not mount.volume:
            raise InvalidConfigError("mount volume is required")
        if not mount.path.startswith("/"):
            raise InvalidConfigError(f"mount path must be absolute: {mount.path!r}")
        if mount.path in seen_paths:
            raise InvalidConfigError(f"duplicate mount path: {mount.path}")
        seen_paths.add(mount.path)

        if volumes is not None:
            volume_region = volumes.get(mount.volume)
            if volume_region is None:
                raise InvalidConfigError(f"volume {mount.volume} does not exist")
            if region and volume_region != region:
                raise InvalidConfigError(
                    f"volume {mount.volume} is in {volume_region}, machine is in {region}"
                )

    # -------------------------
    # Metrics
    # -------------------------
    if config.metrics is not None:
        _check_port(config.metrics.port, "metrics port")
        if not config.metrics.path.startswith("/"):
            raise InvalidConfigError("metrics path must start with '/'")

"""Update plan assembly from an app config."""

import copy
from typing import Optional

from fleet_engine.core.errors import InvalidConfigError
from fleet_engine.core.models import (
    MACHINE_PRESETS,
    MachineConfig,
    MachinePort,
    MachineService,
)
from fleet_engine.domain.models import AppConfig, HttpService, UpdatePlan


def http_service_pair(http_service: HttpService) -> list[MachineService]:
    """Expand the http_service shorthand into an HTTP and an HTTPS service."""
    http = MachineService(
        protocol="tcp",
        internal_port=http_service.internal_port,
        ports=[
            MachinePort(
                port=80,
                handlers=["http"],
                force_https=http_service.force_https,
            ),
        ],
    )
    https = MachineService(
        protocol="tcp",
        internal_port=http_service.internal_port,
        ports=[
            MachinePort(port=443, handlers=["http", "tls"]),
        ],
    )
    return [http, https]


def desired_config(app_config: AppConfig, image: Optional[str] = None) -> MachineConfig:
    """
    Compute the machine config every machine of the app should run.

    Pure function: the app config is not modified and nothing is fetched.

    Merging rules:
    - image: the explicit image (build output) wins over the app's base image
    - http_service expands into two services, placed before declared services
    - env, metrics, mounts, restart and metadata are copied when declared
    - vm_size resolves to a guest preset
    """
    image = image or app_config.image
    if not image:
        raise InvalidConfigError(f"no image given for app {app_config.app_name}")

    services = []
    if app_config.http_service is not None:
        services.extend(http_service_pair(app_config.http_service))
    services.extend(copy.deepcopy(app_config.services))

    guest = None
    if app_config.vm_size:
        preset = MACHINE_PRESETS.get(app_config.vm_size)
        if preset is None:
            raise InvalidConfigError(f"unknown vm size: {app_config.vm_size}")
        guest = copy.deepcopy(preset)

    return MachineConfig(
        image=image,
        env=dict(app_config.env),
        guest=guest,
        services=services,
        mounts=copy.deepcopy(app_config.mounts),
        restart=copy.deepcopy(app_config.restart),
        metrics=copy.deepcopy(app_config.metrics),
        metadata=dict(app_config.metadata),
    )


def build_update_plan(
    app_config: AppConfig,
    image: Optional[str] = None,
    region: Optional[str] = None,
) -> UpdatePlan:
    """Update plan for one run; region defaults to the app's primary region."""
    return UpdatePlan(
        app_id=app_config.app_name,
        config=desired_config(app_config, image),
        org_slug=app_config.org_slug,
        region=region or app_config.primary_region,
    )

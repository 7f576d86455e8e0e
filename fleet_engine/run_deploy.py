# fleet_engine/run_deploy.py
"""Roll a new image out to every machine of an app."""

import argparse
import logging
import signal
import sys
import threading
import tomllib

from fleet_engine.config import settings
from fleet_engine.core.models import ReleaseStatus
from fleet_engine.domain.models import AppConfig

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m fleet_engine.run_deploy",
        description="Apply a new machine config to every machine of an app.",
    )
    parser.add_argument("app", help="App name")
    parser.add_argument("--image", help="Image reference to deploy (defaults to the app config's image)")
    parser.add_argument("--config", help="Path to the app config TOML file")
    parser.add_argument("--region", help="Region for a bootstrap launch (defaults to primary_region)")
    parser.add_argument("--concurrency", type=int, help="Machines updated in parallel")
    return parser.parse_args(argv)


def load_app_config(app_name: str, path=None) -> AppConfig:
    """Read the app config TOML; the command line app name wins."""
    data = {}
    if path:
        with open(path, "rb") as f:
            data = tomllib.load(f)

    data["app"] = app_name
    return AppConfig.from_dict(data)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.concurrency:
        settings.max_concurrency = args.concurrency

    # Wiring reads settings on import
    from fleet_engine import container
    from fleet_engine.infrastructure.sql.database import init_db

    try:
        app_config = load_app_config(args.app, args.config)
    except (OSError, ValueError) as e:
        logger.error(f"❌ Cannot load app config: {e}")
        return 2

    init_db()

    cancel_event = threading.Event()

    def signal_handler(sig, frame):
        """Cancel the run; held leases are released before exit."""
        logger.info("🛑 Cancelling deploy...")
        cancel_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("=" * 80)
    logger.info(f"🚀 DEPLOY {args.app}")
    logger.info("=" * 80)
    logger.info(f"Machines API: {settings.machines_api_url}")
    logger.info(f"Lease owner: {settings.lease_owner}")
    logger.info(f"Max concurrency: {settings.max_concurrency}")
    logger.info("")

    release = container.release_service.deploy(
        app_config,
        image=args.image,
        region=args.region,
        cancel_event=cancel_event,
    )

    print("")
    print(f"Release {release.release_id}: {release.status.value}")
    if release.launched:
        print(f"  launched: {', '.join(release.updated_machine_ids)}")
    else:
        print(f"  updated:  {', '.join(release.updated_machine_ids) or '-'}")
    if release.failed_machine_id:
        print(f"  failed:   {release.failed_machine_id}")
    if release.skipped_machine_ids:
        print(f"  skipped:  {', '.join(release.skipped_machine_ids)}")
    if release.error_kind:
        print(f"  error:    {release.error_kind}: {release.error_message}")

    if release.status == ReleaseStatus.SUCCEEDED:
        return 0
    if release.status == ReleaseStatus.CANCELLED:
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Command line entry point.

    python -m beacon_analytics serve            # run the API (default)
    python -m beacon_analytics rebuild-rollups  # recompute daily_stats from raw events
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from . import create_app, setup_analytics
from .config import AnalyticsConfig, ConfigError

logger = logging.getLogger("beacon_analytics")


async def _rebuild(config: AnalyticsConfig) -> int:
    analytics = setup_analytics(config)
    await analytics.db.init_schema()
    try:
        return await analytics.rollups.rebuild()
    finally:
        await analytics.shutdown()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="beacon_analytics", description="Beacon Analytics")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (default: $HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: $PORT)")

    sub.add_parser("rebuild-rollups", help="Recompute daily rollups from raw events")

    args = parser.parse_args(argv)

    try:
        config = AnalyticsConfig.from_env()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    if args.command == "rebuild-rollups":
        days = asyncio.run(_rebuild(config))
        logger.info(f"Rebuilt rollups for {days} days")
        return 0

    host = getattr(args, "host", None) or config.host
    port = getattr(args, "port", None) or config.port
    logger.info(f"Starting Beacon Analytics on {host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())

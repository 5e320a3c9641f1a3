#!/usr/bin/env python3
"""
Queue maintenance process.

Periodically reclaims jobs stuck in processing past their timeout and purges
terminal job records past retention.

Usage:
    python -m medtour.queue.run_maintenance
    python -m medtour.queue.run_maintenance --once
"""

import argparse
import asyncio
import signal
import sys

from medtour.config import config
from medtour.queue.connection import close_redis_connection
from medtour.queue.maintenance import MaintenanceScheduler, run_maintenance
from medtour.utils.logging import configure_logging


async def main(once: bool = False, interval: int = None):
    print("=" * 50)
    print("Content Queue Maintenance")
    print("=" * 50)

    if not config.REDIS_URL:
        print("❌ ERROR: REDIS_URL environment variable is required")
        sys.exit(1)

    if once:
        result = await run_maintenance()
        print(f"✅ Reclaimed {result['reclaimed']} job(s), purged {result['purged']} record(s)")
        await close_redis_connection()
        return

    scheduler = MaintenanceScheduler(interval_seconds=interval)

    loop = asyncio.get_running_loop()

    def shutdown_handler():
        print("\n👋 Shutting down maintenance...")
        asyncio.create_task(scheduler.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler)

    await scheduler.start()
    # First pass right away rather than one interval from now
    await scheduler.tick()

    print(f"✅ Maintenance running every {scheduler.interval}s. Press Ctrl+C to stop.")

    try:
        while scheduler.running:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass

    await close_redis_connection()
    print("Maintenance stopped.")


def cli():
    parser = argparse.ArgumentParser(description="Content queue maintenance")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one reclaim + purge pass and exit"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help=f"Seconds between passes (default: {config.MAINTENANCE_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else config.LOG_LEVEL)
    asyncio.run(main(once=args.once, interval=args.interval))


if __name__ == "__main__":
    cli()

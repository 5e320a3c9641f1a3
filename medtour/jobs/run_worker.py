#!/usr/bin/env python3
"""
Standalone content worker process.

Run this as a separate process from the web server so long LLM calls never
hit gunicorn worker timeouts.

Usage:
    python -m medtour.jobs.run_worker
    python -m medtour.jobs.run_worker --queues content,image --max-jobs 20
    python -m medtour.jobs.run_worker --burst
"""

import argparse
import asyncio
import signal
import sys
from typing import List

from medtour.config import config
from medtour.jobs.worker import ContentWorker, ProgressEvent, WorkerOptions
from medtour.queue.connection import close_redis_connection
from medtour.queue.models import QUEUE_NAMES
from medtour.utils.logging import configure_logging, worker_logger as logger


def parse_queues(value: str) -> List[str]:
    queues = [q.strip() for q in value.split(",") if q.strip()]
    unknown = [q for q in queues if q not in QUEUE_NAMES]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"Unknown queue(s): {', '.join(unknown)}. Choose from: {', '.join(QUEUE_NAMES)}"
        )
    return queues


def log_progress(event: ProgressEvent):
    logger.info(
        f"Progress: {event.type}",
        job_id=event.job_id,
        keyword=event.keyword,
        batch_id=event.batch_id,
        completed=event.completed,
        total=event.total,
        quality_score=event.quality_score,
        error=event.error,
    )


async def main(options: WorkerOptions):
    """Run the content worker as a standalone process."""
    print("=" * 60)
    print("Starting Content Worker")
    print("=" * 60)

    if not config.REDIS_URL:
        print("❌ ERROR: REDIS_URL environment variable is required")
        sys.exit(1)

    print(f"  Queues: {', '.join(options.queue_types)}")
    print(f"  Max jobs: {options.max_jobs or 'unlimited'}")
    print(f"  Poll interval: {options.poll_interval}s")
    print(f"  Mode: {'burst' if options.stop_on_empty else 'continuous'}")
    print("=" * 60)

    worker = ContentWorker(on_progress=log_progress)

    loop = asyncio.get_running_loop()

    def handle_shutdown():
        print("\n  Shutdown requested, finishing current job...")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_shutdown)

    try:
        stats = await worker.run(options)
        print(
            f"\n  Processed {stats['processed']} job(s): "
            f"{stats['completed']} completed, {stats['failed']} failed"
        )
    finally:
        await close_redis_connection()
        print("  Worker stopped.")


def cli():
    parser = argparse.ArgumentParser(description="Content generation worker")
    parser.add_argument(
        "--queues",
        type=parse_queues,
        default=list(QUEUE_NAMES),
        help=f"Comma-separated queues in priority order (default: {','.join(QUEUE_NAMES)})"
    )
    parser.add_argument(
        "--max-jobs",
        type=int,
        default=0,
        help="Stop after this many jobs (default: 0 = unlimited)"
    )
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Exit when no job is due instead of polling"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=config.WORKER_POLL_INTERVAL_SECONDS,
        help=f"Seconds to wait when queues are empty (default: {config.WORKER_POLL_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else config.LOG_LEVEL)

    options = WorkerOptions(
        max_jobs=args.max_jobs,
        poll_interval=args.poll_interval,
        stop_on_empty=args.burst,
        queue_types=args.queues,
    )
    asyncio.run(main(options))


if __name__ == "__main__":
    cli()

"""
Queue worker entry point.

    python -m tessera.worker [queue] [--max-jobs N] [--burst]
    python -m tessera.worker --retry-dead [queue]
    python -m tessera.worker --stats [queue]

The worker runs in its own process with its own engine and stops cleanly on
SIGINT/SIGTERM after the job in hand.
"""

import argparse
import asyncio
import logging
import signal

from tessera.app.jobs import build_job_registry
from tessera.core.config import get_settings
from tessera.core.database import Database, create_database_engine
from tessera.core.logging import setup_logging
from tessera.queue import JobQueue

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tessera.worker", description="Run the Tessera job worker")
    parser.add_argument("queue", nargs="?", default="default", help="Queue to consume (default: default)")
    parser.add_argument("--max-jobs", type=int, default=None, help="Exit after processing N jobs")
    parser.add_argument("--burst", action="store_true", help="Exit once the queue is empty")
    action = parser.add_mutually_exclusive_group()
    action.add_argument("--retry-dead", action="store_true", help="Re-queue dead-lettered jobs and exit")
    action.add_argument("--stats", action="store_true", help="Print job counts per status and exit")
    return parser.parse_args(argv)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still interrupts
            logger.debug(f"Signal handler for {sig.name} not supported")


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    database = Database(create_database_engine(settings))
    queue = JobQueue.from_settings(database, settings, registry=build_job_registry(settings))

    try:
        if args.retry_dead:
            count = await queue.retry_dead(args.queue)
            print(f"Re-queued {count} dead job(s) on {args.queue!r}")
            return 0
        if args.stats:
            for status, total in (await queue.stats(args.queue)).items():
                print(f"{status}: {total}")
            return 0

        stop = asyncio.Event()
        _install_signal_handlers(stop)
        logger.info(f"Handlers: {', '.join(queue.registry.names())}")
        await queue.work(args.queue, stop=stop, max_jobs=args.max_jobs, burst=args.burst)
        return 0
    finally:
        await database.dispose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(get_settings())
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

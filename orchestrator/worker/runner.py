"""
Background Indexing Worker - Runs the worker pool outside the API process.

Set RUN_WORKERS_IN_APP=false on the API when running this separately:

    python -m orchestrator.worker.runner
"""

import asyncio
import signal

import structlog

from orchestrator.config import get_settings
from orchestrator.core.logs import configure_logging
from orchestrator.database import close_db, init_db
from orchestrator.services.pipeline import IndexingPipeline
from orchestrator.services.queue import IndexingQueue
from orchestrator.worker.pool import WorkerPool

settings = get_settings()
logger = structlog.get_logger(__name__)


async def run_worker(stop: asyncio.Event) -> None:
    """Run the pool until `stop` is set."""
    queue = IndexingQueue()
    pool = WorkerPool(queue, IndexingPipeline())

    await pool.start()
    try:
        await stop.wait()
    finally:
        await pool.stop()


async def main() -> None:
    """Main entry point for the worker."""
    configure_logging()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    await logger.ainfo(
        "initializing_worker",
        concurrency=settings.worker_concurrency,
        poll_interval=settings.queue_poll_interval_seconds,
    )

    await init_db()

    try:
        await run_worker(stop)
    finally:
        await close_db()
        await logger.ainfo("worker_stopped")


if __name__ == "__main__":
    asyncio.run(main())

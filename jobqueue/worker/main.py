"""
Worker process entrypoint.

Runs a WorkerPool against the configured database. Pools drain and exit
once the queue is empty, so this process re-triggers start() on a fixed
interval until it receives SIGTERM or SIGINT.
"""

import asyncio
import logging
import signal
from contextlib import suppress

from jobqueue.config import get_settings
from jobqueue.db import close_db, get_engine, init_db
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import serve_metrics, setup_metrics
from jobqueue.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobqueue.queue import JobQueueService
from jobqueue.worker.pool import WorkerPool
from jobqueue.worker.registry import HandlerRegistry

logger = logging.getLogger(__name__)


async def run_pool(pool: WorkerPool, stop_event: asyncio.Event, restart_interval: float) -> None:
    """
    Keep a pool running until stop_event is set.

    Args:
        pool: The pool to drive.
        stop_event: Set to request shutdown.
        restart_interval: Seconds to wait before restarting drained workers.
    """
    while not stop_event.is_set():
        await pool.start()
        await pool.join()

        with suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=restart_interval)

    await pool.shutdown()


async def run_async(registry: HandlerRegistry | None = None) -> None:
    """
    Run the worker process asynchronously.

    Args:
        registry: Handlers to serve. Host applications pass their own
            registry; the default one only has the built-in handlers.
    """
    settings = get_settings()
    setup_logging("worker")
    setup_metrics()
    serve_metrics(settings.prometheus_port)

    await init_db()

    if settings.otel_enabled:
        setup_tracing()
        instrument_sqlalchemy(get_engine())

    pool = WorkerPool(JobQueueService(), registry or HandlerRegistry())
    stop_event = asyncio.Event()

    def request_stop() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()
        pool.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, request_stop)

    logger.info(
        "Worker process starting",
        extra={"max_workers": pool.max_workers, "batch_size": pool.batch_size},
    )

    try:
        await run_pool(pool, stop_event, settings.worker_restart_interval_seconds)
    finally:
        await close_db()
        logger.info("Worker process stopped")


def run() -> None:
    """Run the worker process."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()

"""Generation worker: polls the job queue and runs claimed jobs.

One loop per process. A single concurrency bound (WORKER_CONCURRENCY) is shared
by all job types so the number of simultaneous provider calls stays small.
Each claimed job runs as its own task; the loop only claims as many jobs as
there are free slots.
"""

import asyncio

import structlog

from brandforge.core.config import Settings
from brandforge.services.job_queue import JobQueue

logger = structlog.get_logger(__name__)

ERROR_BACKOFF_SECONDS = 5


def log_job_task_error(task: asyncio.Task) -> None:
    """Retrieve and log an exception that escaped JobQueue.execute."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "worker.job_task.crashed",
            task=task.get_name(),
            error_type=type(exc).__name__,
            error_message=str(exc),
            exc_info=exc,
        )


async def run_generation_worker(queue: JobQueue, settings: Settings) -> None:
    """Main worker loop.

    Workflow:
    1. Reset jobs orphaned by a previous crash (running → pending)
    2. Claim up to ``worker_concurrency - in_flight`` pending jobs
    3. Start one task per claimed job
    4. Wait for a task to finish or the poll interval to pass
    5. On cancellation, cancel in-flight jobs and re-raise

    Args:
        queue: Job queue with all handlers registered
        settings: Application settings (poll interval, concurrency)
    """
    await queue.recover_orphaned()

    logger.info(
        "worker.started",
        worker_type="generation",
        poll_interval=settings.poll_interval_seconds,
        concurrency=settings.worker_concurrency,
    )

    in_flight: set[asyncio.Task] = set()

    try:
        while True:
            try:
                free_slots = settings.worker_concurrency - len(in_flight)
                records = await queue.claim(free_slots) if free_slots > 0 else []

                for record in records:
                    task = asyncio.create_task(queue.execute(record), name=f"job-{record.id}")
                    in_flight.add(task)
                    task.add_done_callback(in_flight.discard)
                    task.add_done_callback(log_job_task_error)

                if in_flight:
                    await asyncio.wait(
                        in_flight,
                        timeout=settings.poll_interval_seconds,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                else:
                    await asyncio.sleep(settings.poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                # Unexpected error in polling loop - log and continue with backoff
                logger.error(
                    "worker.error",
                    worker_type="generation",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    except asyncio.CancelledError:
        pending = list(in_flight)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.info("worker.stopped", worker_type="generation", cancelled_jobs=len(pending))
        raise

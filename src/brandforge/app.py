"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from brandforge.api.routes import jobs
from brandforge.core import timezone  # noqa: F401  (sets TZ=UTC)
from brandforge.core.config import Settings, configure_logging
from brandforge.core.database import setup_db_session
from brandforge.pipelines.base import PipelineDeps
from brandforge.pipelines.dispatcher import PipelineDispatcher
from brandforge.services.job_queue import JobQueue
from brandforge.services.ledger import BalanceLedger
from brandforge.services.messaging import CallbackMessageSender
from brandforge.services.progress import ResourceRegistry
from brandforge.services.retry import RetryPolicy
from brandforge.services.storage import PinataStorage
from brandforge.services.synthesis.replicate_client import ReplicateSynthesizer
from brandforge.uow import create_uow_factory
from brandforge.workers.generation_worker import run_generation_worker

logger = structlog.get_logger()

RESTART_DELAY = 1  # Fixed 1 second delay between restarts


def create_resilient_worker(
    coro_factory: Callable[[], Awaitable[None]], worker_name: str, shutdown_event: asyncio.Event
) -> asyncio.Task:
    """Create a worker with automatic restart on failure.

    Args:
        coro_factory: Zero-argument callable returning a fresh worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """

    def on_worker_done(task: asyncio.Task):
        # Check if shutdown was requested
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Check if task was cancelled (normal shutdown)
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker loops never return on their own
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_factory())
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_factory())
    task.add_done_callback(on_worker_done)
    return task


def build_services(app: FastAPI, settings: Settings) -> None:
    """Wire every service onto ``app.state``.

    Raises:
        ConfigurationError: If a job type has no handler
    """
    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    ledger = BalanceLedger(uow_factory, referral_reward=settings.referral_reward)
    registry = ResourceRegistry(max_timers_per_user=settings.max_timers_per_user)
    queue = JobQueue(uow_factory)

    deps = PipelineDeps(
        uow_factory=uow_factory,
        ledger=ledger,
        synthesizer=ReplicateSynthesizer(
            api_token=settings.replicate_api_token,
            model=settings.replicate_model_version,
            edit_model=settings.replicate_edit_model,
            timeout_seconds=settings.provider_timeout_seconds,
        ),
        storage=PinataStorage(
            jwt_token=settings.pinata_jwt,
            gateway_domain=settings.pinata_gateway,
            timeout_seconds=settings.storage_timeout_seconds,
        ),
        sender=CallbackMessageSender(
            callback_url=settings.frontend_callback_url,
            token=settings.frontend_callback_token,
        ),
        settings=settings,
        provider_policy=RetryPolicy.from_settings(settings),
    )
    dispatcher = PipelineDispatcher(deps, registry)
    dispatcher.register_handlers(queue)
    queue.ensure_handlers()

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.ledger = ledger
    app.state.registry = registry
    app.state.job_queue = queue
    app.state.dispatcher = dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, wire services, start the generation worker
      and the progress-timer sweeper
    - Shutdown: Stop workers, clear progress timers

    Workers automatically restart on failure.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)
    build_services(app, settings)

    shutdown_event = asyncio.Event()

    worker_task = create_resilient_worker(
        lambda: run_generation_worker(app.state.job_queue, settings),
        "generation",
        shutdown_event,
    )
    sweeper_task = create_resilient_worker(
        lambda: app.state.registry.run_sweeper(settings.progress_sweep_interval_seconds),
        "progress_sweeper",
        shutdown_event,
    )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        job_types=[job_type.value for job_type in app.state.job_queue.registered_types],
        worker_concurrency=settings.worker_concurrency,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    worker_task.cancel()
    sweeper_task.cancel()
    await asyncio.gather(worker_task, sweeper_task, return_exceptions=True)

    app.state.registry.stop_all()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="BrandForge Backend API",
        description="Asynchronous logo, sticker and meme generation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router)  # Jobs router has prefix="/api" in definition

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()

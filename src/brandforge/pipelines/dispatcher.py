"""Pipeline dispatcher: the job queue's handler for every job type.

Selects the pipeline for a job, keeps the user informed while it runs, and is
the boundary where any uncaught error becomes an apology with a correlation
reference. Jobs are never re-enqueued from here.
"""

import asyncio
import secrets

import structlog

from brandforge.jobs.payloads import GenerationJob, JobType
from brandforge.pipelines.base import Pipeline, PipelineDeps
from brandforge.pipelines.context import PipelineContext, PipelineFailed
from brandforge.pipelines.edit import EditPipeline
from brandforge.pipelines.logo import LogoPipeline
from brandforge.pipelines.meme import MemePipeline
from brandforge.pipelines.package import PackagePipeline
from brandforge.pipelines.sticker import StickerPipeline
from brandforge.services.exceptions import InsufficientEntitlementError
from brandforge.services.job_queue import JobQueue
from brandforge.services.messaging import Button, OutgoingMessage
from brandforge.services.progress import ResourceRegistry
from brandforge.services.retry import describe_error

logger = structlog.get_logger(__name__)


def correlation_reference() -> str:
    """Short reference shown to the user and logged with the failure (8 hex chars)."""
    return secrets.token_hex(4)


class PipelineDispatcher:
    """Routes jobs to their pipeline."""

    def __init__(
        self,
        deps: PipelineDeps,
        registry: ResourceRegistry,
        pipelines: dict[JobType, Pipeline] | None = None,
    ):
        """Initialize dispatcher.

        Args:
            deps: Collaborators shared by the pipelines
            registry: Owner of progress timers
            pipelines: Override the pipeline per job type (defaults to one of each)
        """
        self.deps = deps
        self.registry = registry
        self.pipelines: dict[JobType, Pipeline] = pipelines or {
            JobType.LOGO: LogoPipeline(deps),
            JobType.MEME: MemePipeline(deps),
            JobType.STICKER: StickerPipeline(deps),
            JobType.EDIT: EditPipeline(deps),
            JobType.PACKAGE: PackagePipeline(deps),
        }

    def register_handlers(self, queue: JobQueue) -> None:
        for job_type in self.pipelines:
            queue.register_handler(job_type, self.dispatch)

    def pipeline_for(self, job: GenerationJob) -> Pipeline:
        try:
            return self.pipelines[job.job_type]
        except KeyError:
            raise ValueError(f"No pipeline for job type {job.job_type.value}") from None

    async def dispatch(self, job: GenerationJob) -> PipelineContext | None:
        """Run a job to completion.

        Never raises except on cancellation: failures are logged, reported to
        the user and end the job.

        Returns:
            Final context on success, None if the job failed or was refused
        """
        pipeline = self.pipeline_for(job)
        job_key = str(job.id)
        log = logger.bind(job_id=job_key, job_type=job.job_type.value, user_id=job.user_id)

        async def notify_progress(tick: int) -> None:
            await pipeline.send(job.chat_id, pipeline.progress_message(tick))

        settings = self.deps.settings
        self.registry.start(
            job.user_id,
            notify_progress,
            interval_seconds=settings.progress_interval_seconds,
            max_ticks=settings.progress_max_ticks,
            job_key=job_key,
        )

        try:
            return await pipeline.run(job)

        except asyncio.CancelledError:
            raise

        except InsufficientEntitlementError as e:
            log.info(
                "job.refused",
                reason=e.reason,
                cost=e.cost,
                balance=e.balance,
            )
            await pipeline.send(job.chat_id, insufficient_entitlement_message(pipeline, e))
            return None

        except Exception as e:
            reference = correlation_reference()
            cause = e.cause if isinstance(e, PipelineFailed) and e.cause is not None else e
            log.error(
                "job.failed",
                reference=reference,
                error_type=type(cause).__name__,
                error_message=str(cause),
                exc_info=True,
            )
            await pipeline.send(job.chat_id, apology_message(pipeline, job, cause, reference))
            return None

        finally:
            self.registry.stop(job.user_id, job_key)


def insufficient_entitlement_message(
    pipeline: Pipeline, error: InsufficientEntitlementError
) -> OutgoingMessage:
    if error.reason == "free_generation_used":
        text = (
            "Your free generation has already been used. "
            f"Your balance is {error.balance} credits; please start the {pipeline.unit_noun} "
            "again to see the current price."
        )
    else:
        text = (
            f"This {pipeline.unit_noun} costs {error.cost} credits but your balance is "
            f"{error.balance}. Please top up and try again."
        )
    return OutgoingMessage(
        text=text,
        buttons=(Button(label="⭐ Top up", action="topup"),),
        kind="apology",
    )


def apology_message(
    pipeline: Pipeline, job: GenerationJob, error: BaseException, reference: str
) -> OutgoingMessage:
    return OutgoingMessage(
        text=(
            f"Sorry, we couldn't finish your {pipeline.unit_noun}. {describe_error(error)}\n"
            f"Reference: {reference}"
        ),
        buttons=(Button(label="🔄 Try again", action=f"retry:{job.id}"),),
        kind="apology",
    )

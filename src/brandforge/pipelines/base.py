"""Shared pipeline skeleton.

A pipeline turns one job into delivered media. ``Pipeline.run`` drives the
state machine and each stage is a method that subclasses override:

1. validate    - re-check entitlement (the enqueue-time check may be stale)
2. plan        - split the job into independently fallible units
3. synthesize  - call the provider through the retry policy
4. process     - resize / reformat / background strip (Pillow, in a thread)
5. store       - upload, deliver each unit to the chat, record the generation
6. settle      - charge the ledger once, for delivered units only
7. notify      - follow-up summary (charges, balance, apologies) and referrer notice

Units fail in isolation. A job is only failed when nothing was delivered.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from brandforge.core.config import Settings
from brandforge.jobs.payloads import GenerationJob, JobType
from brandforge.models.generation import GenerationRecord
from brandforge.pipelines.context import (
    Deliverable,
    PipelineContext,
    PipelineFailed,
    PipelineState,
    Rendition,
    Unit,
)
from brandforge.services.exceptions import (
    DeliveryNetworkError,
    InsufficientEntitlementError,
    ProviderTransientError,
)
from brandforge.services.ledger import BalanceLedger, SettlementResult
from brandforge.services.messaging import Button, MessageSender, OutgoingMessage
from brandforge.services.retry import (
    DEFAULT_POLICY,
    PROVIDER_POLICY,
    RetryPolicy,
    describe_error,
    with_retry,
)
from brandforge.services.storage import ObjectStorage
from brandforge.services.synthesis.base import SynthesisAttempt, Synthesizer, synthesize_with_retry

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class PipelineDeps:
    """Collaborators shared by every pipeline.

    Attributes:
        uow_factory: Factory returned by create_uow_factory
        ledger: Balance ledger (entitlement and settlement)
        synthesizer: Image-synthesis provider
        storage: Object storage for outputs
        sender: Front end message sender
        settings: Application settings
        provider_policy: Backoff for provider calls
        io_policy: Backoff for storage uploads and message delivery
        sleep: Awaitable sleep used by every backoff (injectable for tests)
    """

    uow_factory: Callable
    ledger: BalanceLedger
    synthesizer: Synthesizer
    storage: ObjectStorage
    sender: MessageSender
    settings: Settings
    provider_policy: RetryPolicy = PROVIDER_POLICY
    io_policy: RetryPolicy = DEFAULT_POLICY
    sleep: SleepFn = asyncio.sleep


class Pipeline:
    """Template for a per-type generation pipeline."""

    job_type: JobType
    unit_noun = "image"

    def __init__(self, deps: PipelineDeps):
        self.deps = deps

    async def run(self, job: GenerationJob) -> PipelineContext:
        """Execute the job end to end.

        Returns:
            Context in the ``done`` state

        Raises:
            InsufficientEntitlementError: The user can no longer pay for the job
            PipelineFailed: No unit was delivered
        """
        log = logger.bind(job_id=str(job.id), job_type=job.job_type.value, user_id=job.user_id)
        log.info("pipeline.started", cost=job.cost, uses_free_generation=job.uses_free_generation)

        ctx = await self.validate(PipelineContext(job=job))
        ctx = await self.generate(ctx)

        if not ctx.delivered_units:
            cause = next((unit.error for unit in ctx.failed_units), None)
            failed = ctx.advance(PipelineState.FAILED, error=cause)
            log.warning(
                "pipeline.nothing_delivered",
                units=len(ctx.units),
                error_type=type(cause).__name__ if cause else None,
                error_message=str(cause) if cause else None,
            )
            raise PipelineFailed(failed, cause)

        ctx = await self.settle(ctx.advance(PipelineState.SETTLING))
        ctx = await self.notify(ctx.advance(PipelineState.NOTIFYING))
        ctx = ctx.advance(PipelineState.DONE)

        log.info(
            "pipeline.completed",
            delivered=len(ctx.delivered_units),
            failed=len(ctx.failed_units),
            charged=ctx.charged_cost,
            settlement_status=ctx.settlement.status.value if ctx.settlement else None,
        )
        return ctx

    # Stage: validating

    async def validate(self, ctx: PipelineContext) -> PipelineContext:
        job = ctx.job
        entitlement = await self.deps.ledger.check_entitlement(
            job.user_id, job.cost, job.uses_free_generation
        )
        if not entitlement.allowed:
            raise InsufficientEntitlementError(
                cost=job.cost, balance=entitlement.balance, reason=entitlement.reason
            )
        return ctx

    # Stages: synthesizing → processing → storing

    async def generate(self, ctx: PipelineContext) -> PipelineContext:
        """Produce and deliver media; returns the context at the end of ``storing``."""
        ctx = ctx.advance(PipelineState.SYNTHESIZING, units=tuple(await self.plan(ctx.job)))
        ctx = await self.synthesize(ctx)
        ctx = await self.process(ctx.advance(PipelineState.PROCESSING))
        return await self.store(ctx.advance(PipelineState.STORING))

    async def plan(self, job: GenerationJob) -> list[Unit]:
        raise NotImplementedError

    async def synthesize(self, ctx: PipelineContext) -> PipelineContext:
        """Synthesize units one after another."""
        units: list[Unit] = []
        attempts = list(ctx.attempts)
        for unit in ctx.units:
            unit, unit_attempts = await self.synthesize_unit(ctx.job, unit)
            units.append(unit)
            attempts.extend(unit_attempts)
        return replace(ctx, units=tuple(units), attempts=tuple(attempts))

    async def synthesize_unit(
        self, job: GenerationJob, unit: Unit
    ) -> tuple[Unit, list[SynthesisAttempt]]:
        result, attempts = await synthesize_with_retry(
            self.deps.synthesizer,
            unit.prompt,
            unit.params,
            policy=self.deps.provider_policy,
            sleep=self.deps.sleep,
            label=f"{job.job_type.value}.unit.{unit.index + 1}",
        )
        if result.success and result.data:
            return replace(unit, images=tuple(result.data)), attempts
        error = result.error or ProviderTransientError("Provider returned no images")
        return unit.fail(error, PipelineState.SYNTHESIZING), attempts

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        units: list[Unit] = []
        for unit in ctx.units:
            if not unit.ok:
                units.append(unit)
                continue
            try:
                renditions = await asyncio.to_thread(self.render, ctx.job, unit)
            except (ValueError, OSError) as e:
                logger.warning(
                    "pipeline.unit.processing_failed",
                    job_id=str(ctx.job.id),
                    unit=unit.index,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                units.append(unit.fail(e, PipelineState.PROCESSING))
            else:
                units.append(replace(unit, renditions=tuple(renditions)))
        return ctx.with_units(units)

    def render(self, job: GenerationJob, unit: Unit) -> list[Rendition]:
        """Turn a unit's raw provider output into upload-ready renditions (runs in a thread)."""
        raise NotImplementedError

    async def store(self, ctx: PipelineContext) -> PipelineContext:
        """Upload each unit, deliver it to the chat and record it.

        Media goes out as soon as it is stored, before the ledger is touched.
        """
        units: list[Unit] = []
        delivered_count = 0
        for unit in ctx.units:
            if unit.ok:
                unit = await self.upload_unit(ctx.job, unit)
            if unit.ok:
                unit = await self.deliver_unit(ctx, unit, delivered_count)
            if unit.delivered:
                delivered_count += 1
            units.append(unit)
        return ctx.with_units(units)

    def storage_key(self, job: GenerationJob, unit: Unit, rendition: Rendition) -> str:
        return f"{job.job_type.value}/{job.id}/{unit.index + 1}-{rendition.name}.png"

    async def upload_unit(self, job: GenerationJob, unit: Unit) -> Unit:
        deliverables: list[Deliverable] = []
        for rendition in unit.renditions:
            key = self.storage_key(job, unit, rendition)
            url = await self.upload(rendition.data, key, rendition.content_type)
            if isinstance(url, BaseException):
                return unit.fail(url, PipelineState.STORING)
            deliverables.append(
                Deliverable(
                    name=rendition.name,
                    url=url,
                    size=rendition.size,
                    content_type=rendition.content_type,
                )
            )
        return replace(unit, deliverables=tuple(deliverables))

    async def upload(self, data: bytes, key: str, content_type: str) -> str | BaseException:
        """Upload through the retry policy.

        Returns:
            Stored URL, or the last error if every attempt failed
        """
        result = await with_retry(
            lambda: self.deps.storage.upload(data, key, content_type),
            policy=self.deps.io_policy,
            sleep=self.deps.sleep,
            operation_name="storage.upload",
        )
        if result.success and result.data:
            return result.data
        return result.error or RuntimeError(f"Upload of {key} returned no URL")

    async def deliver_unit(self, ctx: PipelineContext, unit: Unit, delivered_before: int) -> Unit:
        cost = self.record_cost(ctx, unit, delivered_before)
        if not await self.send(ctx.job.chat_id, self.result_message(ctx, unit, cost)):
            return unit.fail(
                DeliveryNetworkError(f"Could not deliver {self.unit_label(unit)}"),
                PipelineState.STORING,
            )
        await self.record_generation(ctx.job, unit, cost)
        return replace(unit, delivered=True)

    def record_cost(self, ctx: PipelineContext, unit: Unit, delivered_before: int) -> int:
        """Cost written on this unit's generation record."""
        return unit.cost

    def result_message(self, ctx: PipelineContext, unit: Unit, cost: int) -> OutgoingMessage:
        raise NotImplementedError

    def record_metadata(self, job: GenerationJob, unit: Unit) -> dict[str, Any]:
        return {}

    async def record_generation(self, job: GenerationJob, unit: Unit, cost: int) -> None:
        """Persist a GenerationRecord. Failures are logged; the media is already out."""
        record = GenerationRecord(
            user_id=job.user_id,
            job_id=job.id,
            type=job.job_type.value,
            cost=cost,
            quality=getattr(getattr(job, "quality", None), "value", None),
            urls=[deliverable.url for deliverable in unit.deliverables],
            generation_metadata={
                "unit": unit.index,
                "prompt": unit.prompt[:500],
                **self.record_metadata(job, unit),
            },
        )
        try:
            async with await self.deps.uow_factory() as uow:
                await uow.generations.add(record)
        except SQLAlchemyError as e:
            logger.error(
                "generation.record.failed",
                job_id=str(job.id),
                unit=unit.index,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )

    # Stage: settling

    def settlement_key(self, job: GenerationJob) -> str:
        return f"job:{job.id}"

    def charge(self, ctx: PipelineContext) -> tuple[int, bool]:
        """(cost, used free generation) for what was actually delivered."""
        delivered = ctx.delivered_units
        cost = sum(unit.cost for unit in delivered)
        first = ctx.units[0] if ctx.units else None
        used_free = ctx.job.uses_free_generation and first is not None and first.delivered
        return cost, used_free

    async def settle(self, ctx: PipelineContext) -> PipelineContext:
        job = ctx.job
        cost, used_free = self.charge(ctx)
        result = await self.deps.ledger.settle(
            job.user_id,
            self.settlement_key(job),
            used_free_generation=used_free,
            cost=cost,
            job_id=job.id,
        )
        return replace(
            ctx,
            settlement=result,
            charged_cost=result.charged,
            used_free_generation=result.free_generation_consumed,
        )

    # Stage: notifying

    async def notify(self, ctx: PipelineContext) -> PipelineContext:
        summary = self.summary_message(ctx)
        if summary is not None:
            await self.send(ctx.job.chat_id, summary)

        settlement = ctx.settlement
        if settlement is not None and settlement.referrer_id is not None:
            await self.send(settlement.referrer_id, referral_notice(settlement))
        return ctx

    def unit_label(self, unit: Unit) -> str:
        return f"{self.unit_noun} {unit.index + 1}"

    def summary_message(self, ctx: PipelineContext) -> OutgoingMessage | None:
        lines = [
            f"Sorry, {self.unit_label(unit)} could not be generated. {describe_error(unit.error)}"
            for unit in ctx.failed_units
            if unit.error is not None
        ]

        settlement = ctx.settlement
        if settlement is not None and settlement.ok and settlement.balance is not None:
            if ctx.charged_cost:
                lines.append(f"Charged {ctx.charged_cost} credits.")
            elif ctx.used_free_generation:
                lines.append("This one was free.")
            lines.append(f"Balance: {settlement.balance} credits.")

        buttons = tuple(self.followup_buttons(ctx))
        if not lines and not buttons:
            return None
        return OutgoingMessage(text="\n".join(lines), buttons=buttons, kind="summary")

    def followup_buttons(self, ctx: PipelineContext) -> list[Button]:
        return []

    def progress_message(self, tick: int) -> OutgoingMessage:
        return OutgoingMessage(
            text=f"Still working on your {self.unit_noun}... ({tick})", kind="progress"
        )

    async def send(self, chat_id: int, message: OutgoingMessage) -> bool:
        """Deliver a message through the retry policy.

        Returns:
            True if the front end accepted the message
        """
        result = await with_retry(
            lambda: self.deps.sender.send_message(chat_id, message),
            policy=self.deps.io_policy,
            sleep=self.deps.sleep,
            operation_name=f"message.{message.kind}",
        )
        if not result.success:
            logger.warning(
                "message.delivery.failed",
                chat_id=chat_id,
                kind=message.kind,
                attempts=result.attempts,
                error_type=type(result.error).__name__,
            )
        return result.success


def referral_notice(settlement: SettlementResult) -> OutgoingMessage:
    return OutgoingMessage(
        text=(
            "Great news! Someone you referred just used the bot and you've earned "
            f"{settlement.referral_reward} credits!"
        ),
        kind="referral",
    )

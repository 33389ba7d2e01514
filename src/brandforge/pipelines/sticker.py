"""Sticker pipeline: a batch of independent units with per-unit billing."""

import asyncio
from dataclasses import replace

from brandforge.jobs.payloads import JobType, StickerJob
from brandforge.pipelines.base import Pipeline
from brandforge.pipelines.context import PipelineContext, PipelineState, Rendition, Unit
from brandforge.pipelines.prompts import build_sticker_prompt, sticker_variation
from brandforge.services import imaging
from brandforge.services.messaging import Button, OutgoingMessage


class StickerPipeline(Pipeline):
    """Generates ``job.count`` stickers.

    Units run concurrently in batches no larger than the provider's per-call
    output cap. Only delivered units are billed, and the free grant is only
    consumed when the free unit (the first) was delivered.
    """

    job_type = JobType.STICKER
    unit_noun = "sticker"

    async def plan(self, job: StickerJob) -> list[Unit]:  # type: ignore[override]
        base_prompt = build_sticker_prompt(job.session, job.count, job.style, job.prompt)
        return [
            Unit(
                index=index,
                prompt=sticker_variation(base_prompt, index),
                cost=job.unit_costs[index],
                params={"num_outputs": 1},
            )
            for index in range(job.count)
        ]

    @property
    def batch_size(self) -> int:
        return max(1, self.deps.settings.provider_max_outputs)

    async def synthesize(self, ctx: PipelineContext) -> PipelineContext:
        job = ctx.job
        units = list(ctx.units)
        attempts = list(ctx.attempts)

        for start in range(0, len(units), self.batch_size):
            batch = units[start : start + self.batch_size]
            results = await asyncio.gather(
                *(self.synthesize_unit(job, unit) for unit in batch), return_exceptions=True
            )
            for unit, result in zip(batch, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    units[unit.index] = unit.fail(result, PipelineState.SYNTHESIZING)
                    continue
                units[unit.index], unit_attempts = result
                attempts.extend(unit_attempts)

            done = min(start + self.batch_size, len(units))
            succeeded = sum(1 for unit in units[:done] if unit.ok)
            await self.send(
                job.chat_id,
                OutgoingMessage(
                    text=f"Progress: {done}/{len(units)} stickers generated "
                    f"({succeeded} succeeded)",
                    kind="progress",
                ),
            )

        return replace(ctx, units=tuple(units), attempts=tuple(attempts))

    def render(self, job: StickerJob, unit: Unit) -> list[Rendition]:  # type: ignore[override]
        return [
            Rendition(
                name="sticker",
                data=imaging.make_sticker(unit.images[0]),
                size=imaging.STICKER_SIZE,
            )
        ]

    def record_metadata(self, job: StickerJob, unit: Unit) -> dict:  # type: ignore[override]
        return {"style": job.style, "sticker": unit.index + 1, "of": job.count}

    def result_message(self, ctx: PipelineContext, unit: Unit, cost: int) -> OutgoingMessage:
        return OutgoingMessage(sticker_url=unit.deliverables[0].url)

    def followup_buttons(self, ctx: PipelineContext) -> list[Button]:
        return [
            Button(label="🔄 More stickers", action=f"regenerate_stickers:{ctx.job.id}"),
            Button(label="🆕 New sticker pack", action="new_stickers"),
        ]

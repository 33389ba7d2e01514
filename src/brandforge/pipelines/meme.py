"""Meme pipeline: one synthesis, optionally guided by a reference image."""

import structlog

from brandforge.jobs.payloads import JobType, MemeJob
from brandforge.pipelines.base import Pipeline
from brandforge.pipelines.context import PipelineContext, Rendition, Unit
from brandforge.pipelines.prompts import build_meme_prompt
from brandforge.services import imaging
from brandforge.services.exceptions import ServiceError
from brandforge.services.messaging import Button, OutgoingMessage

logger = structlog.get_logger(__name__)


class MemePipeline(Pipeline):
    job_type = JobType.MEME
    unit_noun = "meme"

    async def plan(self, job: MemeJob) -> list[Unit]:  # type: ignore[override]
        params: dict = {"num_outputs": 1}
        if job.reference_image_url:
            reference = await self.fetch_reference(job)
            if reference is not None:
                params["image"] = reference

        prompt = build_meme_prompt(job.session, job.prompt, has_reference_image="image" in params)
        return [Unit(index=0, prompt=prompt, cost=job.cost, params=params)]

    async def fetch_reference(self, job: MemeJob) -> bytes | None:
        """Download the user's reference image; the meme is made without it on failure."""
        try:
            return await self.deps.storage.download(job.reference_image_url or "")
        except ServiceError as e:
            logger.warning(
                "meme.reference_image.unavailable",
                job_id=str(job.id),
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return None

    def render(self, job: MemeJob, unit: Unit) -> list[Rendition]:  # type: ignore[override]
        data = imaging.reformat(unit.images[0], "PNG")
        width, _ = imaging.image_size(data)
        return [Rendition(name="meme", data=data, size=width)]

    def record_metadata(self, job: MemeJob, unit: Unit) -> dict:  # type: ignore[override]
        return {"reference_image": "image" in unit.params}

    def result_message(self, ctx: PipelineContext, unit: Unit, cost: int) -> OutgoingMessage:
        job = ctx.job
        return OutgoingMessage(
            text=f"Your meme is ready! ({job.quality.value.title()} quality, {cost} credits)",
            image_url=unit.deliverables[0].url,
            buttons=(
                Button(label="🔄 Regenerate", action=f"regenerate_meme:{job.id}"),
                Button(label="🆕 New meme", action="new_meme"),
            ),
        )

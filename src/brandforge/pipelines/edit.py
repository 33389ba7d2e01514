"""Edit pipeline: apply an instruction to an existing image, deliver as a sticker."""

from brandforge.jobs.payloads import EditJob, JobType
from brandforge.pipelines.base import Pipeline
from brandforge.pipelines.context import PipelineContext, Rendition, Unit
from brandforge.pipelines.prompts import build_edit_prompt
from brandforge.services import imaging
from brandforge.services.messaging import Button, OutgoingMessage


class EditPipeline(Pipeline):
    job_type = JobType.EDIT
    unit_noun = "edited image"

    async def plan(self, job: EditJob) -> list[Unit]:  # type: ignore[override]
        # Without the source image there is nothing to edit; let the error surface
        source = await self.deps.storage.download(job.source_image_url)
        return [
            Unit(
                index=0,
                prompt=build_edit_prompt(job.prompt),
                cost=job.cost,
                params={"image": source},
            )
        ]

    def render(self, job: EditJob, unit: Unit) -> list[Rendition]:  # type: ignore[override]
        return [
            Rendition(
                name="sticker",
                data=imaging.make_sticker(unit.images[0]),
                size=imaging.STICKER_SIZE,
            )
        ]

    def record_metadata(self, job: EditJob, unit: Unit) -> dict:  # type: ignore[override]
        return {"source_image_url": job.source_image_url}

    def result_message(self, ctx: PipelineContext, unit: Unit, cost: int) -> OutgoingMessage:
        return OutgoingMessage(
            sticker_url=unit.deliverables[0].url,
            buttons=(Button(label="✏️ Edit again", action=f"edit_again:{ctx.job.id}"),),
        )

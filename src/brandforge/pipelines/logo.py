"""Logo pipeline: independent concepts, each stored at several sizes."""

import re

from brandforge.jobs.payloads import JobType, LogoJob
from brandforge.pipelines.base import Pipeline
from brandforge.pipelines.context import PipelineContext, Rendition, Unit
from brandforge.pipelines.prompts import build_logo_prompts
from brandforge.services import imaging
from brandforge.services.messaging import Button, OutgoingMessage

LOGO_SIZES = (1024, 512, 256)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "logo"


class LogoPipeline(Pipeline):
    """Synthesizes ``job.concepts`` logos one after another.

    A failed concept does not affect the others. The job cost is charged once
    and written on the first delivered concept's record.
    """

    job_type = JobType.LOGO
    unit_noun = "logo concept"

    async def plan(self, job: LogoJob) -> list[Unit]:  # type: ignore[override]
        prompts = build_logo_prompts(job.session, job.brand_name, job.concepts)
        return [
            Unit(index=index, prompt=prompt, cost=job.cost, params={"num_outputs": 1})
            for index, prompt in enumerate(prompts)
        ]

    def render(self, job: LogoJob, unit: Unit) -> list[Rendition]:  # type: ignore[override]
        source = unit.images[0]
        return [
            Rendition(name=str(size), data=imaging.resize(source, size), size=size)
            for size in LOGO_SIZES
        ]

    def storage_key(  # type: ignore[override]
        self, job: LogoJob, unit: Unit, rendition: Rendition
    ) -> str:
        return f"logos/{slugify(job.brand_name)}-{job.id}-{unit.index}-{rendition.name}.png"

    def record_cost(self, ctx: PipelineContext, unit: Unit, delivered_before: int) -> int:
        return ctx.job.cost if delivered_before == 0 else 0

    def record_metadata(self, job: LogoJob, unit: Unit) -> dict:  # type: ignore[override]
        return {
            "brand_name": job.brand_name,
            "concept": unit.index + 1,
            "sizes": {d.name: d.url for d in unit.deliverables},
        }

    def charge(self, ctx: PipelineContext) -> tuple[int, bool]:
        # One price for the whole set of concepts
        return ctx.job.cost, ctx.job.uses_free_generation

    def result_message(self, ctx: PipelineContext, unit: Unit, cost: int) -> OutgoingMessage:
        job = ctx.job
        price = "(Free)" if job.cost == 0 else f"({job.cost} credits)"
        full_size = unit.deliverables[0]
        actions = f"{job.id}:{unit.index}"
        return OutgoingMessage(
            text=f"Logo Concept {unit.index + 1}\n\n{price}",
            image_url=full_size.url,
            buttons=(
                Button(label="👍 Like", action=f"feedback_like:{actions}"),
                Button(label="👎 Dislike", action=f"feedback_dislike:{actions}"),
                Button(label="📥 Download HD", action=f"download_logo:{actions}"),
                Button(label="🔄 Regenerate", action=f"regenerate_logo:{actions}"),
            ),
        )

    def followup_buttons(self, ctx: PipelineContext) -> list[Button]:
        return [Button(label="📦 Get full logo package", action=f"logo_package:{ctx.job.id}")]

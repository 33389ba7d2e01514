"""Generation price list.

Costs are computed once, before a job is enqueued, and travel inside the job
payload. Pipelines never recompute them.
"""

from dataclasses import dataclass, field

from brandforge.jobs.payloads import JobType, MemeQuality

LOGO_COST = 50
STICKER_UNIT_COST = 50
EDIT_COST = 0
MEME_COSTS: dict[MemeQuality, int] = {
    MemeQuality.GOOD: 50,
    MemeQuality.MEDIUM: 70,
    MemeQuality.HIGH: 90,
}


@dataclass(frozen=True)
class Quote:
    """Pre-enqueue price of a job.

    Attributes:
        cost: Total cost in credits charged on success
        uses_free_generation: True if the user's one-time free grant covers part of the job
        unit_costs: Per-unit cost lines (stickers); a single line for other types
    """

    cost: int
    uses_free_generation: bool
    unit_costs: list[int] = field(default_factory=list)


def quote(
    job_type: JobType,
    free_used: bool,
    count: int = 1,
    quality: MemeQuality | None = None,
    package_cost: int = 0,
) -> Quote:
    """Price a job for a user.

    The free grant makes a logo or a meme free, or the first unit of a sticker
    batch. Edits and packages never consume it.

    Args:
        job_type: Kind of generation
        free_used: Whether the user's free grant is already consumed
        count: Number of units (stickers only)
        quality: Meme quality tier
        package_cost: Configured price of a derived-asset package

    Returns:
        Quote with total cost and per-unit lines
    """
    free_available = not free_used

    if job_type is JobType.LOGO:
        cost = 0 if free_available else LOGO_COST
        return Quote(cost=cost, uses_free_generation=free_available, unit_costs=[cost])

    if job_type is JobType.STICKER:
        if count < 1:
            raise ValueError("Sticker count must be at least 1")
        unit_costs = [STICKER_UNIT_COST] * count
        if free_available:
            unit_costs[0] = 0
        return Quote(
            cost=sum(unit_costs), uses_free_generation=free_available, unit_costs=unit_costs
        )

    if job_type is JobType.MEME:
        cost = 0 if free_available else MEME_COSTS[quality or MemeQuality.GOOD]
        return Quote(cost=cost, uses_free_generation=free_available, unit_costs=[cost])

    if job_type is JobType.EDIT:
        return Quote(cost=EDIT_COST, uses_free_generation=False, unit_costs=[EDIT_COST])

    if job_type is JobType.PACKAGE:
        return Quote(cost=package_cost, uses_free_generation=False, unit_costs=[package_cost])

    raise ValueError(f"Unknown job type: {job_type}")

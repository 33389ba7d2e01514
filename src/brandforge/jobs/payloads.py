"""Typed generation job payloads.

Each job type has its own schema; ``GenerationJob`` is the tagged union over
them, discriminated by the ``type`` field stored in the queue row payload.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class JobType(str, Enum):
    """Kinds of generation work the worker accepts."""

    LOGO = "logo"
    MEME = "meme"
    STICKER = "sticker"
    EDIT = "edit"
    PACKAGE = "package"


class MemeQuality(str, Enum):
    GOOD = "good"
    MEDIUM = "medium"
    HIGH = "high"


class JobBase(BaseModel):
    """Fields shared by every job.

    ``cost`` and ``uses_free_generation`` are fixed at confirmation time and
    never recomputed by the pipelines.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: int
    chat_id: int
    prompt: str = Field(default="", max_length=2000)
    session: dict[str, Any] = Field(default_factory=dict)
    cost: int = Field(default=0, ge=0)
    uses_free_generation: bool = False
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)
    timeout_seconds: int | None = Field(default=None, ge=1)

    @property
    def job_type(self) -> JobType:
        return JobType(self.type)  # type: ignore[attr-defined]


class LogoJob(JobBase):
    type: Literal["logo"] = "logo"
    brand_name: str = Field(min_length=1, max_length=100)
    concepts: int = Field(default=2, ge=1, le=4)


class MemeJob(JobBase):
    type: Literal["meme"] = "meme"
    quality: MemeQuality = MemeQuality.GOOD
    reference_image_url: str | None = None


class StickerJob(JobBase):
    """Batch of independent sticker units, each with its own cost line."""

    type: Literal["sticker"] = "sticker"
    count: int = Field(default=1, ge=1, le=100)
    style: str | None = Field(default=None, max_length=100)
    unit_costs: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unit_costs(self) -> "StickerJob":
        if len(self.unit_costs) != self.count:
            raise ValueError(
                f"unit_costs must have one entry per sticker ({self.count}), "
                f"got {len(self.unit_costs)}"
            )
        if sum(self.unit_costs) != self.cost:
            raise ValueError("unit_costs must add up to cost")
        if any(c < 0 for c in self.unit_costs):
            raise ValueError("unit_costs must be non-negative")
        return self


class EditJob(JobBase):
    """Edit an existing image; ``prompt`` carries the instruction text."""

    type: Literal["edit"] = "edit"
    prompt: str = Field(min_length=1, max_length=2000)
    source_image_url: str


class PackageJob(JobBase):
    """Build the derived-asset package for a delivered logo."""

    type: Literal["package"] = "package"
    base_image_url: str
    display_name: str = Field(min_length=1, max_length=100)


GenerationJob = Annotated[
    Union[LogoJob, MemeJob, StickerJob, EditJob, PackageJob],
    Field(discriminator="type"),
]

_job_adapter: TypeAdapter[GenerationJob] = TypeAdapter(GenerationJob)


def parse_job(data: dict[str, Any]) -> GenerationJob:
    """Validate a raw payload into its concrete job class.

    Raises:
        pydantic.ValidationError: If the payload does not match any job schema
    """
    return _job_adapter.validate_python(data)


def job_to_payload(job: GenerationJob) -> dict[str, Any]:
    """Serialize a job into the JSON-safe dict stored on the queue row."""
    return job.model_dump(mode="json")

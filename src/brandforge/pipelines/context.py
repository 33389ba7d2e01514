"""Pipeline execution context and its state machine.

Every pipeline moves one immutable PipelineContext through:

    validating → synthesizing → processing → storing → settling → notifying → done

with ``failed`` reachable from any non-terminal state. ``advance`` returns a new
context; an illegal transition raises InvalidStateTransition.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from brandforge.jobs.payloads import GenerationJob
from brandforge.models.job import InvalidStateTransition
from brandforge.services.ledger import SettlementResult
from brandforge.services.synthesis.base import SynthesisAttempt


class PipelineState(str, Enum):
    VALIDATING = "validating"
    SYNTHESIZING = "synthesizing"
    PROCESSING = "processing"
    STORING = "storing"
    SETTLING = "settling"
    NOTIFYING = "notifying"
    DONE = "done"
    FAILED = "failed"


_FORWARD: dict[PipelineState, PipelineState] = {
    PipelineState.VALIDATING: PipelineState.SYNTHESIZING,
    PipelineState.SYNTHESIZING: PipelineState.PROCESSING,
    PipelineState.PROCESSING: PipelineState.STORING,
    PipelineState.STORING: PipelineState.SETTLING,
    PipelineState.SETTLING: PipelineState.NOTIFYING,
    PipelineState.NOTIFYING: PipelineState.DONE,
}

TERMINAL_STATES = frozenset({PipelineState.DONE, PipelineState.FAILED})


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    if current in TERMINAL_STATES:
        return False
    if target is PipelineState.FAILED:
        return True
    return _FORWARD.get(current) is target


@dataclass(frozen=True)
class Rendition:
    """Processed image bytes ready for upload."""

    name: str
    data: bytes
    size: int | None = None
    content_type: str = "image/png"


@dataclass(frozen=True)
class Deliverable:
    """A stored output, addressable by URL."""

    name: str
    url: str
    size: int | None = None
    content_type: str = "image/png"


@dataclass(frozen=True)
class Unit:
    """One independently fallible piece of a job (a logo concept, a sticker).

    A unit that failed at any stage keeps its ``error`` and is skipped by the
    later stages; it is never billed.
    """

    index: int
    prompt: str
    cost: int = 0
    params: dict[str, Any] = field(default_factory=dict)
    images: tuple[bytes, ...] = ()
    renditions: tuple[Rendition, ...] = ()
    deliverables: tuple[Deliverable, ...] = ()
    delivered: bool = False
    error: BaseException | None = None
    failed_stage: PipelineState | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def fail(self, error: BaseException, stage: PipelineState) -> "Unit":
        return replace(self, error=error, failed_stage=stage)


@dataclass(frozen=True)
class PipelineContext:
    """Immutable snapshot of a job's progress through its pipeline."""

    job: GenerationJob
    state: PipelineState = PipelineState.VALIDATING
    units: tuple[Unit, ...] = ()
    attempts: tuple[SynthesisAttempt, ...] = ()
    charged_cost: int = 0
    used_free_generation: bool = False
    settlement: SettlementResult | None = None
    extras: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None

    def advance(self, state: PipelineState, **changes: Any) -> "PipelineContext":
        """Return a copy in ``state`` with ``changes`` applied.

        Raises:
            InvalidStateTransition: If ``state`` is not reachable from the current state
        """
        if not can_transition(self.state, state):
            raise InvalidStateTransition(
                f"Cannot move pipeline from {self.state.value} to {state.value} "
                f"(job {self.job.id})"
            )
        return replace(self, state=state, **changes)

    def with_units(self, units: list[Unit] | tuple[Unit, ...]) -> "PipelineContext":
        """Replace the units without changing state."""
        return replace(self, units=tuple(units))

    @property
    def delivered_units(self) -> list[Unit]:
        return [unit for unit in self.units if unit.delivered]

    @property
    def failed_units(self) -> list[Unit]:
        return [unit for unit in self.units if not unit.ok]


class PipelineFailed(Exception):
    """A pipeline delivered nothing.

    Attributes:
        context: Context in the failed state
        cause: Error of the first failed unit, used for the user-facing explanation
    """

    def __init__(self, context: PipelineContext, cause: BaseException | None):
        super().__init__(f"Pipeline for job {context.job.id} delivered nothing: {cause}")
        self.context = context
        self.cause = cause

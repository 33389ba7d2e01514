"""State transition tests for queue rows and pipeline contexts.

Tests focus on validating both lifecycles:
- Valid transitions between states
- Invalid transitions are rejected with clear error messages
- Failed state is reachable from any non-terminal pipeline state
"""

import pytest

from brandforge.jobs.payloads import LogoJob
from brandforge.models.job import InvalidStateTransition, JobStatus, QueuedJob
from brandforge.pipelines.context import (
    TERMINAL_STATES,
    PipelineContext,
    PipelineState,
    Unit,
    can_transition,
)

HAPPY_PATH = [
    PipelineState.SYNTHESIZING,
    PipelineState.PROCESSING,
    PipelineState.STORING,
    PipelineState.SETTLING,
    PipelineState.NOTIFYING,
    PipelineState.DONE,
]


def make_context() -> PipelineContext:
    return PipelineContext(job=LogoJob(user_id=1, chat_id=1, brand_name="Acme"))


@pytest.mark.asyncio
async def test_queued_job_claim_and_release(session):
    """Validates the queue row lifecycle: pending → running → pending (recovery)."""
    job = QueuedJob(job_type="logo", payload={"type": "logo"})
    session.add(job)
    await session.flush()

    assert job.status == JobStatus.PENDING
    assert job.claimed_at is None

    job.mark_running()
    assert job.status == JobStatus.RUNNING
    assert job.claimed_at is not None

    job.release()
    assert job.status == JobStatus.PENDING
    assert job.claimed_at is None


def test_queued_job_invalid_transitions():
    job = QueuedJob(job_type="logo", payload={})

    with pytest.raises(InvalidStateTransition) as exc_info:
        job.release()
    assert "pending" in str(exc_info.value)

    job.mark_running()
    with pytest.raises(InvalidStateTransition) as exc_info:
        job.mark_running()
    assert "running" in str(exc_info.value)


def test_pipeline_happy_path():
    ctx = make_context()
    assert ctx.state is PipelineState.VALIDATING

    for state in HAPPY_PATH:
        ctx = ctx.advance(state)
        assert ctx.state is state


def test_advance_returns_new_context():
    """Contexts are immutable; advancing leaves the original untouched."""
    ctx = make_context()
    unit = Unit(index=0, prompt="logo")

    advanced = ctx.advance(PipelineState.SYNTHESIZING, units=(unit,))

    assert ctx.state is PipelineState.VALIDATING
    assert ctx.units == ()
    assert advanced.units == (unit,)


def test_pipeline_cannot_skip_states():
    ctx = make_context()

    with pytest.raises(InvalidStateTransition) as exc_info:
        ctx.advance(PipelineState.STORING)

    assert "validating" in str(exc_info.value)
    assert "storing" in str(exc_info.value)


@pytest.mark.parametrize("state", [PipelineState.VALIDATING, *HAPPY_PATH[:-1]])
def test_failed_reachable_from_any_non_terminal_state(state):
    assert can_transition(state, PipelineState.FAILED) is True


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
def test_terminal_states_are_final(terminal):
    for target in PipelineState:
        assert can_transition(terminal, target) is False


def test_failed_units_are_tracked_separately():
    ctx = make_context().with_units(
        [
            Unit(index=0, prompt="a", delivered=True),
            Unit(index=1, prompt="b").fail(ValueError("bad"), PipelineState.PROCESSING),
        ]
    )

    assert [u.index for u in ctx.delivered_units] == [0]
    assert [u.index for u in ctx.failed_units] == [1]
    assert ctx.failed_units[0].failed_stage is PipelineState.PROCESSING
    assert ctx.failed_units[0].ok is False

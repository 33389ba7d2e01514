"""Job intake API endpoints.

This module implements the REST surface the chat front end calls:
- POST /api/jobs - Price a confirmed request, check entitlement and enqueue it
- GET /api/users/{user_id}/balance - Current balance, free grant and referral stats
- POST /api/users/{user_id}/credits - Add purchased credits
- GET /api/users/{user_id}/generations - Recently delivered generations

Enqueueing returns immediately (202); results reach the user through the
front end callback once the worker has run the job.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from brandforge.core.config import Settings
from brandforge.core.dependencies import get_job_queue, get_ledger, get_settings, get_uow
from brandforge.jobs.payloads import JobType, MemeQuality
from brandforge.services.exceptions import InsufficientEntitlementError
from brandforge.services.job_queue import JobQueue
from brandforge.services.ledger import BalanceLedger
from brandforge.services.pricing import quote
from brandforge.services.retry import describe_error
from brandforge.uow import UnitOfWork

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["jobs"])


# Request/Response Models


class CreateJobRequest(BaseModel):
    """A generation request confirmed by the user in the chat."""

    type: JobType = Field(..., description="Kind of generation")
    user_id: int = Field(..., description="Chat platform user ID")
    chat_id: int = Field(..., description="Chat to deliver results to")
    prompt: str = Field(default="", max_length=2000, description="Free text from the user")
    session: dict = Field(default_factory=dict, description="Snapshot of the wizard answers")
    referred_by: int | None = Field(
        default=None, description="Referrer user ID, applied only when the user is new"
    )
    referral_code: str | None = Field(
        default=None, description="Referral code from the start link, resolved to referred_by"
    )
    timeout_seconds: int | None = Field(default=None, ge=1, description="Advisory timeout")

    brand_name: str | None = Field(default=None, description="Logo: brand name")
    concepts: int | None = Field(default=None, ge=1, le=4, description="Logo: concept count")
    quality: MemeQuality | None = Field(default=None, description="Meme: quality tier")
    reference_image_url: str | None = Field(default=None, description="Meme: reference image")
    count: int | None = Field(default=None, ge=1, le=100, description="Sticker: number of units")
    style: str | None = Field(default=None, description="Sticker: style theme")
    source_image_url: str | None = Field(default=None, description="Edit: image to edit")
    base_image_url: str | None = Field(default=None, description="Package: delivered logo")
    display_name: str | None = Field(default=None, description="Package: brand name")


class CreateJobResponse(BaseModel):
    job_id: UUID = Field(..., description="Queued job ID")
    cost: int = Field(..., description="Credits charged if the job is delivered in full")
    uses_free_generation: bool = Field(..., description="True if the free grant covers the job")
    unit_costs: list[int] = Field(..., description="Per-unit cost lines")


class BalanceResponse(BaseModel):
    user_id: int
    balance: int
    free_generation_used: bool
    referral_code: str | None = None
    referral_count: int
    total_referral_rewards: int


class CreditRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Credits to add")


class CreditResponse(BaseModel):
    user_id: int
    balance: int


class GenerationResponse(BaseModel):
    id: UUID
    job_id: UUID | None
    type: str
    cost: int
    quality: str | None
    urls: list[str]
    created_at: datetime


# Endpoints


@router.post("/jobs", status_code=status.HTTP_202_ACCEPTED, response_model=CreateJobResponse)
async def create_job(
    request: CreateJobRequest,
    ledger: BalanceLedger = Depends(get_ledger),
    queue: JobQueue = Depends(get_job_queue),
    settings: Settings = Depends(get_settings),
) -> CreateJobResponse:
    """Price, check and enqueue a generation job.

    Returns:
        202 with the job ID and cost

    Raises:
        HTTPException 402: The user cannot pay for the job; no job is created
        HTTPException 422: The request does not describe a valid job
    """
    referred_by = request.referred_by
    if referred_by is None and request.referral_code:
        referred_by = await ledger.resolve_referral_code(request.referral_code)

    user = await ledger.get_or_create_user(request.user_id, referred_by=referred_by)
    price = quote(
        request.type,
        user.free_used,
        count=request.count or 1,
        quality=request.quality,
        package_cost=settings.package_cost,
    )

    entitlement = await ledger.check_entitlement(
        request.user_id, price.cost, price.uses_free_generation
    )
    if not entitlement.allowed:
        logger.info(
            "job.intake.refused",
            user_id=request.user_id,
            job_type=request.type.value,
            cost=price.cost,
            balance=entitlement.balance,
            reason=entitlement.reason,
        )
        error = InsufficientEntitlementError(
            cost=price.cost, balance=entitlement.balance, reason=entitlement.reason
        )
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": describe_error(error),
                "cost": price.cost,
                "balance": entitlement.balance,
                "reason": entitlement.reason,
            },
        )

    payload = request.model_dump(
        mode="json",
        exclude_none=True,
        exclude={"referred_by", "referral_code", "timeout_seconds"},
    )
    payload.update(cost=price.cost, uses_free_generation=price.uses_free_generation)
    if request.type is JobType.STICKER:
        payload["unit_costs"] = price.unit_costs
        payload["count"] = request.count or 1
    if request.type is JobType.LOGO:
        payload.setdefault("concepts", settings.logo_concepts)
        payload.setdefault("brand_name", request.session.get("name"))

    try:
        record = await queue.enqueue(
            request.type, payload, timeout_seconds=request.timeout_seconds
        )
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return CreateJobResponse(
        job_id=record.id,
        cost=price.cost,
        uses_free_generation=price.uses_free_generation,
        unit_costs=price.unit_costs,
    )


@router.get("/users/{user_id}/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: int, ledger: BalanceLedger = Depends(get_ledger)
) -> BalanceResponse:
    """Return a user's balance and referral stats.

    Raises:
        HTTPException 404: Unknown user
    """
    user = await ledger.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return BalanceResponse(
        user_id=user.user_id,
        balance=user.balance,
        free_generation_used=user.free_used,
        referral_code=user.referral_code,
        referral_count=user.referral_count,
        total_referral_rewards=user.total_referral_rewards,
    )


@router.post("/users/{user_id}/credits", response_model=CreditResponse)
async def add_credits(
    user_id: int, request: CreditRequest, ledger: BalanceLedger = Depends(get_ledger)
) -> CreditResponse:
    """Credit a completed purchase to the user's balance."""
    balance = await ledger.credit(user_id, request.amount)
    return CreditResponse(user_id=user_id, balance=balance)


@router.get("/users/{user_id}/generations", response_model=list[GenerationResponse])
async def list_generations(
    user_id: int,
    limit: int = Query(default=20, ge=1, le=100),
    uow: UnitOfWork = Depends(get_uow),
) -> list[GenerationResponse]:
    """Return the user's most recent generations, newest first."""
    records = await uow.generations.list_by_user(user_id, limit=limit)
    return [
        GenerationResponse(
            id=record.id,
            job_id=record.job_id,
            type=record.type,
            cost=record.cost,
            quality=record.quality,
            urls=record.urls,
            created_at=record.created_at,
        )
        for record in records
    ]

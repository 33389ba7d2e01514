"""Balance ledger: spendable credits, the one-time free grant and referral conversion.

Only two operations touch balances on behalf of jobs:

- ``check_entitlement`` is read-only and runs both before enqueue and again when
  the worker starts the job.
- ``settle`` applies the outcome of a finished job exactly once per settlement key.

Settlement failures are logged and reported in the result, never raised, so
media that has already been delivered is never held back by the ledger.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError

from brandforge.models.settlement import Settlement
from brandforge.models.user import User

logger = structlog.get_logger(__name__)


class SettlementStatus(str, Enum):
    SETTLED = "settled"
    DUPLICATE = "duplicate"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    FAILED = "failed"


@dataclass(frozen=True)
class Entitlement:
    """Result of an entitlement check.

    Attributes:
        allowed: True if the job may run
        cost: Cost that was checked
        balance: User's balance at check time
        reason: "free_generation", "zero_cost", "balance", "insufficient_balance"
            or "free_generation_used"
    """

    allowed: bool
    cost: int
    balance: int
    reason: str


@dataclass(frozen=True)
class SettlementResult:
    status: SettlementStatus
    charged: int = 0
    free_generation_consumed: bool = False
    balance: int | None = None
    referrer_id: int | None = None
    referral_reward: int = 0

    @property
    def ok(self) -> bool:
        return self.status in (SettlementStatus.SETTLED, SettlementStatus.DUPLICATE)


class BalanceLedger:
    """Ledger service over the users and settlements tables."""

    def __init__(self, uow_factory, referral_reward: int = 20):
        """Initialize ledger.

        Args:
            uow_factory: Factory returned by create_uow_factory
            referral_reward: Credits granted to a referrer when their referral converts
        """
        self.uow_factory = uow_factory
        self.referral_reward = referral_reward

    async def get_or_create_user(self, user_id: int, referred_by: int | None = None) -> User:
        async with await self.uow_factory() as uow:
            return await uow.users.get_or_create(user_id, referred_by=referred_by)

    async def get_user(self, user_id: int) -> User | None:
        async with await self.uow_factory() as uow:
            return await uow.users.get(user_id)

    async def resolve_referral_code(self, referral_code: str) -> int | None:
        """Return the user ID owning a referral code, if any."""
        async with await self.uow_factory() as uow:
            referrer = await uow.users.get_by_referral_code(referral_code)
        return referrer.user_id if referrer else None

    async def credit(self, user_id: int, amount: int) -> int:
        """Add purchased or granted credits to a user's balance.

        Args:
            user_id: Chat platform user identifier
            amount: Positive number of credits

        Returns:
            Balance after the credit

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        async with await self.uow_factory() as uow:
            user = await uow.users.get_or_create(user_id)
            await uow.users.credit(user_id, amount)
            user = await uow.users.refresh(user)
            balance = user.balance

        logger.info("ledger.credited", user_id=user_id, amount=amount, balance=balance)
        return balance

    async def check_entitlement(
        self, user_id: int, cost: int, uses_free_generation: bool = False
    ) -> Entitlement:
        """Decide whether a job may run, without changing anything.

        A job priced with the free grant is rejected once that grant has been
        consumed by another job; its price is stale.

        Args:
            user_id: Chat platform user identifier
            cost: Job cost fixed at quote time
            uses_free_generation: Whether the quote relied on the free grant

        Returns:
            Entitlement decision with the balance seen
        """
        async with await self.uow_factory() as uow:
            user = await uow.users.get(user_id)

        balance = user.balance if user else 0
        free_used = user.free_used if user else False

        if uses_free_generation and free_used:
            return Entitlement(
                allowed=False, cost=cost, balance=balance, reason="free_generation_used"
            )
        if cost == 0:
            reason = "free_generation" if uses_free_generation else "zero_cost"
            return Entitlement(allowed=True, cost=cost, balance=balance, reason=reason)
        if balance >= cost:
            return Entitlement(allowed=True, cost=cost, balance=balance, reason="balance")
        return Entitlement(allowed=False, cost=cost, balance=balance, reason="insufficient_balance")

    async def settle(
        self,
        user_id: int,
        settlement_key: str,
        used_free_generation: bool,
        cost: int,
        job_id: UUID | None = None,
    ) -> SettlementResult:
        """Apply a finished job's charges exactly once.

        Steps, in one transaction:
        1. Skip if the settlement key was already processed
        2. Consume the free grant (false → true only)
        3. Debit ``cost`` if the balance covers it (never negative)
        4. Convert a referred user exactly once and reward the referrer
        5. Write the processed-job marker

        Args:
            user_id: Chat platform user identifier
            settlement_key: Idempotency key (``job:<id>`` or ``package:<digest>``)
            used_free_generation: Whether the delivered work consumed the free grant
            cost: Credits to charge for the delivered work
            job_id: Job being settled, for the marker row

        Returns:
            SettlementResult; status FAILED if the database write failed
        """
        try:
            async with await self.uow_factory() as uow:
                if await uow.settlements.exists(settlement_key):
                    logger.info(
                        "ledger.settle.duplicate", user_id=user_id, settlement_key=settlement_key
                    )
                    return SettlementResult(status=SettlementStatus.DUPLICATE)

                user = await uow.users.get_or_create(user_id)
                status = SettlementStatus.SETTLED

                consumed = False
                if used_free_generation:
                    consumed = await uow.users.consume_free_generation(user_id)
                    if not consumed:
                        logger.warning(
                            "ledger.free_generation.already_used",
                            user_id=user_id,
                            settlement_key=settlement_key,
                        )

                charged = 0
                if cost > 0:
                    if await uow.users.debit(user_id, cost):
                        charged = cost
                    else:
                        status = SettlementStatus.INSUFFICIENT_BALANCE
                        logger.warning(
                            "ledger.debit.insufficient",
                            user_id=user_id,
                            cost=cost,
                            settlement_key=settlement_key,
                        )

                referrer_id = await uow.users.mark_converted(user_id)
                reward = 0
                if referrer_id is not None:
                    if await uow.users.reward_referrer(referrer_id, self.referral_reward):
                        reward = self.referral_reward
                    else:
                        logger.warning(
                            "ledger.referral.referrer_missing",
                            user_id=user_id,
                            referrer_id=referrer_id,
                        )

                await uow.settlements.add(
                    Settlement(
                        key=settlement_key,
                        user_id=user_id,
                        job_id=job_id,
                        cost=charged,
                        used_free_generation=consumed,
                        referrer_id=referrer_id if reward else None,
                    )
                )
                user = await uow.users.refresh(user)
                balance = user.balance

        except IntegrityError:
            # Marker inserted concurrently by another delivery of the same job
            logger.info("ledger.settle.duplicate", user_id=user_id, settlement_key=settlement_key)
            return SettlementResult(status=SettlementStatus.DUPLICATE)

        except Exception as e:
            logger.error(
                "ledger.settle.failed",
                user_id=user_id,
                settlement_key=settlement_key,
                cost=cost,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            return SettlementResult(status=SettlementStatus.FAILED)

        logger.info(
            "ledger.settled",
            user_id=user_id,
            settlement_key=settlement_key,
            status=status.value,
            charged=charged,
            free_generation_consumed=consumed,
            balance=balance,
            referrer_id=referrer_id if reward else None,
        )
        if reward:
            logger.info(
                "ledger.referral.converted",
                user_id=user_id,
                referrer_id=referrer_id,
                reward=reward,
            )

        return SettlementResult(
            status=status,
            charged=charged,
            free_generation_consumed=consumed,
            balance=balance,
            referrer_id=referrer_id if reward else None,
            referral_reward=reward,
        )

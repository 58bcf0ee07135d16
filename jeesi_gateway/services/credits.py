"""
Credit Ledger Service - Balance gate, atomic debit and usage log.

NO DICTIONARIES - All data uses typed models/dataclasses.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from jeesi_gateway.config import settings
from jeesi_gateway.db.models import CreditBalance, CreditUsage, utc_now
from jeesi_gateway.exceptions import InsufficientCreditsError
from jeesi_gateway.models.api import OperationType, PlanType
from jeesi_gateway.models.domain import BalanceData, DeductionResult, UsageEntry
from jeesi_gateway.observability.metrics import metrics

logger = get_logger(__name__)


def _plan_type(value: str) -> PlanType:
    try:
        return PlanType(value)
    except ValueError:
        logger.warning("unknown_plan_type", plan_type=value)
        return PlanType.FREE


def _to_balance_data(balance: CreditBalance) -> BalanceData:
    return BalanceData(
        user_id=balance.user_id,
        credits_remaining=balance.credits_remaining,
        credits_used_this_month=balance.credits_used_this_month,
        plan_type=_plan_type(balance.plan_type),
    )


class CreditLedgerService:
    """Reads and mutates per-user credit balances."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, user_id: UUID) -> BalanceData | None:
        """Get a user's balance, or None if no row exists yet."""
        stmt = select(CreditBalance).where(CreditBalance.user_id == user_id)
        result = await self.session.execute(stmt)
        balance = result.scalar_one_or_none()
        return _to_balance_data(balance) if balance is not None else None

    async def get_or_create_balance(self, user_id: UUID) -> BalanceData:
        """
        Get a user's balance, creating the default grant on first access.

        A concurrent creation by another request is resolved by re-reading.
        """
        existing = await self.get_balance(user_id)
        if existing is not None:
            return existing

        new_balance = CreditBalance(
            user_id=user_id,
            credits_remaining=settings.default_credits,
            credits_used_this_month=0,
            plan_type=PlanType.FREE.value,
        )
        self.session.add(new_balance)

        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as e:
            # Race condition - balance created by another request
            logger.warning("credit_balance_creation_conflict", user_id=str(user_id), error=str(e))
            await self.session.rollback()
            existing = await self.get_balance(user_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "credit_balance_created",
            user_id=str(user_id),
            credits_remaining=new_balance.credits_remaining,
        )
        return _to_balance_data(new_balance)

    async def check_credit(
        self,
        user_id: UUID,
        operation: OperationType,
        create_if_missing: bool = False,
    ) -> BalanceData:
        """
        Gate a request on the user's balance before any upstream cost.

        Args:
            user_id: Metered user
            operation: Endpoint category, for logs and metrics
            create_if_missing: Grant the default balance instead of rejecting

        Returns:
            BalanceData with a positive balance

        Raises:
            InsufficientCreditsError if the balance is missing or exhausted
        """
        if create_if_missing:
            balance: BalanceData | None = await self.get_or_create_balance(user_id)
        else:
            balance = await self.get_balance(user_id)

        if balance is None or not balance.has_credit:
            remaining = balance.credits_remaining if balance is not None else None
            logger.info(
                "credit_gate_rejected",
                user_id=str(user_id),
                operation=operation.value,
                credits_remaining=remaining,
            )
            metrics.record_credit_gate(operation.value, admitted=False)
            raise InsufficientCreditsError(user_id, remaining)

        logger.debug(
            "credit_gate_admitted",
            user_id=str(user_id),
            operation=operation.value,
            credits_remaining=balance.credits_remaining,
        )
        metrics.record_credit_gate(operation.value, admitted=True)
        return balance

    async def deduct_credits(self, user_id: UUID, credits: int) -> DeductionResult:
        """
        Atomically decrement the balance if it covers the cost.

        Never drives the balance negative; an uncovered debit is reported as
        not deducted. Does not commit.
        """
        stmt = (
            update(CreditBalance)
            .where(
                CreditBalance.user_id == user_id,
                CreditBalance.credits_remaining >= credits,
            )
            .values(
                credits_remaining=CreditBalance.credits_remaining - credits,
                credits_used_this_month=CreditBalance.credits_used_this_month + credits,
                updated_at=utc_now(),
            )
            .returning(CreditBalance.credits_remaining)
        )
        result = await self.session.execute(stmt)
        remaining = result.scalar_one_or_none()

        if remaining is None:
            logger.warning("credit_debit_skipped", user_id=str(user_id), credits=credits)
            return DeductionResult(deducted=False, credits_remaining=None)

        logger.info(
            "credits_deducted",
            user_id=str(user_id),
            credits=credits,
            credits_remaining=remaining,
        )
        return DeductionResult(deducted=True, credits_remaining=remaining)

    async def log_usage(self, entry: UsageEntry, credits_charged: int) -> None:
        """Append a usage log row. Does not commit."""
        usage = CreditUsage(
            user_id=entry.user_id,
            agent_id=entry.agent_id,
            credits_used=credits_charged,
            operation_type=entry.operation_type.value,
            usage_metadata=dict(entry.metadata),
        )
        self.session.add(usage)
        await self.session.flush()

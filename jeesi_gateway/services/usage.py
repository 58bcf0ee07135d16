"""
Usage Recorder - Post-response credit debit and usage log.

Recording happens only after the upstream stream has opened successfully,
and runs on the side channel so the client receives data first. A crash
between stream start and the ledger write loses that charge.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from jeesi_gateway.db.session import get_write_session
from jeesi_gateway.models.domain import UsageEntry
from jeesi_gateway.observability.metrics import metrics
from jeesi_gateway.services.credits import CreditLedgerService
from jeesi_gateway.services.side_channel import SideChannel

logger = get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class UsageRecorder:
    """Submits debit-and-log jobs to the side channel."""

    def __init__(
        self,
        side_channel: SideChannel,
        session_factory: SessionFactory = get_write_session,
    ) -> None:
        self.side_channel = side_channel
        self.session_factory = session_factory

    def record(self, entry: UsageEntry) -> bool:
        """Schedule recording of one completed call. Returns False if dropped."""
        accepted = self.side_channel.submit("usage_record", lambda: self.persist(entry))
        if not accepted:
            metrics.record_usage(entry.operation_type.value, "dropped")
        return accepted

    async def persist(self, entry: UsageEntry) -> None:
        """
        Debit the ledger and append the usage row in one transaction.

        An uncovered debit (concurrent requests raced past the gate) is
        skipped; the usage row is still written with zero credits charged.
        """
        operation = entry.operation_type.value
        try:
            async with self.session_factory() as session:
                ledger = CreditLedgerService(session)
                deduction = await ledger.deduct_credits(entry.user_id, entry.credits)

                charged = entry.credits if deduction.deducted else 0
                if not deduction.deducted:
                    entry = UsageEntry(
                        user_id=entry.user_id,
                        operation_type=entry.operation_type,
                        credits=entry.credits,
                        agent_id=entry.agent_id,
                        metadata={**entry.metadata, "charge_skipped": True},
                    )

                await ledger.log_usage(entry, credits_charged=charged)
                await session.commit()
        except Exception:
            metrics.record_usage(operation, "failed")
            raise

        outcome = "charged" if deduction.deducted else "skipped"
        metrics.record_usage(operation, outcome)
        logger.info(
            "usage_recorded",
            user_id=str(entry.user_id),
            agent_id=str(entry.agent_id) if entry.agent_id else None,
            operation=operation,
            credits_charged=charged,
            credits_remaining=deduction.credits_remaining,
        )

"""Overdue marking and late fee application."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from tortoise.transactions import in_transaction

from aquabill.core.audit import AuditSink
from aquabill.core.clock import Clock
from aquabill.core.exceptions import BillNotModifiable, NotFound
from aquabill.core.models import Billing, BillingStatus
from aquabill.core.repositories.billing import OPEN_STATUSES, BillingRepository
from aquabill.services.balance import BalanceResolver
from aquabill.services.batch import BatchRunner, BatchStats, ItemResult
from aquabill.services.charges import ChargeCalculator

logger = logging.getLogger(__name__)

ENTITY = "billing"


class LateFeeService:
    """Applies a one-off late fee to bills left unpaid past their grace period."""

    def __init__(
        self,
        billing_repo: BillingRepository,
        charge_calculator: ChargeCalculator,
        balance_resolver: BalanceResolver,
        audit: AuditSink,
        clock: Clock,
    ):
        self._billing_repo = billing_repo
        self._charge_calculator = charge_calculator
        self._balance_resolver = balance_resolver
        self._audit = audit
        self._clock = clock

    async def apply_late_fee(
        self, billing_id: UUID | str, today: date | None = None
    ) -> tuple[Decimal, str | None]:
        """
        Applies the late fee to one bill if it is due one.

        Returns the fee applied and, when none was, the reason. The fee is
        added to ``late_fee`` and ``total_amount`` and the bill becomes
        ``overdue``; a bill is only ever charged once.
        """
        today = today or self._clock.today()
        async with in_transaction():
            billing = await self._billing_repo.get_for_update(billing_id)
            if billing is None or billing.status not in OPEN_STATUSES:
                return Decimal("0"), "Bill is not open"
            if billing.late_fee_applied_at is not None:
                return Decimal("0"), "Late fee already applied"

            days_overdue = (today - billing.due_date).days
            if await self._balance_resolver.balance(billing) <= 0:
                return Decimal("0"), "Nothing outstanding"

            fee = self._charge_calculator.calculate_late_fee(
                billing.total_amount, days_overdue
            )
            if fee <= 0:
                return Decimal("0"), "Within grace period"

            billing.late_fee = (billing.late_fee or Decimal("0")) + fee
            billing.total_amount = billing.total_amount + fee
            billing.late_fee_applied_at = self._clock.now()
            billing.status = BillingStatus.OVERDUE
            await billing.save(
                update_fields=[
                    "late_fee",
                    "total_amount",
                    "late_fee_applied_at",
                    "status",
                    "updated_at",
                ]
            )

        await self._audit.log_event(
            ENTITY,
            billing.id,
            "late_fee_applied",
            {"late_fee": str(fee), "days_overdue": days_overdue},
        )
        logger.info(
            "Late fee of %s applied to bill %s (%s days overdue)",
            fee,
            billing.id,
            days_overdue,
        )
        return fee, None

    async def waive_late_fee(self, billing_id: UUID | str, reason: str) -> Decimal:
        """Removes a bill's late fee from its total; returns the amount waived.

        ``late_fee_applied_at`` is kept so the fee is not charged again.
        """
        now = self._clock.now()
        async with in_transaction():
            billing = await self._billing_repo.get_for_update(billing_id)
            if billing is None:
                raise NotFound(f"Bill {billing_id} not found.")
            if not billing.can_be_modified():
                raise BillNotModifiable(
                    f"Bill {billing.id} is {billing.status.value}; its late fee "
                    "cannot be waived."
                )
            waived = billing.late_fee or Decimal("0")
            if waived <= 0:
                return Decimal("0")

            billing.total_amount = billing.total_amount - waived
            billing.late_fee = Decimal("0")
            await billing.save(update_fields=["total_amount", "late_fee", "updated_at"])
            await self._balance_resolver.refresh_status(billing, now)

        await self._audit.log_event(
            ENTITY,
            billing.id,
            "late_fee_waived",
            {"waived_amount": str(waived), "reason": reason},
        )
        logger.info("Late fee of %s waived on bill %s", waived, billing.id)
        return waived

    async def apply_late_fees(
        self,
        runner: BatchRunner,
        limit: int,
        offset: int = 0,
        today: date | None = None,
        period: str | None = None,
    ) -> BatchStats:
        """Applies late fees to one page of past-due bills."""
        today = today or self._clock.today()
        bills = await self._billing_repo.list_past_due(
            today, limit=limit, offset=offset, period=period
        )

        async def _apply(billing: Billing) -> ItemResult:
            fee, reason = await self.apply_late_fee(billing.id, today)
            if reason:
                return ItemResult.skip(str(billing.id), reason)
            return ItemResult.ok(str(billing.id), fee)

        stats = await runner.run(bills, _apply, key=lambda b: str(b.id))
        stats.has_more = len(bills) == limit
        logger.info("Late fee sweep for %s: %s", today, stats.as_dict())
        return stats

    async def mark_overdue(self, today: date | None = None) -> int:
        """Marks pending bills past their due date as ``overdue``."""
        today = today or self._clock.today()
        updated = await self._billing_repo.mark_past_due_overdue(today)
        if updated:
            logger.info("Marked %s bills overdue", updated)
        return updated

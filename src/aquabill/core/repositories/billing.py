"""Repository for Billing and BillingDetail models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from aquabill.core.models import (
    Billing,
    BillingDetail,
    BillingStatus,
    BillType,
)
from aquabill.core.repositories.base import BaseRepository

OPEN_STATUSES = (
    BillingStatus.PENDING,
    BillingStatus.PARTIALLY_PAID,
    BillingStatus.OVERDUE,
)


class BillingRepository(BaseRepository[Billing]):
    """Billing-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Billing)

    async def get_for_update(self, pk: UUID | str) -> Billing | None:
        """Get a bill and lock its row until the end of the transaction."""
        return await self.model.filter(id=pk).select_for_update().first()

    async def get_live_for_period(
        self, account_id: UUID | str, period: str
    ) -> Billing | None:
        """The non-voided regular bill of an account for a period, if any."""
        return (
            await self.model.filter(
                account_id=account_id,
                billing_period=period,
                bill_type=BillType.REGULAR,
            )
            .exclude(status=BillingStatus.VOIDED)
            .first()
        )

    async def get_previous_regular(
        self, account_id: UUID | str, period: str
    ) -> Billing | None:
        """The most recent non-voided regular bill before ``period``."""
        return (
            await self.model.filter(
                account_id=account_id,
                billing_period__lt=period,
                bill_type=BillType.REGULAR,
            )
            .exclude(status=BillingStatus.VOIDED)
            .order_by("-billing_period", "-created_at")
            .first()
        )

    def _open(self):
        """Unsettled bills; a bill whose balance moved onto a later one is closed."""
        return self.model.filter(
            status__in=OPEN_STATUSES, carried_forward_to_id__isnull=True
        )

    async def get_open_for_account(
        self, account_id: UUID | str, for_update: bool = False
    ) -> list[Billing]:
        """Unsettled bills, oldest due date first.

        Equal due dates fall back to period, then creation time, and only
        then to id. Ids are random UUIDs, so on their own they would order
        same-day bills arbitrarily; period and creation time keep the oldest
        debt first and the id only makes the order total.
        """
        query = self._open().filter(account_id=account_id)
        if for_update:
            query = query.select_for_update()
        return await query.order_by("due_date", "billing_period", "created_at", "id")

    async def get_adjustments_for(self, original_id: UUID | str) -> list[Billing]:
        return await self.model.filter(
            original_billing_id=original_id, bill_type=BillType.ADJUSTMENT
        ).exclude(status=BillingStatus.VOIDED)

    async def credit_adjustments_toward(self, original_id: UUID | str) -> Decimal:
        """Sum of the live credit (negative) adjustments issued for a bill."""
        totals = (
            await self.model.filter(
                original_billing_id=original_id,
                bill_type=BillType.ADJUSTMENT,
                total_amount__lt=0,
            )
            .exclude(status=BillingStatus.VOIDED)
            .values_list("total_amount", flat=True)
        )
        return -sum((Decimal(str(t)) for t in totals), Decimal("0"))

    async def get_carried_into(self, billing_id: UUID | str) -> list[Billing]:
        """Earlier bills whose balance was carried forward to this one."""
        return await self.model.filter(carried_forward_to_id=billing_id).exclude(
            status=BillingStatus.VOIDED
        )

    async def get_for_account(
        self, account_id: UUID | str, include_voided: bool = False
    ) -> list[Billing]:
        query = self.model.filter(account_id=account_id)
        if not include_voided:
            query = query.exclude(status=BillingStatus.VOIDED)
        return await query.order_by("due_date", "billing_period", "created_at", "id")

    async def list_past_due(
        self, today: date, limit: int, offset: int = 0, period: str | None = None
    ) -> list[Billing]:
        """Open bills whose due date has passed."""
        query = self._open().filter(due_date__lt=today)
        if period is not None:
            query = query.filter(billing_period=period)
        return await query.order_by("due_date", "id").offset(offset).limit(limit)

    async def get_details(self, billing_id: UUID | str) -> list[BillingDetail]:
        return await BillingDetail.filter(billing_id=billing_id).order_by("created_at")

    async def create_detail(self, **kwargs) -> BillingDetail:
        return await BillingDetail.create(**kwargs)

    async def mark_past_due_overdue(self, today: date) -> int:
        """Flags pending bills whose due date has passed; returns the count."""
        return await self.model.filter(
            status=BillingStatus.PENDING,
            due_date__lt=today,
            carried_forward_to_id__isnull=True,
        ).update(status=BillingStatus.OVERDUE)

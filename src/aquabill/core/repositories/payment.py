"""Repository for Payment and PaymentAllocation models."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from aquabill.core.models import (
    Payment,
    PaymentAllocation,
    PaymentStatus,
    ReconciliationStatus,
)
from aquabill.core.repositories.base import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    """Payment-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Payment)

    async def get_for_update(self, pk: UUID | str) -> Payment | None:
        """Get a payment and lock its row until the end of the transaction."""
        return await self.model.filter(id=pk).select_for_update().first()

    async def list_unreconciled(
        self, limit: int, account_id: UUID | str | None = None
    ) -> list[Payment]:
        """Completed payments awaiting reconciliation, oldest first."""
        query = self.model.filter(
            status=PaymentStatus.COMPLETED,
            reconciliation_status=ReconciliationStatus.PENDING,
        )
        if account_id is not None:
            query = query.filter(account_id=account_id)
        return await query.order_by("payment_date", "created_at").limit(limit)

    async def count_unreconciled(self, account_id: UUID | str | None = None) -> int:
        query = self.model.filter(
            status=PaymentStatus.COMPLETED,
            reconciliation_status=ReconciliationStatus.PENDING,
        )
        if account_id is not None:
            query = query.filter(account_id=account_id)
        return await query.count()

    async def get_allocations(self, payment_id: UUID | str) -> list[PaymentAllocation]:
        return await PaymentAllocation.filter(payment_id=payment_id).order_by(
            "allocated_at", "created_at"
        )

    async def create_allocation(self, **kwargs) -> PaymentAllocation:
        return await PaymentAllocation.create(**kwargs)

    async def allocated_total(self, payment_id: UUID | str) -> Decimal:
        """Sum of all allocations already made from a payment."""
        amounts = await PaymentAllocation.filter(payment_id=payment_id).values_list(
            "allocated_amount", flat=True
        )
        return sum((Decimal(str(a)) for a in amounts), Decimal("0"))

    async def paid_toward_billing(self, billing_id: UUID | str) -> Decimal:
        """Sum of allocations to a bill from completed payments."""
        allocations = await PaymentAllocation.filter(
            billing_id=billing_id, payment__status=PaymentStatus.COMPLETED
        ).values_list("allocated_amount", flat=True)
        return sum((Decimal(str(a)) for a in allocations), Decimal("0"))

    async def unallocated_for_account(self, account_id: UUID | str) -> Decimal:
        """Money from completed payments of an account not allocated to any bill."""
        received = await self.model.filter(
            account_id=account_id, status=PaymentStatus.COMPLETED
        ).values_list("amount", flat=True)
        allocated = await PaymentAllocation.filter(
            payment__account_id=account_id, payment__status=PaymentStatus.COMPLETED
        ).values_list("allocated_amount", flat=True)
        total = sum((Decimal(str(a)) for a in received), Decimal("0"))
        return total - sum((Decimal(str(a)) for a in allocated), Decimal("0"))

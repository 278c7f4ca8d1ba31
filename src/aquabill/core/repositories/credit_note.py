"""Repository for CreditNote model."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from aquabill.core.models import CreditNote, CreditNoteStatus
from aquabill.core.repositories.base import BaseRepository


class CreditNoteRepository(BaseRepository[CreditNote]):
    """Credit note specific repository operations."""

    def __init__(self) -> None:
        super().__init__(CreditNote)

    async def get_for_update(self, pk: UUID | str) -> CreditNote | None:
        return await self.model.filter(id=pk).select_for_update().first()

    async def applied_toward_billing(self, billing_id: UUID | str) -> Decimal:
        """Sum of non-voided credit notes on a bill."""
        amounts = await self.model.filter(
            billing_id=billing_id, status=CreditNoteStatus.APPLIED
        ).values_list("amount", flat=True)
        return sum((Decimal(str(a)) for a in amounts), Decimal("0"))

    async def next_reference(self, year: int) -> str:
        """Next ``CN-<year>-<seq>`` reference for the given year."""
        prefix = f"CN-{year}-"
        count = await self.model.filter(reference__startswith=prefix).count()
        return f"{prefix}{count + 1:04d}"

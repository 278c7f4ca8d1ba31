"""Repository for Meter model."""

from __future__ import annotations

from uuid import UUID

from aquabill.core.models import Meter, MeterStatus, MeterType
from aquabill.core.repositories.base import BaseRepository


class MeterRepository(BaseRepository[Meter]):
    """Meter-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Meter)

    async def get_active_for_account(self, account_id: UUID | str) -> list[Meter]:
        """Get the active meters of an account."""
        return await self.model.filter(
            account_id=account_id, status=MeterStatus.ACTIVE
        ).order_by("meter_number")

    async def count_active_sub_meters(self, meter_id: UUID | str) -> int:
        return await self.model.filter(
            parent_meter_id=meter_id, status=MeterStatus.ACTIVE
        ).count()

    async def get_sub_meters(
        self, bulk_meter_id: UUID | str, active_only: bool = False
    ) -> list[Meter]:
        query = self.model.filter(parent_meter_id=bulk_meter_id)
        if active_only:
            query = query.filter(status=MeterStatus.ACTIVE)
        return await query.order_by("meter_number")

    async def get_billable_for_account(self, account_id: UUID | str) -> list[Meter]:
        """Active meters billed directly.

        A bulk meter with active sub-meters is billed through them instead.
        """
        return [
            meter
            for meter in await self.get_active_for_account(account_id)
            if meter.type != MeterType.BULK
            or not await self.count_active_sub_meters(meter.id)
        ]

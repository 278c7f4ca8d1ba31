"""Repository for MeterReading model."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from tortoise.expressions import Q

from aquabill.core.models import BillingDetail, MeterReading
from aquabill.core.repositories.base import BaseRepository


class ReadingRepository(BaseRepository[MeterReading]):
    """Reading-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(MeterReading)

    def _others(self, meter_id: UUID | str, exclude_id: UUID | str | None):
        query = self.model.filter(meter_id=meter_id)
        if exclude_id is not None:
            query = query.exclude(id=exclude_id)
        return query

    async def get_for_period(
        self, meter_id: UUID | str, start_date: date, end_date: date
    ) -> list[MeterReading]:
        """Get readings for a meter within a date range, oldest first."""
        return await self.model.filter(
            meter_id=meter_id, reading_date__gte=start_date, reading_date__lte=end_date
        ).order_by("reading_date")

    async def get_preceding(
        self,
        meter_id: UUID | str,
        before: date,
        exclude_id: UUID | str | None = None,
    ) -> MeterReading | None:
        """The latest reading strictly before ``before``."""
        return (
            await self._others(meter_id, exclude_id)
            .filter(reading_date__lt=before)
            .order_by("-reading_date")
            .first()
        )

    async def get_following(
        self,
        meter_id: UUID | str,
        after: date,
        exclude_id: UUID | str | None = None,
    ) -> MeterReading | None:
        """The earliest reading strictly after ``after``."""
        return (
            await self._others(meter_id, exclude_id)
            .filter(reading_date__gt=after)
            .order_by("reading_date")
            .first()
        )

    async def get_in_month(
        self,
        meter_id: UUID | str,
        month: date,
        exclude_id: UUID | str | None = None,
    ) -> MeterReading | None:
        """Any reading recorded in the calendar month starting at ``month``."""
        return (
            await self._others(meter_id, exclude_id).filter(reading_month=month).first()
        )

    async def is_billed(self, reading_id: UUID | str) -> bool:
        """Whether a billing detail references the reading."""
        return await BillingDetail.filter(
            Q(previous_reading_id=reading_id) | Q(current_reading_id=reading_id)
        ).exists()

"""Repository for Tariff model."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from aquabill.core.calculations import Tier, validate_tiers
from aquabill.core.exceptions import TariffOverlap
from aquabill.core.models import MeterType, Tariff, TariffRate
from aquabill.core.repositories.base import BaseRepository


class TariffRepository(BaseRepository[Tariff]):
    """Tariff-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Tariff)

    async def find_for_date(self, meter_type: MeterType, target_date: date) -> Tariff | None:
        """Find the non-default tariff active for a meter type on a specific date."""
        return (
            await self.model.filter(
                Q(meter_type=meter_type),
                Q(is_default=False),
                Q(effective_from__lte=target_date),
                Q(Q(effective_to__gte=target_date) | Q(effective_to__isnull=True)),
            )
            .order_by("-effective_from", "created_at")
            .first()
        )

    async def find_overlapping(
        self,
        meter_type: MeterType,
        effective_from: date,
        effective_to: date | None,
    ) -> Tariff | None:
        """The first non-default tariff sharing any day with the given range."""
        query = self.model.filter(
            Q(meter_type=meter_type),
            Q(is_default=False),
            Q(Q(effective_to__gte=effective_from) | Q(effective_to__isnull=True)),
        )
        if effective_to is not None:
            query = query.filter(effective_from__lte=effective_to)
        return await query.order_by("effective_from").first()

    async def get_default(self) -> Tariff | None:
        return await self.model.filter(is_default=True).order_by("-effective_from").first()

    async def get_rates(self, tariff: Tariff) -> list[TariffRate]:
        return await TariffRate.filter(tariff_id=tariff.id).order_by("tier_number")

    async def create_with_rates(
        self,
        name: str,
        meter_type: MeterType,
        effective_from: date,
        tiers: Sequence[Tier],
        effective_to: date | None = None,
        is_default: bool = False,
    ) -> Tariff:
        """Creates a tariff and its rate tiers after checking tier contiguity.

        Only one non-default tariff may be active for a meter type on any
        date, so a range sharing a day with an existing one raises
        ``TariffOverlap``.
        """
        ordered = validate_tiers(tiers)
        async with in_transaction():
            if not is_default:
                clash = await self.find_overlapping(meter_type, effective_from, effective_to)
                if clash is not None:
                    raise TariffOverlap(
                        f"{meter_type.value} tariff '{clash.name}' is already active "
                        f"from {clash.effective_from} to {clash.effective_to or 'open end'}."
                    )
            tariff = await self.model.create(
                name=name,
                meter_type=meter_type,
                effective_from=effective_from,
                effective_to=effective_to,
                is_default=is_default,
            )
            for tier in ordered:
                await TariffRate.create(
                    tariff=tariff,
                    tier_number=tier.tier_number,
                    min_units=tier.min_units,
                    max_units=tier.max_units,
                    rate_per_unit=tier.rate_per_unit,
                    fixed_charge=tier.fixed_charge,
                )
        return tariff

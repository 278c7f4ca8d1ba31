"""Resolution of the tariff that prices a meter on a date."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from aquabill.core.calculations import Tier
from aquabill.core.models import MeterType, Tariff
from aquabill.core.repositories.tariff import TariffRepository

logger = logging.getLogger(__name__)


class TariffResolver:
    """Finds the active tariff for a meter type, falling back to a flat default.

    The default tariff is created on first use so bill generation never fails
    for lack of a price list.
    """

    def __init__(
        self,
        tariff_repo: TariffRepository,
        default_unit_price: Decimal,
        default_name: str = "Default flat tariff",
    ):
        self._tariff_repo = tariff_repo
        self._default_unit_price = default_unit_price
        self._default_name = default_name

    async def resolve(self, meter_type: MeterType, on: date) -> tuple[Tariff, list[Tier]]:
        tariff = await self._tariff_repo.find_for_date(meter_type, on)
        if tariff is None:
            logger.warning(
                "No tariff for %s meters on %s, using the default flat tariff",
                meter_type.value,
                on,
            )
            tariff = await self.ensure_default()
        rates = await self._tariff_repo.get_rates(tariff)
        tiers = [
            Tier(
                tier_number=rate.tier_number,
                min_units=rate.min_units,
                max_units=rate.max_units,
                rate_per_unit=rate.rate_per_unit,
                fixed_charge=rate.fixed_charge,
            )
            for rate in rates
        ]
        if not tiers:
            tiers = [self._flat_tier()]
        return tariff, tiers

    async def ensure_default(self) -> Tariff:
        tariff = await self._tariff_repo.get_default()
        if tariff is not None:
            return tariff
        logger.info("Creating default flat tariff at %s per unit", self._default_unit_price)
        return await self._tariff_repo.create_with_rates(
            name=self._default_name,
            meter_type=MeterType.INDIVIDUAL,
            effective_from=date(1970, 1, 1),
            tiers=[self._flat_tier()],
            is_default=True,
        )

    def _flat_tier(self) -> Tier:
        return Tier(
            tier_number=1,
            min_units=Decimal("0"),
            max_units=None,
            rate_per_unit=self._default_unit_price,
        )

"""Charge and late fee calculation."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from aquabill.config import Settings
from aquabill.core import calculations
from aquabill.core.calculations import TierCharge
from aquabill.core.dates import parse_period
from aquabill.core.models import Meter, Tariff
from aquabill.services.tariffs import TariffResolver

ZERO = Decimal("0")


@dataclass(frozen=True)
class ChargeResult:
    """Charges for one meter's consumption in a period."""

    units: Decimal
    consumption_charge: Decimal
    fixed_charge: Decimal
    tariff: Tariff
    breakdown: list[TierCharge] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return self.consumption_charge + self.fixed_charge

    @property
    def average_rate(self) -> Decimal:
        if self.units <= ZERO:
            return ZERO
        return (self.consumption_charge / self.units).quantize(Decimal("0.0001"))


class LateFeePolicy(Protocol):
    def fee_for(self, total_amount: Decimal) -> Decimal: ...


class FlatLateFee:
    """A fixed fee per overdue bill."""

    def __init__(self, amount: Decimal):
        self.amount = amount

    def fee_for(self, total_amount: Decimal) -> Decimal:
        return calculations.quantize_money(self.amount)


class PercentageLateFee:
    """A percentage of the bill total, clamped between a minimum and maximum."""

    def __init__(
        self,
        percentage: Decimal,
        minimum: Decimal | None = None,
        maximum: Decimal | None = None,
    ):
        self.percentage = percentage
        self.minimum = minimum
        self.maximum = maximum

    def fee_for(self, total_amount: Decimal) -> Decimal:
        fee = total_amount * self.percentage / Decimal("100")
        if self.maximum is not None:
            fee = min(fee, self.maximum)
        if self.minimum is not None:
            fee = max(fee, self.minimum)
        return calculations.quantize_money(fee)


def late_fee_policy_from_settings(settings: Settings) -> LateFeePolicy:
    if settings.LATE_FEE_STRATEGY == "flat":
        return FlatLateFee(settings.LATE_FEE_FLAT_AMOUNT)
    if settings.LATE_FEE_STRATEGY == "percentage":
        return PercentageLateFee(
            settings.LATE_FEE_PERCENTAGE,
            minimum=settings.LATE_FEE_MINIMUM,
            maximum=settings.LATE_FEE_MAXIMUM,
        )
    raise ValueError(f"Unknown late fee strategy {settings.LATE_FEE_STRATEGY!r}")


class ChargeCalculator:
    """Prices consumption with the tariff active for a meter's type."""

    def __init__(
        self,
        tariff_resolver: TariffResolver,
        late_fee_policy: LateFeePolicy,
        grace_period_days: int,
        late_fees_enabled: bool = True,
    ):
        self._tariff_resolver = tariff_resolver
        self._late_fee_policy = late_fee_policy
        self._grace_period_days = grace_period_days
        self._late_fees_enabled = late_fees_enabled

    async def calculate(self, meter: Meter, period: str, units: Decimal) -> ChargeResult:
        """Charges for ``units`` consumed by ``meter`` during ``period``.

        The tariff is the one active on the first day of the period.
        """
        tariff, tiers = await self._tariff_resolver.resolve(meter.type, parse_period(period))
        breakdown = calculations.calculate_tiered_charges(max(units, ZERO), tiers)
        return ChargeResult(
            units=units,
            consumption_charge=sum((c.consumption_charge for c in breakdown), ZERO),
            fixed_charge=sum((c.fixed_charge for c in breakdown), ZERO),
            tariff=tariff,
            breakdown=breakdown,
        )

    def calculate_late_fee(self, total_amount: Decimal, days_overdue: int) -> Decimal:
        """Late fee for a bill ``days_overdue`` past its due date.

        Returns 0 while the bill is within the grace period.
        """
        if not self._late_fees_enabled or days_overdue <= self._grace_period_days:
            return ZERO
        if total_amount <= ZERO:
            return ZERO
        return self._late_fee_policy.fee_for(total_amount)

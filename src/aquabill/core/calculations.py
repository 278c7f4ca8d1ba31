"""Core business logic for calculations."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from aquabill.core.exceptions import InvalidAllocation, TariffTierError
from aquabill.core.models import BillingStatus

ZERO = Decimal("0")
CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Rounds a monetary amount to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_consumption(current_reading: Decimal, previous_reading: Decimal) -> Decimal:
    """
    Calculates the consumption between two meter readings.

    Args:
        current_reading: The most recent meter reading.
        previous_reading: The previous meter reading.

    Returns:
        The calculated consumption. Returns 0 if current reading
        is less than previous (meter reset or replacement).
    """
    if current_reading < previous_reading:
        return ZERO
    return current_reading - previous_reading


def calculate_cost(consumption: Decimal, rate: Decimal) -> Decimal:
    """Calculates the monetary cost of a consumption at a flat rate."""
    return quantize_money(consumption * rate)


@dataclass(frozen=True)
class Tier:
    """A plain view of a tariff tier used by the tier walk."""

    tier_number: int
    min_units: Decimal
    max_units: Decimal | None
    rate_per_unit: Decimal
    fixed_charge: Decimal = ZERO

    @property
    def capacity(self) -> Decimal | None:
        if self.max_units is None:
            return None
        return self.max_units - self.min_units


@dataclass(frozen=True)
class TierCharge:
    tier_number: int
    units: Decimal
    rate: Decimal
    consumption_charge: Decimal
    fixed_charge: Decimal

    @property
    def charge(self) -> Decimal:
        return self.consumption_charge + self.fixed_charge

    def as_dict(self) -> dict[str, str | int]:
        """JSON-safe representation stored on billing details."""
        return {
            "tier": self.tier_number,
            "units": str(self.units),
            "rate": str(self.rate),
            "consumption_charge": str(self.consumption_charge),
            "fixed_charge": str(self.fixed_charge),
        }


def validate_tiers(tiers: Sequence[Tier]) -> list[Tier]:
    """Returns tiers in ascending order, rejecting gaps and overlaps.

    Tiers must start at zero units, each tier must begin where the previous
    one ended, and only the last tier may be open-ended.
    """
    if not tiers:
        raise TariffTierError("A tariff needs at least one rate tier.")

    ordered = sorted(tiers, key=lambda t: t.tier_number)
    if ordered[0].min_units != ZERO:
        raise TariffTierError("The first tier must start at 0 units.")

    for previous, current in zip(ordered, ordered[1:]):
        if previous.tier_number == current.tier_number:
            raise TariffTierError(f"Duplicate tier number {current.tier_number}.")
        if previous.max_units is None:
            raise TariffTierError(
                f"Tier {previous.tier_number} is open-ended but is not the last tier."
            )
        if current.min_units != previous.max_units:
            raise TariffTierError(
                f"Tier {current.tier_number} starts at {current.min_units}, "
                f"expected {previous.max_units}."
            )

    for tier in ordered:
        if tier.max_units is not None and tier.max_units <= tier.min_units:
            raise TariffTierError(f"Tier {tier.tier_number} has an empty range.")
        if tier.rate_per_unit < ZERO or tier.fixed_charge < ZERO:
            raise TariffTierError(f"Tier {tier.tier_number} has a negative price.")
    return ordered


def calculate_tiered_charges(units: Decimal, tiers: Sequence[Tier]) -> list[TierCharge]:
    """Walks the tiers in ascending order until the units are exhausted.

    Each tier bills ``min(remaining, capacity) * rate`` plus its fixed
    charge. The first tier is always billed so that its fixed charge applies
    even to zero consumption.
    """
    remaining = units
    charges: list[TierCharge] = []
    for index, tier in enumerate(sorted(tiers, key=lambda t: t.tier_number)):
        if index > 0 and remaining <= ZERO:
            break
        capacity = tier.capacity
        tier_units = remaining if capacity is None else min(remaining, capacity)
        tier_units = max(tier_units, ZERO)
        charges.append(
            TierCharge(
                tier_number=tier.tier_number,
                units=tier_units,
                rate=tier.rate_per_unit,
                consumption_charge=quantize_money(tier_units * tier.rate_per_unit),
                fixed_charge=quantize_money(tier.fixed_charge),
            )
        )
        remaining -= tier_units
    return charges


def derive_balance(
    total_amount: Decimal,
    allocations: Iterable[Decimal],
    credits: Iterable[Decimal],
    carried_forward: Decimal = ZERO,
) -> Decimal:
    """Outstanding balance of a bill, never negative.

    The balance is recomputed from its inputs on every read and is never
    stored.
    """
    outstanding = total_amount - sum(allocations, ZERO) - sum(credits, ZERO)
    outstanding -= carried_forward
    return max(quantize_money(outstanding), ZERO)


def derive_excess_credit(
    total_amount: Decimal,
    allocations: Iterable[Decimal],
    credits: Iterable[Decimal],
    carried_forward: Decimal = ZERO,
) -> Decimal:
    """What the settled amounts exceed the bill by; the part ``derive_balance`` clips."""
    outstanding = total_amount - sum(allocations, ZERO) - sum(credits, ZERO)
    outstanding -= carried_forward
    return max(quantize_money(-outstanding), ZERO)


def derive_status(
    current: BillingStatus,
    total_amount: Decimal,
    paid_amount: Decimal,
    credited_amount: Decimal,
    carried_forward: Decimal = ZERO,
    overdue: bool = False,
) -> BillingStatus:
    """Re-derives a bill's status from its settled amounts.

    A bill whose balance was moved onto a later bill keeps its status: it is
    closed, but it was not paid.
    """
    if current == BillingStatus.VOIDED:
        return BillingStatus.VOIDED
    balance = derive_balance(
        total_amount, [paid_amount], [credited_amount], carried_forward
    )
    if balance <= ZERO:
        if paid_amount + credited_amount < total_amount and carried_forward > ZERO:
            return current
        return BillingStatus.PAID
    if paid_amount > ZERO:
        return BillingStatus.PARTIALLY_PAID
    if overdue:
        return BillingStatus.OVERDUE
    return BillingStatus.PENDING


def allocate_consumption(consumption: Decimal, percentages: Sequence[Decimal]) -> list[Decimal]:
    """
    Splits a bulk meter's consumption between sub-meters by percentage.

    Shares are rounded to cents. When the percentages cover the whole
    consumption, the last share absorbs the rounding so the shares add up
    to ``consumption`` exactly.

    Raises:
        InvalidAllocation: a percentage is outside 0..100 or the total
            exceeds 100.
    """
    for percentage in percentages:
        if percentage < ZERO or percentage > Decimal("100"):
            raise InvalidAllocation(
                f"Allocation percentage must be between 0 and 100, got {percentage}."
            )
    total = sum(percentages, ZERO)
    if total > Decimal("100"):
        raise InvalidAllocation(f"Allocations total {total}%, more than 100%.")

    shares = [quantize_money(consumption * p / Decimal("100")) for p in percentages]
    if shares and total == Decimal("100"):
        shares[-1] = consumption - sum(shares[:-1], ZERO)
    return shares

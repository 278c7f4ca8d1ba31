"""Tests for core calculation functions."""

from decimal import Decimal

import pytest

from aquabill.core.calculations import (
    Tier,
    allocate_consumption,
    calculate_consumption,
    calculate_cost,
    calculate_tiered_charges,
    derive_balance,
    derive_excess_credit,
    derive_status,
    validate_tiers,
)
from aquabill.core.dates import next_period, parse_period, period_bounds, previous_period
from aquabill.core.exceptions import InvalidAllocation, InvalidPeriod, TariffTierError
from aquabill.core.models import BillingStatus

TIERS = [
    Tier(1, Decimal("0"), Decimal("10"), Decimal("100"), Decimal("200")),
    Tier(2, Decimal("10"), Decimal("30"), Decimal("150")),
    Tier(3, Decimal("30"), None, Decimal("250")),
]


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (Decimal("100"), Decimal("50"), Decimal("50")),
        (Decimal("1150"), Decimal("1000"), Decimal("150")),
        (Decimal("50"), Decimal("100"), Decimal("0")),
        (Decimal("100"), Decimal("100"), Decimal("0")),
        (Decimal("150.55"), Decimal("120.25"), Decimal("30.30")),
    ],
)
def test_calculate_consumption(current, previous, expected):
    """Tests the calculate_consumption function with various scenarios."""
    assert calculate_consumption(current, previous) == expected


@pytest.mark.parametrize(
    "consumption, rate, expected",
    [
        (Decimal("150"), Decimal("300"), Decimal("45000")),
        (Decimal("0"), Decimal("10.5"), Decimal("0")),
        (Decimal("100"), Decimal("0"), Decimal("0")),
        (Decimal("0.333"), Decimal("1.5"), Decimal("0.50")),
    ],
)
def test_calculate_cost(consumption, rate, expected):
    """Tests the calculate_cost function with various scenarios."""
    assert calculate_cost(consumption, rate) == expected


@pytest.mark.parametrize(
    "units, expected_total, tiers_touched",
    [
        (Decimal("0"), Decimal("200"), 1),  # fixed charge of the first tier only
        (Decimal("5"), Decimal("700"), 1),
        (Decimal("10"), Decimal("1200"), 1),
        (Decimal("25"), Decimal("3450"), 2),  # 1000 + 200 + 15 * 150
        (Decimal("40"), Decimal("6700"), 3),  # 1200 + 3000 + 10 * 250
    ],
)
def test_calculate_tiered_charges(units, expected_total, tiers_touched):
    charges = calculate_tiered_charges(units, TIERS)

    assert len(charges) == tiers_touched
    assert sum(c.charge for c in charges) == expected_total
    assert sum(c.units for c in charges) == units


def test_tier_breakdown_is_json_safe():
    charge = calculate_tiered_charges(Decimal("12"), TIERS)[1]

    assert charge.as_dict() == {
        "tier": 2,
        "units": "2",
        "rate": "150",
        "consumption_charge": "300.00",
        "fixed_charge": "0.00",
    }


@pytest.mark.parametrize(
    "tiers, message",
    [
        ([], "at least one"),
        ([Tier(1, Decimal("5"), None, Decimal("1"))], "start at 0"),
        (
            [
                Tier(1, Decimal("0"), Decimal("10"), Decimal("1")),
                Tier(2, Decimal("12"), None, Decimal("2")),
            ],
            "expected 10",
        ),
        (
            [
                Tier(1, Decimal("0"), None, Decimal("1")),
                Tier(2, Decimal("10"), None, Decimal("2")),
            ],
            "open-ended",
        ),
        ([Tier(1, Decimal("0"), None, Decimal("-1"))], "negative"),
    ],
)
def test_validate_tiers_rejects_bad_ranges(tiers, message):
    with pytest.raises(TariffTierError, match=message):
        validate_tiers(tiers)


def test_validate_tiers_orders_by_tier_number():
    ordered = validate_tiers(list(reversed(TIERS)))
    assert [t.tier_number for t in ordered] == [1, 2, 3]


@pytest.mark.parametrize(
    "total, allocations, credits, carried, expected",
    [
        (Decimal("100"), [Decimal("40")], [], Decimal("0"), Decimal("60")),
        (Decimal("100"), [Decimal("40")], [Decimal("60")], Decimal("0"), Decimal("0")),
        (Decimal("100"), [Decimal("150")], [], Decimal("0"), Decimal("0")),
        (Decimal("100"), [Decimal("50")], [], Decimal("50"), Decimal("0")),
    ],
)
def test_derive_balance_is_never_negative(total, allocations, credits, carried, expected):
    assert derive_balance(total, allocations, credits, carried) == expected


@pytest.mark.parametrize(
    "current, paid, credited, carried, overdue, expected",
    [
        (BillingStatus.PENDING, "0", "0", "0", False, BillingStatus.PENDING),
        (BillingStatus.PENDING, "40", "0", "0", False, BillingStatus.PARTIALLY_PAID),
        (BillingStatus.PENDING, "100", "0", "0", False, BillingStatus.PAID),
        (BillingStatus.PENDING, "40", "60", "0", False, BillingStatus.PAID),
        (BillingStatus.PAID, "0", "0", "0", False, BillingStatus.PENDING),
        (BillingStatus.PENDING, "0", "0", "0", True, BillingStatus.OVERDUE),
        (BillingStatus.PARTIALLY_PAID, "50", "0", "50", False, BillingStatus.PARTIALLY_PAID),
        (BillingStatus.VOIDED, "100", "0", "0", False, BillingStatus.VOIDED),
    ],
)
def test_derive_status(current, paid, credited, carried, overdue, expected):
    status = derive_status(
        current,
        Decimal("100"),
        Decimal(paid),
        Decimal(credited),
        Decimal(carried),
        overdue=overdue,
    )
    assert status == expected


def test_period_helpers():
    assert parse_period("2025-01").isoformat() == "2025-01-01"
    assert [d.isoformat() for d in period_bounds("2024-02")] == ["2024-02-01", "2024-02-29"]
    assert previous_period("2025-01") == "2024-12"
    assert next_period("2024-12") == "2025-01"


@pytest.mark.parametrize("period", ["2025-13", "2025-1", "January", ""])
def test_parse_period_rejects_malformed(period):
    with pytest.raises(InvalidPeriod):
        parse_period(period)


@pytest.mark.parametrize(
    "total, paid, credits, carried, expected",
    [
        (Decimal("45000"), Decimal("45000"), [Decimal("15000")], Decimal("0"), Decimal("15000")),
        (Decimal("45000"), Decimal("0"), [Decimal("15000")], Decimal("0"), Decimal("0")),
        (Decimal("45000"), Decimal("45000"), [Decimal("15000")], Decimal("-15000"), Decimal("0")),
        (Decimal("-12000"), Decimal("0"), [], Decimal("0"), Decimal("12000")),
    ],
)
def test_derive_excess_credit(total, paid, credits, carried, expected):
    assert derive_excess_credit(total, [paid], credits, carried) == expected


@pytest.mark.parametrize(
    "consumption, percentages, expected",
    [
        (Decimal("100"), [Decimal("60"), Decimal("40")], [Decimal("60"), Decimal("40")]),
        (
            Decimal("10"),
            [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")],
            [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")],
        ),
        (
            Decimal("1"),
            [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")],
            [Decimal("0.33"), Decimal("0.33"), Decimal("0.34")],
        ),
        (Decimal("100"), [Decimal("50"), Decimal("30")], [Decimal("50"), Decimal("30")]),
    ],
)
def test_allocate_consumption(consumption, percentages, expected):
    assert allocate_consumption(consumption, percentages) == expected


@pytest.mark.parametrize(
    "percentages",
    [[Decimal("60"), Decimal("50")], [Decimal("-5"), Decimal("50")], [Decimal("101")]],
)
def test_allocate_consumption_rejects_bad_percentages(percentages):
    with pytest.raises(InvalidAllocation):
        allocate_consumption(Decimal("100"), percentages)

"""Tests for tariff resolution and charge calculation."""

from datetime import date
from decimal import Decimal

import pytest

from aquabill.config import Settings
from aquabill.core.calculations import Tier
from aquabill.core.exceptions import TariffOverlap, TariffTierError
from aquabill.core.models import Meter, MeterType, Tariff
from aquabill.core.repositories.tariff import TariffRepository
from aquabill.services.charges import (
    ChargeCalculator,
    FlatLateFee,
    PercentageLateFee,
    late_fee_policy_from_settings,
)
from aquabill.services.tariffs import TariffResolver


def _calculator(policy, enabled=True) -> ChargeCalculator:
    resolver = TariffResolver(TariffRepository(), Decimal("300"))
    return ChargeCalculator(resolver, policy, grace_period_days=14, late_fees_enabled=enabled)


@pytest.mark.parametrize(
    "total, days_overdue, expected",
    [
        (Decimal("1000"), 31, Decimal("50")),
        (Decimal("1000"), 14, Decimal("0")),  # last day of grace
        (Decimal("2000"), 15, Decimal("100")),
        (Decimal("100"), 30, Decimal("50")),  # minimum
        (Decimal("200000"), 30, Decimal("5000")),  # maximum
        (Decimal("0"), 30, Decimal("0")),
    ],
)
def test_percentage_late_fee(total, days_overdue, expected):
    policy = PercentageLateFee(Decimal("5"), Decimal("50"), Decimal("5000"))
    assert _calculator(policy).calculate_late_fee(total, days_overdue) == expected


def test_flat_and_disabled_late_fees():
    assert _calculator(FlatLateFee(Decimal("75"))).calculate_late_fee(
        Decimal("10"), 20
    ) == Decimal("75")
    assert _calculator(FlatLateFee(Decimal("75")), enabled=False).calculate_late_fee(
        Decimal("10"), 20
    ) == Decimal("0")


def test_late_fee_policy_from_settings():
    flat = late_fee_policy_from_settings(
        Settings(_env_file=None, LATE_FEE_STRATEGY="flat", LATE_FEE_FLAT_AMOUNT=Decimal("25"))
    )
    assert isinstance(flat, FlatLateFee)
    assert flat.amount == Decimal("25")

    with pytest.raises(ValueError):
        late_fee_policy_from_settings(Settings(_env_file=None, LATE_FEE_STRATEGY="daily"))


@pytest.mark.asyncio
async def test_default_tariff_is_created_once(services, make_account):
    # --- Arrange ---
    _, meter = await make_account()

    # --- Act ---
    first = await services.charges.calculate(meter, "2025-01", Decimal("150"))
    second = await services.charges.calculate(meter, "2025-02", Decimal("1"))

    # --- Assert ---
    assert first.subtotal == Decimal("45000")
    assert second.subtotal == Decimal("300")
    assert first.tariff.id == second.tariff.id
    assert await Tariff.filter(is_default=True).count() == 1


@pytest.mark.asyncio
async def test_tiered_tariff_active_on_first_day_of_period(services, make_account):
    # --- Arrange ---
    _, meter = await make_account()
    await services.tariff_repo.create_with_rates(
        name="2024 tariff",
        meter_type=MeterType.INDIVIDUAL,
        effective_from=date(2024, 1, 1),
        effective_to=date(2024, 12, 31),
        tiers=[Tier(1, Decimal("0"), None, Decimal("50"))],
    )
    await services.tariff_repo.create_with_rates(
        name="2025 tariff",
        meter_type=MeterType.INDIVIDUAL,
        effective_from=date(2025, 1, 1),
        tiers=[
            Tier(1, Decimal("0"), Decimal("10"), Decimal("100"), Decimal("200")),
            Tier(2, Decimal("10"), None, Decimal("150")),
        ],
    )

    # --- Act ---
    old = await services.charges.calculate(meter, "2024-12", Decimal("25"))
    new = await services.charges.calculate(meter, "2025-01", Decimal("25"))

    # --- Assert ---
    assert old.tariff.name == "2024 tariff"
    assert old.subtotal == Decimal("1250")
    assert new.tariff.name == "2025 tariff"
    assert new.consumption_charge == Decimal("3250")  # 10 * 100 + 15 * 150
    assert new.fixed_charge == Decimal("200")
    assert [c.tier_number for c in new.breakdown] == [1, 2]


@pytest.mark.asyncio
async def test_tariff_for_another_meter_type_falls_back_to_default(services, make_account):
    account, _ = await make_account(with_meter=False)
    bulk = await Meter.create(meter_number="BULK-1", account=account, type=MeterType.BULK)
    await services.tariff_repo.create_with_rates(
        name="Individual only",
        meter_type=MeterType.INDIVIDUAL,
        effective_from=date(2024, 1, 1),
        tiers=[Tier(1, Decimal("0"), None, Decimal("50"))],
    )

    result = await services.charges.calculate(bulk, "2025-01", Decimal("2"))

    assert result.tariff.is_default
    assert result.subtotal == Decimal("600")


@pytest.mark.asyncio
async def test_overlapping_tiers_are_refused(services):
    with pytest.raises(TariffTierError):
        await services.tariff_repo.create_with_rates(
            name="Broken",
            meter_type=MeterType.INDIVIDUAL,
            effective_from=date(2025, 1, 1),
            tiers=[
                Tier(1, Decimal("0"), Decimal("10"), Decimal("100")),
                Tier(2, Decimal("5"), None, Decimal("150")),
            ],
        )
    assert await Tariff.all().count() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "effective_from, effective_to",
    [
        (date(2025, 1, 1), None),  # same start date
        (date(2024, 6, 1), date(2025, 1, 1)),  # ends on the first day of the other
        (date(2025, 3, 1), date(2025, 4, 30)),  # inside an open-ended range
    ],
)
async def test_overlapping_tariffs_are_refused(services, effective_from, effective_to):
    # --- Arrange ---
    await services.tariff_repo.create_with_rates(
        name="2025 tariff",
        meter_type=MeterType.INDIVIDUAL,
        effective_from=date(2025, 1, 1),
        tiers=[Tier(1, Decimal("0"), None, Decimal("100"))],
    )

    # --- Act / Assert ---
    with pytest.raises(TariffOverlap, match="2025 tariff"):
        await services.tariff_repo.create_with_rates(
            name="Competing tariff",
            meter_type=MeterType.INDIVIDUAL,
            effective_from=effective_from,
            effective_to=effective_to,
            tiers=[Tier(1, Decimal("0"), None, Decimal("120"))],
        )
    assert await Tariff.filter(meter_type=MeterType.INDIVIDUAL).count() == 1


@pytest.mark.asyncio
async def test_adjacent_and_other_type_tariffs_are_accepted(services):
    tiers = [Tier(1, Decimal("0"), None, Decimal("100"))]
    await services.tariff_repo.create_with_rates(
        name="2024 tariff",
        meter_type=MeterType.INDIVIDUAL,
        effective_from=date(2024, 1, 1),
        effective_to=date(2024, 12, 31),
        tiers=tiers,
    )

    await services.tariff_repo.create_with_rates(
        name="2025 tariff",
        meter_type=MeterType.INDIVIDUAL,
        effective_from=date(2025, 1, 1),
        tiers=tiers,
    )
    await services.tariff_repo.create_with_rates(
        name="Bulk 2025",
        meter_type=MeterType.BULK,
        effective_from=date(2025, 1, 1),
        tiers=tiers,
    )

    assert await Tariff.all().count() == 3

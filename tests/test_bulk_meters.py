"""Tests for distributing bulk meter readings to sub-meters."""

from datetime import date
from decimal import Decimal

import pytest

from aquabill.core.exceptions import (
    BulkMeterError,
    InvalidAllocation,
    NoActiveMeters,
    ReadingAlreadyDistributed,
)
from aquabill.core.models import Meter, MeterReading, MeterStatus, MeterType, ReadingType


@pytest.fixture
def bulk_setup(make_account, add_reading):
    """
    A bulk meter read 1000 then 1100, split 60/40 between two sub-meters
    of other accounts whose last readings are 500 and 200.
    """

    async def _make(first_share="60", second_share="40"):
        owner, _ = await make_account("ACC-BULK", with_meter=False)
        bulk = await Meter.create(meter_number="BULK-1", account=owner, type=MeterType.BULK)
        tenant_a, _ = await make_account("ACC-A", with_meter=False)
        tenant_b, _ = await make_account("ACC-B", with_meter=False)
        sub_a = await Meter.create(
            meter_number="SUB-A",
            account=tenant_a,
            parent_meter=bulk,
            allocation_percentage=Decimal(first_share),
        )
        sub_b = await Meter.create(
            meter_number="SUB-B",
            account=tenant_b,
            parent_meter=bulk,
            allocation_percentage=Decimal(second_share),
        )
        await add_reading(sub_a, 500, date(2024, 12, 15))
        await add_reading(sub_b, 200, date(2024, 12, 15))
        await add_reading(bulk, 1000, date(2024, 12, 15))
        reading = await add_reading(bulk, 1100, date(2025, 1, 20))
        return {
            "owner": owner,
            "bulk": bulk,
            "tenants": (tenant_a, tenant_b),
            "sub_meters": (sub_a, sub_b),
            "reading": reading,
        }

    return _make


@pytest.mark.asyncio
async def test_distribute_reading_splits_consumption(services, bulk_setup, audit):
    # --- Arrange ---
    setup = await bulk_setup()
    reading = setup["reading"]

    # --- Act ---
    distributed = await services.bulk_meters.distribute_reading(reading.id)

    # --- Assert ---
    assert [r.reading_value for r in distributed] == [Decimal("560"), Decimal("240")]
    for sub_reading, sub_meter in zip(distributed, setup["sub_meters"]):
        assert sub_reading.meter_id == sub_meter.id
        assert sub_reading.distributed_from_id == reading.id
        assert sub_reading.reading_type == ReadingType.ESTIMATED
        assert sub_reading.reading_date == date(2025, 1, 20)
    assert (await MeterReading.get(id=reading.id)).is_distributed
    assert audit.names().count("meter.reading_distributed") == 2


@pytest.mark.asyncio
async def test_distributed_reading_is_frozen(services, bulk_setup, audit):
    # --- Arrange ---
    setup = await bulk_setup()
    reading = setup["reading"]
    await services.bulk_meters.distribute_reading(reading.id)

    # --- Act & Assert ---
    with pytest.raises(ReadingAlreadyDistributed):
        await services.bulk_meters.distribute_reading(reading.id)
    with pytest.raises(ReadingAlreadyDistributed):
        await services.readings.update_reading(reading.id, reading_value=Decimal("1200"))
    assert "meter_reading.update_prevented" in audit.names()
    assert await MeterReading.filter(distributed_from_id=reading.id).count() == 2


@pytest.mark.asyncio
async def test_distribution_needs_full_allocation(services, bulk_setup):
    # --- Arrange ---
    setup = await bulk_setup(second_share="30")

    # --- Act & Assert ---
    with pytest.raises(InvalidAllocation):
        await services.bulk_meters.distribute_reading(setup["reading"].id)
    assert await MeterReading.filter(distributed_from_id__isnull=False).count() == 0
    assert not (await MeterReading.get(id=setup["reading"].id)).is_distributed


@pytest.mark.asyncio
async def test_distribution_needs_a_bulk_meter_with_history(
    services, bulk_setup, add_reading, make_account
):
    # --- Arrange ---
    setup = await bulk_setup()
    _, plain_meter = await make_account("ACC-PLAIN")
    plain_reading = await add_reading(plain_meter, 10, date(2025, 1, 20))
    first_reading = await MeterReading.get(
        meter_id=setup["bulk"].id, reading_date=date(2024, 12, 15)
    )

    # --- Act & Assert ---
    with pytest.raises(BulkMeterError, match="not a bulk meter"):
        await services.bulk_meters.distribute_reading(plain_reading.id)
    with pytest.raises(BulkMeterError, match="No previous reading"):
        await services.bulk_meters.distribute_reading(first_reading.id)


@pytest.mark.asyncio
async def test_validate_setup_reports_problems(services, bulk_setup):
    # --- Arrange ---
    setup = await bulk_setup(second_share="30")
    _, sub_b = setup["sub_meters"]
    sub_b.status = MeterStatus.INACTIVE
    await sub_b.save()

    # --- Act ---
    result = await services.bulk_meters.validate_setup(setup["bulk"].id)

    # --- Assert ---
    assert not result.valid
    assert result.sub_meter_count == 2
    assert result.active_sub_meter_count == 1
    assert result.total_allocation == Decimal("60")
    assert "Sub-meter allocations total 60.00%, must equal 100%." in result.errors
    assert "1 sub-meter(s) are not active." in result.errors


@pytest.mark.asyncio
async def test_validate_setup_accepts_a_complete_split(services, bulk_setup):
    setup = await bulk_setup()

    result = await services.bulk_meters.validate_setup(setup["bulk"].id)

    assert result.valid
    assert result.total_allocation == Decimal("100")


@pytest.mark.asyncio
async def test_adjust_allocations(services, bulk_setup, audit, make_account):
    # --- Arrange ---
    setup = await bulk_setup()
    sub_a, sub_b = setup["sub_meters"]
    _, stranger = await make_account("ACC-OTHER")

    # --- Act ---
    updated = await services.bulk_meters.adjust_allocations(
        setup["bulk"].id, {str(sub_a.id): Decimal("70"), str(sub_b.id): Decimal("30")}
    )

    # --- Assert ---
    assert [m.allocation_percentage for m in updated] == [Decimal("70"), Decimal("30")]
    assert (await Meter.get(id=sub_a.id)).allocation_percentage == Decimal("70")
    assert audit.names().count("meter.allocation_adjusted") == 2

    with pytest.raises(InvalidAllocation):
        await services.bulk_meters.adjust_allocations(
            setup["bulk"].id, {str(sub_a.id): Decimal("60"), str(sub_b.id): Decimal("30")}
        )
    with pytest.raises(BulkMeterError):
        await services.bulk_meters.adjust_allocations(
            setup["bulk"].id, {str(sub_a.id): Decimal("70"), str(stranger.id): Decimal("30")}
        )
    assert (await Meter.get(id=sub_a.id)).allocation_percentage == Decimal("70")


@pytest.mark.asyncio
async def test_generate_bills_for_sub_meter_accounts(services, bulk_setup):
    # --- Arrange ---
    setup = await bulk_setup()
    await services.bulk_meters.distribute_reading(setup["reading"].id)
    tenant_a, tenant_b = setup["tenants"]

    # --- Act ---
    stats = await services.bulk_meters.generate_bills(
        setup["bulk"].id, "2025-01", services.batch_runner
    )

    # --- Assert ---
    assert stats.succeeded == 2
    bill_a = await services.billing_repo.get_live_for_period(tenant_a.id, "2025-01")
    bill_b = await services.billing_repo.get_live_for_period(tenant_b.id, "2025-01")
    assert bill_a.total_amount == Decimal("18000")  # 60 units at 300
    assert bill_b.total_amount == Decimal("12000")  # 40 units at 300
    assert await services.billing_repo.get_live_for_period(setup["owner"].id, "2025-01") is None


@pytest.mark.asyncio
async def test_bulk_meter_with_sub_meters_is_not_billed_directly(services, bulk_setup):
    setup = await bulk_setup()

    with pytest.raises(NoActiveMeters):
        await services.billing.generate_monthly_bill(setup["owner"].id, "2025-01")

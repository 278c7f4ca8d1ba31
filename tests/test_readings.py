"""Tests for meter reading validation."""

from datetime import date
from decimal import Decimal

import pytest

from aquabill.core.exceptions import (
    DependentReadings,
    DuplicateReading,
    FutureReadingDate,
    MonotonicViolation,
    NegativeReadingValue,
    NotFound,
    ReadingAlreadyBilled,
)
from aquabill.core.models import MeterReading, ReadingType


@pytest.mark.asyncio
async def test_create_reading(services, make_account, audit):
    # --- Arrange ---
    _, meter = await make_account()
    await services.readings.create_reading(meter.id, Decimal("1000"), date(2024, 12, 15))

    # --- Act ---
    reading = await services.readings.create_reading(
        meter.id, Decimal("1150"), date(2025, 1, 20)
    )

    # --- Assert ---
    assert reading.reading_month == date(2025, 1, 1)
    assert reading.reading_type == ReadingType.ACTUAL
    _, _, event, payload = audit.events[-1]
    assert event == "created"
    assert Decimal(payload["consumption_calculated"]) == Decimal("150")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "value, on, error",
    [
        (Decimal("900"), date(2025, 1, 20), MonotonicViolation),
        (Decimal("-5"), date(2025, 1, 20), NegativeReadingValue),
        (Decimal("1200"), date(2025, 3, 1), FutureReadingDate),
        (Decimal("1100"), date(2024, 12, 28), DuplicateReading),
    ],
)
async def test_invalid_readings_are_rejected(services, make_account, value, on, error):
    # --- Arrange ---
    _, meter = await make_account()
    await services.readings.create_reading(meter.id, Decimal("1000"), date(2024, 12, 15))

    # --- Act / Assert ---
    with pytest.raises(error):
        await services.readings.create_reading(meter.id, value, on)
    assert await MeterReading.filter(meter_id=meter.id).count() == 1


@pytest.mark.asyncio
async def test_duplicate_message_and_audit(services, make_account, audit):
    _, meter = await make_account()
    await services.readings.create_reading(meter.id, Decimal("1000"), date(2024, 12, 15))

    with pytest.raises(DuplicateReading, match="Duplicate reading detected"):
        await services.readings.create_reading(meter.id, Decimal("1010"), date(2024, 12, 20))
    assert "meter_reading.duplicate_prevented" in audit.names()


@pytest.mark.asyncio
async def test_reading_may_not_exceed_a_later_reading(services, make_account, audit):
    # --- Arrange ---
    _, meter = await make_account()
    await services.readings.create_reading(meter.id, Decimal("1000"), date(2024, 12, 15))

    # --- Act / Assert ---
    with pytest.raises(MonotonicViolation, match="future reading"):
        await services.readings.create_reading(meter.id, Decimal("1200"), date(2024, 11, 10))
    assert "meter_reading.monotonic_violation" in audit.names()


@pytest.mark.asyncio
async def test_correction_may_go_below_previous_reading(services, make_account):
    _, meter = await make_account()
    await services.readings.create_reading(meter.id, Decimal("1000"), date(2024, 12, 15))

    reading = await services.readings.create_reading(
        meter.id, Decimal("900"), date(2025, 1, 20), reading_type=ReadingType.CORRECTION
    )

    assert reading.reading_value == Decimal("900")


@pytest.mark.asyncio
async def test_billed_readings_are_frozen(services, make_account, audit):
    # --- Arrange ---
    account, meter = await make_account()
    first = await services.readings.create_reading(
        meter.id, Decimal("1000"), date(2024, 12, 15)
    )
    current = await services.readings.create_reading(
        meter.id, Decimal("1150"), date(2025, 1, 20)
    )
    await services.billing.generate_monthly_bill(account.id, "2025-01")

    # --- Act / Assert ---
    with pytest.raises(ReadingAlreadyBilled):
        await services.readings.update_reading(current.id, reading_value=Decimal("1160"))
    with pytest.raises(ReadingAlreadyBilled):
        await services.readings.delete_reading(first.id)
    with pytest.raises(ReadingAlreadyBilled):
        await services.readings.create_reading(meter.id, Decimal("1170"), date(2025, 1, 25))

    assert "meter_reading.update_prevented" in audit.names()
    assert "meter_reading.delete_prevented" in audit.names()
    unchanged = await MeterReading.get(id=current.id)
    assert unchanged.reading_value == Decimal("1150")


@pytest.mark.asyncio
async def test_update_reading_revalidates(services, make_account, audit):
    # --- Arrange ---
    _, meter = await make_account()
    await services.readings.create_reading(meter.id, Decimal("1000"), date(2024, 12, 15))
    reading = await services.readings.create_reading(
        meter.id, Decimal("1150"), date(2025, 1, 20)
    )

    # --- Act ---
    updated = await services.readings.update_reading(
        reading.id, reading_value=Decimal("1140"), notes="Re-read"
    )

    # --- Assert ---
    assert updated.reading_value == Decimal("1140")
    assert updated.notes == "Re-read"
    assert "meter_reading.updated" in audit.names()

    with pytest.raises(MonotonicViolation):
        await services.readings.update_reading(reading.id, reading_value=Decimal("990"))


@pytest.mark.asyncio
async def test_delete_reading(services, make_account):
    # --- Arrange ---
    _, meter = await make_account()
    first = await services.readings.create_reading(
        meter.id, Decimal("1000"), date(2024, 12, 15)
    )
    last = await services.readings.create_reading(
        meter.id, Decimal("1150"), date(2025, 1, 20)
    )

    # --- Act / Assert ---
    with pytest.raises(DependentReadings):
        await services.readings.delete_reading(first.id)

    await services.readings.delete_reading(last.id)
    assert await MeterReading.filter(meter_id=meter.id).count() == 1

    with pytest.raises(NotFound):
        await services.readings.delete_reading(last.id)


@pytest.mark.asyncio
async def test_bulk_import_collects_failures(services, make_account, audit):
    # --- Arrange ---
    _, meter = await make_account()
    rows = [
        {"meter_id": meter.id, "reading_value": "1000", "reading_date": date(2024, 12, 15)},
        {"meter_id": meter.id, "reading_value": "-1", "reading_date": date(2025, 1, 15)},
        {"meter_id": meter.id, "reading_date": date(2025, 1, 16)},
        {"meter_id": meter.id, "reading_value": "1100", "reading_date": date(2025, 1, 20)},
    ]

    # --- Act ---
    result = await services.readings.create_bulk_readings(rows, {"source": "route-7"})

    # --- Assert ---
    assert len(result.created) == 2
    assert [failure["index"] for failure in result.failed] == [1, 2]
    _, _, event, payload = audit.events[-1]
    assert event == "bulk_created"
    assert payload["source"] == "route-7"
    assert payload["total_failed"] == 2

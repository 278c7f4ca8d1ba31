"""Meter reading validation and lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from aquabill.core import calculations
from aquabill.core.audit import AuditSink
from aquabill.core.clock import Clock
from aquabill.core.dates import month_start
from aquabill.core.exceptions import (
    BillingCoreError,
    DependentReadings,
    DuplicateReading,
    FutureReadingDate,
    MonotonicViolation,
    NegativeReadingValue,
    ReadingAlreadyBilled,
    ReadingAlreadyDistributed,
)
from aquabill.core.models import Meter, MeterReading, ReadingType
from aquabill.core.repositories.meter import MeterRepository
from aquabill.core.repositories.reading import ReadingRepository

logger = logging.getLogger(__name__)

ENTITY = "meter_reading"


@dataclass(frozen=True)
class ReadingCandidate:
    """A reading value proposed for a meter."""

    reading_value: Decimal
    reading_date: date
    reading_type: ReadingType = ReadingType.ACTUAL


@dataclass
class BulkReadingResult:
    created: list[MeterReading] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)


class MeterReadingValidator:
    """Enforces the rules a reading must satisfy before it is stored."""

    def __init__(self, reading_repo: ReadingRepository, audit: AuditSink, clock: Clock):
        self._reading_repo = reading_repo
        self._audit = audit
        self._clock = clock

    async def ensure_mutable(
        self, reading: MeterReading, action: str, attempted: dict[str, Any] | None = None
    ) -> None:
        """Rejects changes to a reading that a bill or a distribution refers to.

        ``action`` is ``"update"`` or ``"delete"``.
        """
        if await self._reading_repo.is_billed(reading.id):
            reason = "reading_already_billed"
            error = ReadingAlreadyBilled(
                f"Cannot {action} reading that has already been billed."
            )
        elif reading.is_distributed:
            reason = "reading_already_distributed"
            error = ReadingAlreadyDistributed(
                f"Cannot {action} reading that was distributed to sub-meters."
            )
        else:
            return
        await self._audit.log_event(
            ENTITY,
            reading.id,
            f"{action}_prevented",
            {
                "reason": reason,
                "meter_id": str(reading.meter_id),
                "attempted_changes": attempted or {},
            },
        )
        raise error

    async def validate(
        self,
        meter: Meter,
        candidate: ReadingCandidate,
        exclude_reading_id: UUID | None = None,
    ) -> None:
        """Raises if ``candidate`` may not be recorded for ``meter``."""
        month = month_start(candidate.reading_date)
        same_month = await self._reading_repo.get_in_month(
            meter.id, month, exclude_id=exclude_reading_id
        )
        if same_month is not None and await self._reading_repo.is_billed(same_month.id):
            await self._audit.log_event(
                ENTITY,
                same_month.id,
                "update_prevented",
                {
                    "reason": "reading_already_billed",
                    "meter_id": str(meter.id),
                    "attempted_reading_value": str(candidate.reading_value),
                    "attempted_reading_date": candidate.reading_date.isoformat(),
                },
            )
            raise ReadingAlreadyBilled(
                f"The reading for meter {meter.meter_number} in "
                f"{month:%Y-%m} has already been billed."
            )

        if candidate.reading_value < 0:
            raise NegativeReadingValue("Reading value cannot be negative.")
        if candidate.reading_date > self._clock.today():
            raise FutureReadingDate(
                f"Reading date {candidate.reading_date} is in the future."
            )

        if candidate.reading_type != ReadingType.CORRECTION:
            await self._check_monotonic(meter, candidate, exclude_reading_id)

        if same_month is not None:
            await self._audit.log_event(
                ENTITY,
                None,
                "duplicate_prevented",
                {
                    "meter_id": str(meter.id),
                    "existing_reading_id": str(same_month.id),
                    "existing_reading_date": same_month.reading_date.isoformat(),
                    "attempted_reading_date": candidate.reading_date.isoformat(),
                },
            )
            raise DuplicateReading(
                f"Duplicate reading detected: meter {meter.meter_number} already has a "
                f"reading for {month:%B %Y} (on {same_month.reading_date})."
            )

    async def _check_monotonic(
        self, meter: Meter, candidate: ReadingCandidate, exclude_id: UUID | None
    ) -> None:
        value = candidate.reading_value
        preceding = await self._reading_repo.get_preceding(
            meter.id, candidate.reading_date, exclude_id=exclude_id
        )
        if preceding is not None and value < preceding.reading_value:
            await self._audit.log_event(
                ENTITY,
                None,
                "monotonic_violation",
                {
                    "meter_id": str(meter.id),
                    "previous_reading_value": str(preceding.reading_value),
                    "previous_reading_date": preceding.reading_date.isoformat(),
                    "attempted_reading_value": str(value),
                    "attempted_reading_date": candidate.reading_date.isoformat(),
                    "violation_amount": str(preceding.reading_value - value),
                },
            )
            raise MonotonicViolation(
                f"Reading cannot be less than previous reading. "
                f"Previous: {preceding.reading_value:.2f} on {preceding.reading_date}, "
                f"Attempted: {value:.2f}"
            )

        following = await self._reading_repo.get_following(
            meter.id, candidate.reading_date, exclude_id=exclude_id
        )
        if following is not None and value > following.reading_value:
            await self._audit.log_event(
                ENTITY,
                None,
                "monotonic_violation",
                {
                    "meter_id": str(meter.id),
                    "future_reading_value": str(following.reading_value),
                    "future_reading_date": following.reading_date.isoformat(),
                    "attempted_reading_value": str(value),
                    "attempted_reading_date": candidate.reading_date.isoformat(),
                    "violation_amount": str(value - following.reading_value),
                },
            )
            raise MonotonicViolation(
                f"Reading must be <= future reading. "
                f"Future: {following.reading_value:.2f} on {following.reading_date}, "
                f"Attempted: {value:.2f}"
            )


class MeterReadingService:
    """Creates, updates and deletes readings through the validator."""

    def __init__(
        self,
        meter_repo: MeterRepository,
        reading_repo: ReadingRepository,
        validator: MeterReadingValidator,
        audit: AuditSink,
    ):
        self._meter_repo = meter_repo
        self._reading_repo = reading_repo
        self._validator = validator
        self._audit = audit

    async def create_reading(
        self,
        meter_id: UUID | str,
        reading_value: Decimal,
        reading_date: date,
        reading_type: ReadingType = ReadingType.ACTUAL,
        notes: str | None = None,
        distributed_from: MeterReading | None = None,
    ) -> MeterReading:
        """Validates and stores a new reading.

        ``distributed_from`` links a sub-meter reading to the bulk meter
        reading it was derived from.
        """
        meter = await self._meter_repo.get_required(meter_id)
        candidate = ReadingCandidate(Decimal(reading_value), reading_date, reading_type)

        try:
            async with in_transaction():
                await self._validator.validate(meter, candidate)
                previous = await self._reading_repo.get_preceding(meter.id, reading_date)
                reading = await self._reading_repo.create(
                    meter=meter,
                    reading_value=candidate.reading_value,
                    reading_date=reading_date,
                    reading_month=month_start(reading_date),
                    reading_type=reading_type,
                    notes=notes,
                    distributed_from=distributed_from,
                )
        except IntegrityError as exc:
            raise DuplicateReading(
                f"Duplicate reading detected for meter {meter.meter_number} "
                f"in {reading_date:%Y-%m}."
            ) from exc

        consumption = (
            calculations.calculate_consumption(reading.reading_value, previous.reading_value)
            if previous
            else Decimal("0")
        )
        await self._audit.log_event(
            ENTITY,
            reading.id,
            "created",
            {
                "meter_id": str(meter.id),
                "reading_value": str(reading.reading_value),
                "reading_date": reading_date.isoformat(),
                "previous_reading": str(previous.reading_value) if previous else None,
                "consumption_calculated": str(consumption),
            },
        )
        logger.info(
            "Recorded reading %s for meter %s on %s",
            reading.reading_value,
            meter.meter_number,
            reading_date,
        )
        return reading

    async def update_reading(
        self,
        reading_id: UUID | str,
        reading_value: Decimal | None = None,
        reading_date: date | None = None,
        reading_type: ReadingType | None = None,
        notes: str | None = None,
    ) -> MeterReading:
        """Changes an unbilled reading, re-running the validation rules."""
        reading = await self._reading_repo.get_required(reading_id)
        attempted = {
            key: str(value)
            for key, value in {
                "reading_value": reading_value,
                "reading_date": reading_date,
                "reading_type": reading_type.value if reading_type else None,
            }.items()
            if value is not None
        }
        await self._validator.ensure_mutable(reading, "update", attempted)

        old_values = {
            "reading_value": str(reading.reading_value),
            "reading_date": reading.reading_date.isoformat(),
            "reading_type": reading.reading_type.value,
        }
        meter = await self._meter_repo.get_required(reading.meter_id)
        candidate = ReadingCandidate(
            Decimal(reading_value) if reading_value is not None else reading.reading_value,
            reading_date or reading.reading_date,
            reading_type or reading.reading_type,
        )

        try:
            async with in_transaction():
                await self._validator.validate(
                    meter, candidate, exclude_reading_id=reading.id
                )
                reading.reading_value = candidate.reading_value
                reading.reading_date = candidate.reading_date
                reading.reading_month = month_start(candidate.reading_date)
                reading.reading_type = candidate.reading_type
                if notes is not None:
                    reading.notes = notes
                await reading.save()
        except IntegrityError as exc:
            raise DuplicateReading(
                f"Duplicate reading detected for meter {meter.meter_number} "
                f"in {candidate.reading_date:%Y-%m}."
            ) from exc

        await self._audit.log_event(
            ENTITY,
            reading.id,
            "updated",
            {
                "old_values": old_values,
                "new_values": {
                    "reading_value": str(reading.reading_value),
                    "reading_date": reading.reading_date.isoformat(),
                    "reading_type": reading.reading_type.value,
                },
            },
        )
        return reading

    async def delete_reading(self, reading_id: UUID | str) -> None:
        """Deletes the latest unbilled reading of a meter."""
        reading = await self._reading_repo.get_required(reading_id)
        await self._validator.ensure_mutable(reading, "delete")

        later = await self._reading_repo.get_following(reading.meter_id, reading.reading_date)
        if later is not None:
            await self._audit.log_event(
                ENTITY,
                reading.id,
                "delete_prevented",
                {"reason": "has_dependent_readings", "meter_id": str(reading.meter_id)},
            )
            raise DependentReadings(
                "Cannot delete reading - subsequent readings depend on it "
                "for consumption calculation."
            )

        snapshot = {
            "meter_id": str(reading.meter_id),
            "reading_value": str(reading.reading_value),
            "reading_date": reading.reading_date.isoformat(),
        }
        async with in_transaction():
            await reading.delete()
        await self._audit.log_event(ENTITY, reading_id, "deleted", snapshot)

    async def create_bulk_readings(
        self, rows: list[dict[str, Any]], context: dict[str, Any] | None = None
    ) -> BulkReadingResult:
        """Stores each row on its own; failures are collected, not raised.

        Each row needs ``meter_id``, ``reading_value`` and ``reading_date``
        and may carry ``reading_type`` and ``notes``.
        """
        result = BulkReadingResult()
        for index, row in enumerate(rows):
            try:
                reading = await self.create_reading(
                    meter_id=row["meter_id"],
                    reading_value=Decimal(str(row["reading_value"])),
                    reading_date=row["reading_date"],
                    reading_type=ReadingType(row.get("reading_type", ReadingType.ACTUAL)),
                    notes=row.get("notes"),
                )
            except (BillingCoreError, KeyError, ValueError, ArithmeticError) as exc:
                result.failed.append({"index": index, "data": row, "error": str(exc)})
                await self._audit.log_event(
                    ENTITY,
                    None,
                    "validation_failed",
                    {
                        "meter_id": str(row.get("meter_id")),
                        "error": str(exc),
                        "bulk_operation": True,
                    },
                )
                continue
            result.created.append(reading)

        await self._audit.log_event(
            ENTITY,
            None,
            "bulk_created",
            {
                **(context or {}),
                "total_attempted": len(rows),
                "total_created": len(result.created),
                "total_failed": len(result.failed),
            },
        )
        logger.info(
            "Bulk reading import: %d created, %d failed",
            len(result.created),
            len(result.failed),
        )
        return result

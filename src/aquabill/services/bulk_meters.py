"""Distribution of bulk meter consumption to sub-meters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from tortoise.transactions import in_transaction

from aquabill.core import calculations
from aquabill.core.audit import AuditSink
from aquabill.core.exceptions import (
    BulkMeterError,
    InvalidAllocation,
    ReadingAlreadyDistributed,
)
from aquabill.core.models import Meter, MeterReading, MeterStatus, MeterType, ReadingType
from aquabill.core.repositories.meter import MeterRepository
from aquabill.core.repositories.reading import ReadingRepository
from aquabill.services.batch import BatchRunner, BatchStats
from aquabill.services.billing import BillingOrchestrator
from aquabill.services.readings import MeterReadingService

logger = logging.getLogger(__name__)

ENTITY = "meter"
ZERO = Decimal("0")
FULL = Decimal("100")
TOLERANCE = Decimal("0.01")


@dataclass
class BulkMeterSetup:
    """Outcome of checking a bulk meter and its sub-meters."""

    total_allocation: Decimal
    sub_meter_count: int
    active_sub_meter_count: int
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class BulkMeterService:
    """
    Splits bulk meter readings between sub-meters and bills them.

    Each active sub-meter receives its ``allocation_percentage`` of the bulk
    consumption as a reading of its own, so the regular bill generation
    prices it under the sub-meter's account. The bulk meter itself is not
    billed while it has active sub-meters.
    """

    def __init__(
        self,
        meter_repo: MeterRepository,
        reading_repo: ReadingRepository,
        readings: MeterReadingService,
        billing: BillingOrchestrator,
        audit: AuditSink,
        require_full_allocation: bool = True,
    ):
        self._meter_repo = meter_repo
        self._reading_repo = reading_repo
        self._readings = readings
        self._billing = billing
        self._audit = audit
        self._require_full_allocation = require_full_allocation

    async def _bulk_meter(self, meter_id: UUID | str) -> Meter:
        meter = await self._meter_repo.get_required(meter_id)
        if meter.type != MeterType.BULK:
            raise BulkMeterError(f"Meter {meter.meter_number} is not a bulk meter.")
        return meter

    async def validate_setup(self, bulk_meter_id: UUID | str) -> BulkMeterSetup:
        """Reports what keeps a bulk meter from distributing its readings."""
        meter = await self._meter_repo.get_required(bulk_meter_id)
        sub_meters = await self._meter_repo.get_sub_meters(meter.id)
        active = [s for s in sub_meters if s.status == MeterStatus.ACTIVE]
        total = sum((s.allocation_percentage or ZERO for s in active), ZERO)
        setup = BulkMeterSetup(
            total_allocation=total,
            sub_meter_count=len(sub_meters),
            active_sub_meter_count=len(active),
        )

        if meter.type != MeterType.BULK:
            setup.errors.append("Meter is not configured as a bulk meter.")
        if not sub_meters:
            setup.errors.append("Bulk meter has no sub-meters.")
        if self._require_full_allocation and sub_meters and abs(total - FULL) > TOLERANCE:
            setup.errors.append(f"Sub-meter allocations total {total}%, must equal 100%.")
        inactive = len(sub_meters) - len(active)
        if inactive:
            setup.errors.append(f"{inactive} sub-meter(s) are not active.")
        for sub_meter in active:
            if (sub_meter.allocation_percentage or ZERO) <= ZERO:
                setup.errors.append(
                    f"Sub-meter {sub_meter.meter_number} has invalid allocation: "
                    f"{sub_meter.allocation_percentage or ZERO}%."
                )
        return setup

    async def adjust_allocations(
        self, bulk_meter_id: UUID | str, allocations: dict[str, Decimal]
    ) -> list[Meter]:
        """
        Sets the allocation percentages of sub-meters, keyed by meter id.

        Raises:
            InvalidAllocation: a percentage is out of range, or the total is
                not 100% while full allocation is required.
            BulkMeterError: a meter is not a sub-meter of the bulk meter.
        """
        bulk = await self._bulk_meter(bulk_meter_id)
        percentages = {key: Decimal(str(value)) for key, value in allocations.items()}
        total = sum(percentages.values(), ZERO)
        if self._require_full_allocation and abs(total - FULL) > TOLERANCE:
            raise InvalidAllocation(f"Allocations total {total}%, must equal 100%.")
        for percentage in percentages.values():
            if percentage < ZERO or percentage > FULL:
                raise InvalidAllocation(
                    f"Allocation percentage must be between 0 and 100, got {percentage}."
                )

        updated = []
        async with in_transaction():
            for meter_id, percentage in percentages.items():
                sub_meter = await self._meter_repo.get_required(meter_id)
                if sub_meter.parent_meter_id != bulk.id:
                    raise BulkMeterError(
                        f"Meter {sub_meter.meter_number} is not a sub-meter of "
                        f"bulk meter {bulk.meter_number}."
                    )
                old = sub_meter.allocation_percentage
                sub_meter.allocation_percentage = percentage
                await sub_meter.save(update_fields=["allocation_percentage", "updated_at"])
                updated.append(sub_meter)
                await self._audit.log_event(
                    ENTITY,
                    sub_meter.id,
                    "allocation_adjusted",
                    {
                        "bulk_meter_id": str(bulk.id),
                        "old_percentage": str(old) if old is not None else None,
                        "new_percentage": str(percentage),
                    },
                )

        logger.info(
            "Sub-meter allocations of bulk meter %s adjusted (total %s%%)",
            bulk.meter_number,
            total,
        )
        return updated

    async def distribute_reading(self, reading_id: UUID | str) -> list[MeterReading]:
        """
        Records a sub-meter reading for each share of a bulk meter reading.

        The bulk consumption is the difference to the preceding bulk reading.
        Every share is added to the sub-meter's preceding reading and goes
        through the regular reading validation. All sub-meter readings are
        stored in one transaction, after which the bulk reading is marked
        as distributed and can no longer change.
        """
        reading = await self._reading_repo.get_required(reading_id)
        bulk = await self._bulk_meter(reading.meter_id)
        if reading.is_distributed:
            raise ReadingAlreadyDistributed(
                f"Reading {reading.id} of bulk meter {bulk.meter_number} "
                "has already been distributed."
            )

        sub_meters = await self._meter_repo.get_sub_meters(bulk.id, active_only=True)
        if not sub_meters:
            raise BulkMeterError(f"Bulk meter {bulk.meter_number} has no active sub-meters.")
        percentages = [s.allocation_percentage or ZERO for s in sub_meters]
        total = sum(percentages, ZERO)
        if self._require_full_allocation and abs(total - FULL) > TOLERANCE:
            raise InvalidAllocation(
                f"Sub-meter allocations of bulk meter {bulk.meter_number} "
                f"total {total}%, must equal 100%."
            )

        previous = await self._reading_repo.get_preceding(bulk.id, reading.reading_date)
        if previous is None:
            raise BulkMeterError(
                f"No previous reading of bulk meter {bulk.meter_number} "
                "to calculate its consumption from."
            )
        consumption = reading.reading_value - previous.reading_value
        if consumption < ZERO:
            raise BulkMeterError(
                f"Bulk meter reading {reading.reading_value} is less than "
                f"the previous reading {previous.reading_value}."
            )
        shares = calculations.allocate_consumption(consumption, percentages)

        distributed = []
        async with in_transaction():
            for sub_meter, percentage, share in zip(sub_meters, percentages, shares):
                preceding = await self._reading_repo.get_preceding(
                    sub_meter.id, reading.reading_date
                )
                base = preceding.reading_value if preceding else ZERO
                sub_reading = await self._readings.create_reading(
                    sub_meter.id,
                    base + share,
                    reading.reading_date,
                    reading_type=ReadingType.ESTIMATED,
                    notes=(
                        f"Distributed from bulk meter {bulk.meter_number}. "
                        f"Allocation: {percentage}%"
                    ),
                    distributed_from=reading,
                )
                distributed.append(sub_reading)
                await self._audit.log_event(
                    ENTITY,
                    sub_meter.id,
                    "reading_distributed",
                    {
                        "bulk_meter_id": str(bulk.id),
                        "bulk_reading_id": str(reading.id),
                        "allocated_consumption": str(share),
                        "allocation_percentage": str(percentage),
                    },
                )

            reading.is_distributed = True
            await reading.save(update_fields=["is_distributed", "updated_at"])

        logger.info(
            "Distributed %s units of bulk meter %s to %d sub-meters",
            consumption,
            bulk.meter_number,
            len(distributed),
        )
        return distributed

    async def generate_bills(
        self, bulk_meter_id: UUID | str, period: str, runner: BatchRunner
    ) -> BatchStats:
        """Bills every account owning an active sub-meter of the bulk meter."""
        bulk = await self._bulk_meter(bulk_meter_id)
        sub_meters = await self._meter_repo.get_sub_meters(bulk.id, active_only=True)
        account_ids = list(dict.fromkeys(s.account_id for s in sub_meters))
        if not account_ids:
            raise BulkMeterError(f"Bulk meter {bulk.meter_number} has no active sub-meters.")
        return await self._billing.generate_for_accounts(
            period, runner, limit=len(account_ids), account_ids=account_ids
        )

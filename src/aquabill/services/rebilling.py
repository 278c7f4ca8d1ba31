"""Adjustment bills for erroneous regular bills."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from tortoise.transactions import in_transaction

from aquabill.core import calculations
from aquabill.core.audit import AuditSink
from aquabill.core.clock import Clock
from aquabill.core.exceptions import InvalidAmount, NotFound
from aquabill.core.models import Billing, BillingDetail, BillingStatus, BillType
from aquabill.core.repositories.billing import BillingRepository
from aquabill.services.balance import BalanceResolver
from aquabill.services.charges import ChargeCalculator

logger = logging.getLogger(__name__)

ENTITY = "billing"
ZERO = Decimal("0")


@dataclass(frozen=True)
class DetailOverride:
    """Corrected values for one line of the original bill."""

    previous_reading_value: Decimal | None = None
    current_reading_value: Decimal | None = None
    rate: Decimal | None = None
    amount: Decimal | None = None

    @property
    def changes_consumption(self) -> bool:
        return (
            self.previous_reading_value is not None
            or self.current_reading_value is not None
        )


@dataclass(frozen=True)
class RebillAdjustments:
    """Corrections to apply when recomputing a bill.

    ``details`` is keyed by the original billing detail id. The global
    corrections are applied to the recomputed charges in the order fixed
    amount, percentage, discount.
    """

    details: dict[str, DetailOverride] = field(default_factory=dict)
    fixed_amount: Decimal | None = None
    percentage: Decimal | None = None
    discount: Decimal | None = None

    def for_detail(self, detail_id: UUID | str) -> DetailOverride:
        return self.details.get(str(detail_id), DetailOverride())


@dataclass(frozen=True)
class PreviewLine:
    detail_id: str
    meter_id: str
    previous_reading_value: Decimal
    current_reading_value: Decimal
    units: Decimal
    rate: Decimal
    original_amount: Decimal
    adjusted_amount: Decimal

    @property
    def difference(self) -> Decimal:
        return self.adjusted_amount - self.original_amount


@dataclass(frozen=True)
class RebillPreview:
    """The outcome of a rebill computed without persisting anything."""

    original_billing_id: str
    original_charges: Decimal
    adjusted_charges: Decimal
    lines: list[PreviewLine] = field(default_factory=list)

    @property
    def difference(self) -> Decimal:
        return self.adjusted_charges - self.original_charges


class AdjustmentPolicy(Protocol):
    async def compute(
        self,
        original: Billing,
        details: list[BillingDetail],
        adjustments: RebillAdjustments,
    ) -> RebillPreview: ...


class RecomputeDifferencePolicy:
    """
    Recomputes the original charges with corrections and bills the difference.

    A line with a corrected amount takes it as is. Corrected readings are
    priced again with the tariff of the period, or at the corrected rate
    when one is given. The difference may be negative, in which case the
    adjustment bill is a credit.
    """

    def __init__(self, charge_calculator: ChargeCalculator):
        self._charge_calculator = charge_calculator

    async def _line(
        self, original: Billing, detail: BillingDetail, override: DetailOverride
    ) -> PreviewLine:
        units = detail.units_used
        amount = detail.amount
        previous = detail.previous_reading_value
        current = detail.current_reading_value
        rate = override.rate if override.rate is not None else detail.rate
        if override.amount is not None:
            amount = calculations.quantize_money(override.amount)
        elif override.changes_consumption or override.rate is not None:
            if override.previous_reading_value is not None:
                previous = override.previous_reading_value
            if override.current_reading_value is not None:
                current = override.current_reading_value
            units = calculations.calculate_consumption(current, previous)
            if override.rate is not None:
                amount = calculations.calculate_cost(units, override.rate)
            else:
                await detail.fetch_related("meter")
                charge = await self._charge_calculator.calculate(
                    detail.meter, original.billing_period, units
                )
                amount = charge.subtotal
        return PreviewLine(
            detail_id=str(detail.id),
            meter_id=str(detail.meter_id),
            previous_reading_value=previous,
            current_reading_value=current,
            units=units,
            rate=rate,
            original_amount=detail.amount,
            adjusted_amount=amount,
        )

    async def compute(
        self,
        original: Billing,
        details: list[BillingDetail],
        adjustments: RebillAdjustments,
    ) -> RebillPreview:
        lines = [
            await self._line(original, detail, adjustments.for_detail(detail.id))
            for detail in details
        ]
        original_charges = sum((d.amount for d in details), ZERO)
        adjusted = sum((line.adjusted_amount for line in lines), ZERO)

        if adjustments.fixed_amount is not None:
            adjusted += adjustments.fixed_amount
        if adjustments.percentage is not None:
            adjusted += adjusted * adjustments.percentage / Decimal("100")
        if adjustments.discount is not None:
            adjusted -= adjustments.discount

        return RebillPreview(
            original_billing_id=str(original.id),
            original_charges=original_charges,
            adjusted_charges=calculations.quantize_money(max(adjusted, ZERO)),
            lines=lines,
        )


class FixedAmountPolicy:
    """Bills a fixed correction regardless of the original details."""

    def __init__(self, amount: Decimal):
        self.amount = amount

    async def compute(
        self,
        original: Billing,
        details: list[BillingDetail],
        adjustments: RebillAdjustments,
    ) -> RebillPreview:
        original_charges = sum((d.amount for d in details), ZERO)
        return RebillPreview(
            original_billing_id=str(original.id),
            original_charges=original_charges,
            adjusted_charges=original_charges + calculations.quantize_money(self.amount),
        )


class RebillingService:
    """Issues adjustment bills referencing an original bill.

    The original bill is left untouched so its history stays intact. A
    positive difference is a new debt of its own; a negative one is a credit
    that lowers the derived balance of the original.
    """

    def __init__(
        self,
        billing_repo: BillingRepository,
        balance_resolver: BalanceResolver,
        default_policy: AdjustmentPolicy,
        audit: AuditSink,
        clock: Clock,
        due_days: int = 14,
    ):
        self._billing_repo = billing_repo
        self._balance_resolver = balance_resolver
        self._default_policy = default_policy
        self._audit = audit
        self._clock = clock
        self._due_days = due_days

    async def _original(self, account_id: UUID | str, period: str) -> Billing:
        original = await self._billing_repo.get_live_for_period(account_id, period)
        if original is None:
            raise NotFound(f"No bill for account {account_id} in {period} to adjust.")
        return original

    async def _refresh_credited(self, original: Billing, now: datetime) -> None:
        """Re-derives the bills a credit adjustment lowers.

        The credit settles the original first; once the original's balance
        has been carried forward, it follows that balance onto the later bill.
        """
        billing = original
        while True:
            await self._balance_resolver.refresh_status(billing, now)
            if billing.carried_forward_to_id is None:
                return
            billing = await self._billing_repo.get_required(billing.carried_forward_to_id)

    async def preview(
        self,
        account_id: UUID | str,
        period: str,
        adjustments: RebillAdjustments | None = None,
        policy: AdjustmentPolicy | None = None,
    ) -> RebillPreview:
        original = await self._original(account_id, period)
        details = await self._billing_repo.get_details(original.id)
        return await (policy or self._default_policy).compute(
            original, details, adjustments or RebillAdjustments()
        )

    async def rebill(
        self,
        account_id: UUID | str,
        period: str,
        adjustments: RebillAdjustments | None = None,
        reason: str = "",
        policy: AdjustmentPolicy | None = None,
    ) -> Billing:
        """
        Creates an adjustment bill for the difference the policy computes.

        Raises:
            NotFound: the account has no live bill for ``period``.
            InvalidAmount: the correction does not change the charges.
        """
        now = self._clock.now()
        async with in_transaction():
            original = await self._original(account_id, period)
            details = await self._billing_repo.get_details(original.id)
            preview = await (policy or self._default_policy).compute(
                original, details, adjustments or RebillAdjustments()
            )
            difference = preview.difference
            if difference == ZERO:
                raise InvalidAmount(
                    f"Adjustment for bill {original.id} does not change its charges."
                )

            adjustment = await self._billing_repo.create(
                account_id=original.account_id,
                billing_period=original.billing_period,
                period_lock=None,
                bill_type=BillType.ADJUSTMENT,
                opening_balance=ZERO,
                amount=difference,
                total_amount=difference,
                status=BillingStatus.PENDING,
                issued_at=now,
                due_date=self._clock.today() + timedelta(days=self._due_days),
                original_billing=original,
                adjustment_reason=reason,
            )
            for line in preview.lines:
                if line.difference == ZERO:
                    continue
                await self._billing_repo.create_detail(
                    billing=adjustment,
                    meter_id=line.meter_id,
                    previous_reading_value=line.previous_reading_value,
                    current_reading_value=line.current_reading_value,
                    units_used=line.units,
                    rate=line.rate,
                    amount=line.difference,
                    description=f"Adjustment of detail {line.detail_id}",
                )
            # A credit (negative total) has nothing to collect.
            await self._balance_resolver.refresh_status(adjustment, now)
            if difference < ZERO:
                await self._refresh_credited(original, now)

        await self._audit.log_event(
            ENTITY,
            adjustment.id,
            "rebilled",
            {
                "original_billing_id": str(original.id),
                "original_charges": str(preview.original_charges),
                "adjusted_charges": str(preview.adjusted_charges),
                "difference": str(difference),
                "reason": reason,
            },
        )
        logger.info(
            "Adjustment bill %s issued for bill %s: %s",
            adjustment.id,
            original.id,
            difference,
        )
        return adjustment

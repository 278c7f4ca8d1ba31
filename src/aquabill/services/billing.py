"""Service responsible for generating bills."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from aquabill.core import calculations
from aquabill.core.audit import AuditSink
from aquabill.core.clock import Clock
from aquabill.core.dates import parse_period, period_bounds
from aquabill.core.exceptions import (
    BillingCoreError,
    BillNotModifiable,
    DuplicateBilling,
    InactiveAccount,
    MissingReading,
    NoActiveMeters,
)
from aquabill.core.models import (
    Account,
    Billing,
    BillingStatus,
    BillType,
    Meter,
    MeterReading,
    ProcessingStatus,
)
from aquabill.core.repositories.account import AccountRepository
from aquabill.core.repositories.billing import BillingRepository
from aquabill.core.repositories.meter import MeterRepository
from aquabill.core.repositories.payment import PaymentRepository
from aquabill.core.repositories.reading import ReadingRepository
from aquabill.services.balance import BalanceResolver
from aquabill.services.batch import BatchRunner, BatchStats, ItemResult
from aquabill.services.charges import ChargeCalculator, ChargeResult

logger = logging.getLogger(__name__)

ENTITY = "billing"


@dataclass(frozen=True)
class MeterBillingResult:
    """Represents the calculation result for a single meter."""

    meter: Meter
    previous_reading: MeterReading
    current_reading: MeterReading
    units: Decimal
    charge: ChargeResult

    @property
    def rate(self) -> Decimal:
        if self.units > 0:
            return self.charge.average_rate
        if self.charge.breakdown:
            return self.charge.breakdown[0].rate
        return Decimal("0")


class BillingOrchestrator:
    """Orchestrates bill generation, voiding and carry-forward."""

    def __init__(
        self,
        account_repo: AccountRepository,
        meter_repo: MeterRepository,
        reading_repo: ReadingRepository,
        billing_repo: BillingRepository,
        payment_repo: PaymentRepository,
        charge_calculator: ChargeCalculator,
        balance_resolver: BalanceResolver,
        audit: AuditSink,
        clock: Clock,
        due_days: int = 14,
    ):
        self._account_repo = account_repo
        self._meter_repo = meter_repo
        self._reading_repo = reading_repo
        self._billing_repo = billing_repo
        self._payment_repo = payment_repo
        self._charge_calculator = charge_calculator
        self._balance_resolver = balance_resolver
        self._audit = audit
        self._clock = clock
        self._due_days = due_days

    async def generate_monthly_bill(self, account_id: UUID | str, period: str) -> Billing:
        """
        Generates the bill of an account for a billing period.

        Every active meter is priced from the readings bounding the period,
        the unresolved balance of the previous bill is carried forward, and
        the bill with its details is stored in one transaction.

        Raises:
            InactiveAccount, NoActiveMeters: the account cannot be billed.
            DuplicateBilling: a live bill already exists for the period.
            MissingReading: an active meter has no reading in the period.
        """
        try:
            billing = await self._generate(account_id, period)
        except BillingCoreError as exc:
            await self._audit.log_event(
                ENTITY,
                None,
                "generation_failed",
                {
                    "account_id": str(account_id),
                    "billing_period": period,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise

        await self._audit.log_event(
            ENTITY,
            billing.id,
            "generated",
            {
                "account_id": str(account_id),
                "billing_period": period,
                "opening_balance": str(billing.opening_balance),
                "total_amount": str(billing.total_amount),
            },
        )
        logger.info(
            "Generated bill %s for account %s (%s): %s",
            billing.id,
            account_id,
            period,
            billing.total_amount,
        )
        return billing

    async def _generate(self, account_id: UUID | str, period: str) -> Billing:
        parse_period(period)
        account = await self._account_repo.get_required(account_id)
        if not account.is_active:
            raise InactiveAccount(
                f"Account {account.account_number} is {account.status.value} "
                "and cannot be billed."
            )

        meters = await self._meter_repo.get_billable_for_account(account.id)
        if not meters:
            raise NoActiveMeters(
                f"Account {account.account_number} has no active meters to bill."
            )

        if await self._billing_repo.get_live_for_period(account.id, period):
            raise DuplicateBilling(
                f"Duplicate billing: account {account.account_number} "
                f"already has a bill for {period}."
            )

        try:
            async with in_transaction():
                results = [await self._bill_meter(meter, period) for meter in meters]
                return await self._store_bill(account, period, results)
        except IntegrityError as exc:
            raise DuplicateBilling(
                f"Duplicate billing: account {account.account_number} "
                f"already has a bill for {period}."
            ) from exc

    async def _bill_meter(self, meter: Meter, period: str) -> MeterBillingResult:
        """Calculates consumption and charges for a single meter."""
        start, end = period_bounds(period)
        in_period = await self._reading_repo.get_for_period(meter.id, start, end)
        if not in_period:
            raise MissingReading(
                f"No reading for meter {meter.meter_number} in {period}."
            )
        current = in_period[-1]

        previous = await self._reading_repo.get_preceding(meter.id, start)
        if previous is None:
            # First bill for this meter: its first reading is the baseline.
            previous = in_period[0]

        units = calculations.calculate_consumption(
            current_reading=current.reading_value,
            previous_reading=previous.reading_value,
        )
        charge = await self._charge_calculator.calculate(meter, period, units)
        return MeterBillingResult(
            meter=meter,
            previous_reading=previous,
            current_reading=current,
            units=units,
            charge=charge,
        )

    async def _store_bill(
        self, account: Account, period: str, results: list[MeterBillingResult]
    ) -> Billing:
        now = self._clock.now()
        previous_bill = await self._billing_repo.get_previous_regular(account.id, period)
        opening_balance = Decimal("0")
        if previous_bill is not None:
            # Negative when the previous bill was credited beyond its total.
            opening_balance = (
                await self._balance_resolver.resolve(previous_bill)
            ).net_balance

        amount = sum((result.charge.subtotal for result in results), Decimal("0"))
        billing = await self._billing_repo.create(
            account=account,
            billing_period=period,
            period_lock=period,
            bill_type=BillType.REGULAR,
            opening_balance=opening_balance,
            amount=amount,
            total_amount=amount + opening_balance,
            status=BillingStatus.PENDING,
            issued_at=now,
            due_date=self._clock.today() + timedelta(days=self._due_days),
        )

        for result in results:
            await self._billing_repo.create_detail(
                billing=billing,
                meter=result.meter,
                previous_reading=result.previous_reading,
                current_reading=result.current_reading,
                previous_reading_value=result.previous_reading.reading_value,
                current_reading_value=result.current_reading.reading_value,
                units_used=result.units,
                rate=result.rate,
                amount=result.charge.subtotal,
                breakdown=[tier.as_dict() for tier in result.charge.breakdown],
                description=f"Water consumption, meter {result.meter.meter_number}",
            )
            result.current_reading.processing_status = ProcessingStatus.PROCESSED
            await result.current_reading.save(
                update_fields=["processing_status", "updated_at"]
            )

        if previous_bill is not None and opening_balance != 0:
            previous_bill.carried_forward_to = billing
            previous_bill.carried_forward_amount = (
                previous_bill.carried_forward_amount or Decimal("0")
            ) + opening_balance
            await previous_bill.save(
                update_fields=[
                    "carried_forward_to_id",
                    "carried_forward_amount",
                    "updated_at",
                ]
            )
            await self._balance_resolver.refresh_status(previous_bill, now)
            await self._balance_resolver.refresh_status(billing, now)
        return billing

    async def void_bill(self, billing_id: UUID | str, reason: str) -> Billing:
        """
        Voids an unpaid bill without payments against it.

        The period becomes free for a new bill, and any balance this bill
        had taken over from an earlier one is handed back to it.
        """
        now = self._clock.now()
        async with in_transaction():
            billing = await self._billing_repo.get_for_update(billing_id)
            if billing is None:
                raise BillNotModifiable(f"Bill {billing_id} not found.")
            if not billing.can_be_modified():
                raise BillNotModifiable(
                    f"Bill {billing.id} is {billing.status.value} and cannot be voided."
                )
            if await self._payment_repo.paid_toward_billing(billing.id) > 0:
                raise BillNotModifiable(
                    f"Bill {billing.id} has payments allocated; reverse them first."
                )

            billing.status = BillingStatus.VOIDED
            billing.period_lock = None
            billing.voided_at = now
            billing.void_reason = reason
            await billing.save()

            for earlier in await self._billing_repo.get_carried_into(billing.id):
                earlier.carried_forward_to = None
                earlier.carried_forward_amount = Decimal("0")
                await earlier.save(
                    update_fields=[
                        "carried_forward_to_id",
                        "carried_forward_amount",
                        "updated_at",
                    ]
                )
                await self._balance_resolver.refresh_status(earlier, now)

        await self._audit.log_event(ENTITY, billing.id, "voided", {"reason": reason})
        logger.info("Voided bill %s: %s", billing.id, reason)
        return billing

    async def void_and_regenerate(self, billing_id: UUID | str, reason: str) -> Billing:
        """Voids a bill and generates a fresh one for the same account and period."""
        billing = await self._billing_repo.get_required(billing_id)
        async with in_transaction():
            await self.void_bill(billing.id, reason)
            replacement = await self.generate_monthly_bill(
                billing.account_id, billing.billing_period
            )
        logger.info("Bill %s replaced by %s", billing.id, replacement.id)
        return replacement

    async def generate_for_accounts(
        self,
        period: str,
        runner: BatchRunner,
        limit: int,
        offset: int = 0,
        account_ids: Sequence[UUID | str] | None = None,
    ) -> BatchStats:
        """
        Generates bills for one page of billable accounts.

        Accounts already billed for the period are counted as skipped, so a
        page can be re-run safely. ``has_more`` is set when the page was
        full.
        """
        accounts = await self._account_repo.list_billable(
            limit=limit, offset=offset, account_ids=account_ids
        )

        async def _bill(account: Account) -> ItemResult:
            billing = await self.generate_monthly_bill(account.id, period)
            return ItemResult.ok(account.account_number, billing.id)

        stats = await runner.run(accounts, _bill, key=lambda a: a.account_number)
        stats.has_more = len(accounts) == limit
        await self._audit.log_event(
            ENTITY,
            None,
            "bulk_generation_completed",
            {"billing_period": period, "offset": offset, **stats.as_dict()},
        )
        logger.info("Bulk bill generation for %s: %s", period, stats.as_dict())
        return stats

    async def completeness_check(self, account_id: UUID | str, period: str) -> list[str]:
        """Returns a human-readable list of data missing to bill an account.

        Checks that the account is active and that every active meter has
        a reading in the period.
        """
        account = await self._account_repo.get(account_id)
        if not account:
            return [f"Account {account_id} not found."]

        issues: list[str] = []
        if not account.is_active:
            issues.append(f"Account is {account.status.value}.")

        meters = await self._meter_repo.get_billable_for_account(account.id)
        if not meters:
            issues.append("No active meters to bill.")

        start, end = period_bounds(period)
        for meter in meters:
            if not await self._reading_repo.get_for_period(meter.id, start, end):
                issues.append(f"Meter {meter.meter_number}: no reading for {period}.")
        return issues

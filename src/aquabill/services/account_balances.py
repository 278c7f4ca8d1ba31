"""Account-level views over the derived bill balances."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from aquabill.core.clock import Clock
from aquabill.core.exceptions import InvalidAmount
from aquabill.core.models import Billing, BillType
from aquabill.core.repositories.account import AccountRepository
from aquabill.core.repositories.billing import BillingRepository
from aquabill.core.repositories.payment import PaymentRepository
from aquabill.services.balance import BalanceResolver

ZERO = Decimal("0")

# Upper bound in days overdue of each aging bucket; the last is open ended.
AGING_BUCKETS = (("current", 30), ("30_days", 60), ("60_days", 90), ("90_plus", None))


@dataclass(frozen=True)
class AccountBalance:
    account_id: str
    total_billed: Decimal
    total_paid: Decimal
    total_credited: Decimal
    outstanding_balance: Decimal
    credit_balance: Decimal
    overdue_amount: Decimal
    overdue_bill_count: int
    outstanding_bill_count: int
    oldest_due_date: date | None
    oldest_days_overdue: int

    @property
    def net_balance(self) -> Decimal:
        """What the account owes once its unused credit is set off."""
        return self.outstanding_balance - self.credit_balance

    @property
    def has_overdue_bills(self) -> bool:
        return self.overdue_bill_count > 0


@dataclass(frozen=True)
class ProjectedAllocation:
    billing_id: str
    billing_period: str
    current_balance: Decimal
    allocated_amount: Decimal

    @property
    def new_balance(self) -> Decimal:
        return self.current_balance - self.allocated_amount

    @property
    def will_be_paid(self) -> bool:
        return self.new_balance <= ZERO


@dataclass(frozen=True)
class PaymentProjection:
    """How a payment would be spread if it were reconciled now."""

    payment_amount: Decimal
    outstanding_before: Decimal
    allocations: list[ProjectedAllocation] = field(default_factory=list)

    @property
    def allocated_amount(self) -> Decimal:
        return sum((a.allocated_amount for a in self.allocations), ZERO)

    @property
    def remaining_amount(self) -> Decimal:
        return self.payment_amount - self.allocated_amount

    @property
    def outstanding_after(self) -> Decimal:
        return self.outstanding_before - self.allocated_amount

    @property
    def bills_to_be_paid(self) -> int:
        return sum(1 for a in self.allocations if a.will_be_paid)


def days_overdue(billing: Billing, today: date) -> int:
    if billing.due_date >= today:
        return 0
    return (today - billing.due_date).days


class AccountBalanceService:
    """Summaries of what an account owes, built from per-bill balances.

    Nothing is cached: every view resolves the balances of the account's
    bills again when it is asked for.
    """

    def __init__(
        self,
        account_repo: AccountRepository,
        billing_repo: BillingRepository,
        payment_repo: PaymentRepository,
        balance_resolver: BalanceResolver,
        clock: Clock,
    ):
        self._account_repo = account_repo
        self._billing_repo = billing_repo
        self._payment_repo = payment_repo
        self._balance_resolver = balance_resolver
        self._clock = clock

    async def _open_with_balances(
        self, account_id: UUID | str
    ) -> list[tuple[Billing, Decimal]]:
        bills = await self._billing_repo.get_open_for_account(account_id)
        return [(bill, await self._balance_resolver.balance(bill)) for bill in bills]

    async def account_balance(
        self, account_id: UUID | str, today: date | None = None
    ) -> AccountBalance:
        """
        Totals over the account's open bills, plus the credit it holds.

        The credit balance is payment money not allocated to any bill and
        credit left on settled bills that has not been carried forward yet.
        """
        account = await self._account_repo.get_required(account_id)
        today = today or self._clock.today()

        total_billed = total_paid = total_credited = outstanding = overdue = ZERO
        overdue_count = 0
        oldest: Billing | None = None
        open_bills = await self._billing_repo.get_open_for_account(account.id)
        for bill in open_bills:
            snapshot = await self._balance_resolver.resolve(bill)
            total_billed += snapshot.total_amount
            total_paid += snapshot.paid_amount
            total_credited += snapshot.credited_amount + snapshot.adjusted_amount
            outstanding += snapshot.balance
            if days_overdue(bill, today):
                overdue += snapshot.balance
                overdue_count += 1
            if oldest is None or bill.due_date < oldest.due_date:
                oldest = bill

        credit = await self._payment_repo.unallocated_for_account(account.id)
        for bill in await self._billing_repo.get_for_account(account.id):
            if bill.bill_type == BillType.REGULAR and bill.carried_forward_to_id is None:
                credit += (await self._balance_resolver.resolve(bill)).excess_credit

        return AccountBalance(
            account_id=str(account.id),
            total_billed=total_billed,
            total_paid=total_paid,
            total_credited=total_credited,
            outstanding_balance=outstanding,
            credit_balance=credit,
            overdue_amount=overdue,
            overdue_bill_count=overdue_count,
            outstanding_bill_count=len(open_bills),
            oldest_due_date=oldest.due_date if oldest else None,
            oldest_days_overdue=days_overdue(oldest, today) if oldest else 0,
        )

    async def outstanding_summary(self, account_id: UUID | str) -> dict[str, Any]:
        """Open bills grouped by status and by billing period."""
        rows = await self._open_with_balances(account_id)
        by_status: dict[str, dict[str, Any]] = defaultdict(
            lambda: {"count": 0, "total_amount": ZERO, "balance": ZERO}
        )
        by_period: dict[str, dict[str, Any]] = defaultdict(
            lambda: {"count": 0, "total_amount": ZERO, "balance": ZERO}
        )
        for bill, balance in rows:
            for group in (by_status[bill.status.value], by_period[bill.billing_period]):
                group["count"] += 1
                group["total_amount"] += bill.total_amount
                group["balance"] += balance

        due_dates = [bill.due_date for bill, _ in rows]
        return {
            "total_count": len(rows),
            "total_amount": sum((bill.total_amount for bill, _ in rows), ZERO),
            "total_balance": sum((balance for _, balance in rows), ZERO),
            "by_status": dict(by_status),
            "by_period": dict(sorted(by_period.items())),
            "oldest_due_date": min(due_dates) if due_dates else None,
            "newest_due_date": max(due_dates) if due_dates else None,
        }

    async def project_payment_impact(
        self, account_id: UUID | str, amount: Decimal
    ) -> PaymentProjection:
        """Simulates oldest-first allocation of ``amount`` without storing anything."""
        if amount <= ZERO:
            raise InvalidAmount(f"Payment amount must be positive, got {amount}.")
        rows = await self._open_with_balances(account_id)
        remaining = amount
        allocations = []
        for bill, balance in rows:
            if remaining <= ZERO:
                break
            share = min(remaining, balance)
            if share <= ZERO:
                continue
            allocations.append(
                ProjectedAllocation(
                    billing_id=str(bill.id),
                    billing_period=bill.billing_period,
                    current_balance=balance,
                    allocated_amount=share,
                )
            )
            remaining -= share
        return PaymentProjection(
            payment_amount=amount,
            outstanding_before=sum((balance for _, balance in rows), ZERO),
            allocations=allocations,
        )

    async def carry_forward_details(self, account_id: UUID | str) -> dict[str, Any]:
        """Balances moved from one bill onto the next.

        A positive amount is debt taken over by the later bill; a negative one
        is credit.
        """
        rows = []
        for bill in await self._billing_repo.get_for_account(account_id):
            if bill.carried_forward_to_id is None:
                continue
            target = await self._billing_repo.get_required(bill.carried_forward_to_id)
            rows.append(
                {
                    "from_billing_id": str(bill.id),
                    "from_period": bill.billing_period,
                    "to_billing_id": str(target.id),
                    "to_period": target.billing_period,
                    "amount": bill.carried_forward_amount,
                }
            )
        debits = sum((r["amount"] for r in rows if r["amount"] > ZERO), ZERO)
        credits = -sum((r["amount"] for r in rows if r["amount"] < ZERO), ZERO)
        return {
            "carried": rows,
            "total_debits": debits,
            "total_credits": credits,
            "net_carry_forward": debits - credits,
        }

    async def aging_report(
        self, account_id: UUID | str, today: date | None = None
    ) -> dict[str, dict[str, Any]]:
        """Open balances bucketed by days past the due date."""
        today = today or self._clock.today()
        report = {name: {"count": 0, "amount": ZERO} for name, _ in AGING_BUCKETS}
        for bill, balance in await self._open_with_balances(account_id):
            late = days_overdue(bill, today)
            for name, limit in AGING_BUCKETS:
                if limit is None or late <= limit:
                    report[name]["count"] += 1
                    report[name]["amount"] += balance
                    break
        return report

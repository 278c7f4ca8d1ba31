"""Derived balance and status of bills."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from aquabill.core import calculations
from aquabill.core.models import Billing, BillingStatus, BillType
from aquabill.core.repositories.billing import BillingRepository
from aquabill.core.repositories.credit_note import CreditNoteRepository
from aquabill.core.repositories.payment import PaymentRepository


@dataclass(frozen=True)
class BillBalance:
    """Snapshot of the amounts that settle a bill.

    ``adjusted_amount`` is the credit from downward adjustment bills, either
    issued for this bill or passed on by a bill carried into it.
    ``excess_credit`` is what those settlements exceed the bill by.
    """

    total_amount: Decimal
    paid_amount: Decimal
    credited_amount: Decimal
    adjusted_amount: Decimal
    carried_forward: Decimal
    balance: Decimal
    excess_credit: Decimal = Decimal("0")

    @property
    def net_balance(self) -> Decimal:
        """Signed amount still owed; negative when the bill is over-credited."""
        return self.balance - self.excess_credit


class BalanceResolver:
    """Computes balances from allocations and credit notes on every read.

    Nothing here writes a balance to storage; mutating services call
    :meth:`refresh_status` to persist the status that follows from it.
    """

    def __init__(
        self,
        payment_repo: PaymentRepository,
        credit_note_repo: CreditNoteRepository,
        billing_repo: BillingRepository,
    ):
        self._payment_repo = payment_repo
        self._credit_note_repo = credit_note_repo
        self._billing_repo = billing_repo

    async def resolve(self, billing: Billing) -> BillBalance:
        paid = await self._payment_repo.paid_toward_billing(billing.id)
        credited = await self._credit_note_repo.applied_toward_billing(billing.id)
        adjusted = await self._billing_repo.credit_adjustments_toward(billing.id)
        # Credit a carried bill could not absorb moves on with its balance.
        for earlier in await self._billing_repo.get_carried_into(billing.id):
            adjusted += (await self.resolve(earlier)).excess_credit
        carried = billing.carried_forward_amount or Decimal("0")

        credits = [credited, adjusted]
        excess = Decimal("0")
        if billing.bill_type == BillType.REGULAR:
            excess = calculations.derive_excess_credit(
                billing.total_amount, [paid], credits, carried
            )
        return BillBalance(
            total_amount=billing.total_amount,
            paid_amount=paid,
            credited_amount=credited,
            adjusted_amount=adjusted,
            carried_forward=carried,
            balance=calculations.derive_balance(
                billing.total_amount, [paid], credits, carried
            ),
            excess_credit=excess,
        )

    async def balance(self, billing: Billing) -> Decimal:
        return (await self.resolve(billing)).balance

    async def derive_status(self, billing: Billing) -> BillingStatus:
        snapshot = await self.resolve(billing)
        overdue = (
            billing.status == BillingStatus.OVERDUE
            or billing.late_fee_applied_at is not None
        )
        return calculations.derive_status(
            billing.status,
            snapshot.total_amount,
            snapshot.paid_amount,
            snapshot.credited_amount + snapshot.adjusted_amount,
            snapshot.carried_forward,
            overdue=overdue,
        )

    async def refresh_status(self, billing: Billing, now: datetime) -> BillingStatus:
        """Re-derives and persists a bill's status and ``paid_at``."""
        status = await self.derive_status(billing)
        paid_at = billing.paid_at
        if status == BillingStatus.PAID:
            paid_at = paid_at or now
        else:
            paid_at = None

        if status != billing.status or paid_at != billing.paid_at:
            billing.status = status
            billing.paid_at = paid_at
            await billing.save(update_fields=["status", "paid_at", "updated_at"])
        return status

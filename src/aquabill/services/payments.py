"""Allocation of payments to outstanding bills."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from tortoise.transactions import in_transaction

from aquabill.core.audit import AuditSink
from aquabill.core.clock import Clock
from aquabill.core.dates import ensure_aware
from aquabill.core.exceptions import (
    AllocationError,
    InvalidAmount,
    NotFound,
    PaymentAlreadyReconciled,
    PaymentNotCompleted,
    ReversalNotAllowed,
    ValidationError,
)
from aquabill.core.models import (
    Billing,
    Payment,
    PaymentAllocation,
    PaymentStatus,
    ReconciliationStatus,
)
from aquabill.core.repositories.billing import BillingRepository
from aquabill.core.repositories.payment import PaymentRepository
from aquabill.services.balance import BalanceResolver

logger = logging.getLogger(__name__)

ENTITY = "payment"

WHO_CAN_REVERSE = ("admin_only", "same_user", "anyone")


@dataclass(frozen=True)
class Actor:
    """Who is asking for an operation; supplied by the caller."""

    id: str
    is_admin: bool = False


@dataclass
class ReconciliationResult:
    payment: Payment
    allocations: list[PaymentAllocation] = field(default_factory=list)
    allocated_amount: Decimal = Decimal("0")
    remaining_amount: Decimal = Decimal("0")
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING


class ReversalPolicy:
    """Decides whether an actor may undo a payment's reconciliation."""

    def __init__(self, who_can_reverse: str = "admin_only", time_limit_hours: int | None = 24):
        if who_can_reverse not in WHO_CAN_REVERSE:
            raise ValueError(f"Unknown reversal policy {who_can_reverse!r}")
        self.who_can_reverse = who_can_reverse
        self.time_limit_hours = time_limit_hours

    def check(self, payment: Payment, actor: Actor, now: datetime) -> None:
        if self.who_can_reverse == "admin_only" and not actor.is_admin:
            raise ReversalNotAllowed("Only administrators can reverse reconciliations.")
        if (
            self.who_can_reverse == "same_user"
            and not actor.is_admin
            and actor.id != payment.reconciled_by
        ):
            raise ReversalNotAllowed(
                "Only the user who reconciled the payment can reverse it."
            )
        if self.time_limit_hours is not None and payment.reconciled_at is not None:
            deadline = ensure_aware(payment.reconciled_at) + timedelta(
                hours=self.time_limit_hours
            )
            if now > deadline:
                raise ReversalNotAllowed(
                    f"Reconciliations can only be reversed within "
                    f"{self.time_limit_hours} hours."
                )


class PaymentAllocationEngine:
    """
    Spreads payments over an account's open bills, oldest due date first.

    Every operation runs in one transaction with the payment row locked, so
    a payment is never allocated twice and a failure leaves no partial
    allocations behind. Bill statuses are re-derived from allocations and
    credit notes through the ``BalanceResolver``.
    """

    def __init__(
        self,
        payment_repo: PaymentRepository,
        billing_repo: BillingRepository,
        balance_resolver: BalanceResolver,
        audit: AuditSink,
        clock: Clock,
        min_allocation: Decimal = Decimal("0.01"),
        reversal_policy: ReversalPolicy | None = None,
    ):
        self._payment_repo = payment_repo
        self._billing_repo = billing_repo
        self._balance_resolver = balance_resolver
        self._audit = audit
        self._clock = clock
        self._min_allocation = min_allocation
        self._reversal_policy = reversal_policy or ReversalPolicy()

    async def _lock_payment(self, payment_id: UUID | str) -> Payment:
        payment = await self._payment_repo.get_for_update(payment_id)
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found.")
        return payment

    def _check_reconcilable(self, payment: Payment, force: bool) -> None:
        if payment.status != PaymentStatus.COMPLETED:
            raise PaymentNotCompleted(
                f"Payment {payment.id} is {payment.status.value}; "
                "only completed payments can be reconciled."
            )
        if payment.reconciliation_status == ReconciliationStatus.RECONCILED and not force:
            raise PaymentAlreadyReconciled(f"Payment {payment.id} is already reconciled.")

    async def _allocate(
        self, payment: Payment, billing: Billing, amount: Decimal, now: datetime
    ) -> PaymentAllocation:
        allocation = await self._payment_repo.create_allocation(
            payment=payment,
            billing=billing,
            allocated_amount=amount,
            allocated_at=now,
        )
        await self._balance_resolver.refresh_status(billing, now)
        return allocation

    async def _finish(
        self,
        payment: Payment,
        allocations: list[PaymentAllocation],
        reconciled_by: str | None,
        now: datetime,
    ) -> ReconciliationResult:
        allocated_total = await self._payment_repo.allocated_total(payment.id)
        remaining = payment.amount - allocated_total
        if remaining < self._min_allocation:
            remaining = Decimal("0")
            status = ReconciliationStatus.RECONCILED
        else:
            status = ReconciliationStatus.PARTIALLY_RECONCILED

        payment.reconciliation_status = status
        payment.reconciled_at = now
        payment.reconciled_by = reconciled_by
        await payment.save(
            update_fields=[
                "reconciliation_status",
                "reconciled_at",
                "reconciled_by",
                "updated_at",
            ]
        )
        return ReconciliationResult(
            payment=payment,
            allocations=allocations,
            allocated_amount=sum(
                (a.allocated_amount for a in allocations), Decimal("0")
            ),
            remaining_amount=remaining,
            reconciliation_status=status,
        )

    async def reconcile_payment(
        self,
        payment_id: UUID | str,
        force: bool = False,
        reconciled_by: str | None = None,
    ) -> ReconciliationResult:
        """
        Allocates the unallocated part of a payment to the account's open bills.

        Bills are taken in due date order (ties broken by period, creation
        time and id) and each receives ``min(remaining, balance)``. Amounts
        below the minimum allocation are treated as zero.

        Raises:
            PaymentNotCompleted: the payment has not cleared.
            PaymentAlreadyReconciled: nothing left to do and ``force`` is off.
        """
        now = self._clock.now()
        async with in_transaction():
            payment = await self._lock_payment(payment_id)
            self._check_reconcilable(payment, force)

            remaining = payment.amount - await self._payment_repo.allocated_total(
                payment.id
            )
            allocations: list[PaymentAllocation] = []
            bills = await self._billing_repo.get_open_for_account(
                payment.account_id, for_update=True
            )
            for billing in bills:
                if remaining < self._min_allocation:
                    break
                balance = await self._balance_resolver.balance(billing)
                amount = min(remaining, balance)
                if amount < self._min_allocation:
                    continue
                allocations.append(await self._allocate(payment, billing, amount, now))
                remaining -= amount

            result = await self._finish(payment, allocations, reconciled_by, now)

        await self._audit.log_event(
            ENTITY,
            payment.id,
            "reconciled",
            {
                "allocations": [
                    {"billing_id": str(a.billing_id), "amount": str(a.allocated_amount)}
                    for a in result.allocations
                ],
                "allocated_amount": str(result.allocated_amount),
                "remaining_amount": str(result.remaining_amount),
                "reconciliation_status": result.reconciliation_status.value,
            },
        )
        logger.info(
            "Payment %s reconciled: %s allocated, %s remaining",
            payment.id,
            result.allocated_amount,
            result.remaining_amount,
        )
        return result

    async def allocate_manually(
        self,
        payment_id: UUID | str,
        allocations: Sequence[tuple[UUID | str, Decimal]],
        reconciled_by: str | None = None,
    ) -> ReconciliationResult:
        """Allocates a payment to bills chosen by the caller.

        Each bill must belong to the payment's account, and each amount must
        fit both the bill's balance and what is left of the payment.
        """
        now = self._clock.now()
        async with in_transaction():
            payment = await self._lock_payment(payment_id)
            self._check_reconcilable(payment, force=False)

            remaining = payment.amount - await self._payment_repo.allocated_total(
                payment.id
            )
            created: list[PaymentAllocation] = []
            for billing_id, amount in allocations:
                amount = Decimal(amount)
                if amount <= 0:
                    raise InvalidAmount("Allocation amounts must be positive.")
                billing = await self._billing_repo.get_for_update(billing_id)
                if billing is None:
                    raise NotFound(f"Bill {billing_id} not found.")
                if billing.account_id != payment.account_id:
                    raise AllocationError(
                        f"Bill {billing.id} does not belong to the account of "
                        f"payment {payment.id}."
                    )
                if not billing.can_be_modified():
                    raise AllocationError(
                        f"Bill {billing.id} is {billing.status.value}."
                    )
                balance = await self._balance_resolver.balance(billing)
                if amount > balance:
                    raise AllocationError(
                        f"Cannot allocate {amount} to bill {billing.id}: "
                        f"balance is only {balance}."
                    )
                if amount > remaining:
                    raise AllocationError(
                        f"Cannot allocate {amount}: only {remaining} remaining in payment."
                    )
                created.append(await self._allocate(payment, billing, amount, now))
                remaining -= amount

            result = await self._finish(payment, created, reconciled_by, now)

        await self._audit.log_event(
            ENTITY,
            payment.id,
            "manually_allocated",
            {
                "allocated_amount": str(result.allocated_amount),
                "remaining_amount": str(result.remaining_amount),
            },
        )
        return result

    async def reverse_reconciliation(
        self, payment_id: UUID | str, actor: Actor, reason: str
    ) -> Payment:
        """
        Removes a payment's allocations and re-derives the bills they touched.

        Whether ``actor`` may do this is decided by the reversal policy.
        The payment goes back to reconciliation status ``pending``.
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reverse a reconciliation.")

        now = self._clock.now()
        async with in_transaction():
            payment = await self._lock_payment(payment_id)
            if payment.reconciliation_status == ReconciliationStatus.PENDING:
                raise ReversalNotAllowed(f"Payment {payment.id} is not reconciled.")
            self._reversal_policy.check(payment, actor, now)

            allocations = await self._payment_repo.get_allocations(payment.id)
            billing_ids = {a.billing_id for a in allocations}
            for allocation in allocations:
                await allocation.delete()

            for billing_id in billing_ids:
                billing = await self._billing_repo.get_for_update(billing_id)
                if billing is not None:
                    await self._balance_resolver.refresh_status(billing, now)

            payment.reconciliation_status = ReconciliationStatus.PENDING
            payment.reconciled_at = None
            payment.reconciled_by = None
            await payment.save(
                update_fields=[
                    "reconciliation_status",
                    "reconciled_at",
                    "reconciled_by",
                    "updated_at",
                ]
            )

        await self._audit.log_event(
            ENTITY,
            payment.id,
            "reconciliation_reversed",
            {
                "allocations_reversed": len(allocations),
                "reversed_by": actor.id,
                "reason": reason,
            },
        )
        logger.info(
            "Reconciliation of payment %s reversed by %s (%s allocations)",
            payment.id,
            actor.id,
            len(allocations),
        )
        return payment

    async def reconciliation_report(self, payment_id: UUID | str) -> dict[str, Any]:
        """Summary of how a payment was spread across bills."""
        payment = await self._payment_repo.get_required(payment_id)
        allocations = await self._payment_repo.get_allocations(payment.id)
        rows = []
        for allocation in allocations:
            billing = await self._billing_repo.get_required(allocation.billing_id)
            rows.append(
                {
                    "billing_id": str(billing.id),
                    "billing_period": billing.billing_period,
                    "billing_total": str(billing.total_amount),
                    "billing_status": billing.status.value,
                    "allocated_amount": str(allocation.allocated_amount),
                    "allocated_at": allocation.allocated_at.isoformat(),
                }
            )
        allocated = sum((a.allocated_amount for a in allocations), Decimal("0"))
        remaining = payment.amount - allocated
        return {
            "payment_id": str(payment.id),
            "amount": str(payment.amount),
            "status": payment.status.value,
            "reconciliation_status": payment.reconciliation_status.value,
            "total_allocated": str(allocated),
            "remaining_amount": str(remaining),
            "fully_allocated": remaining < self._min_allocation,
            "allocations": rows,
        }

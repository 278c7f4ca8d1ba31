"""Credit notes against bills."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from aquabill.core.audit import AuditSink
from aquabill.core.clock import Clock
from aquabill.core.exceptions import (
    BillVoided,
    CreditNoteAlreadyVoided,
    InsufficientBalance,
    InvalidAmount,
    NotFound,
    TransientFailure,
)
from aquabill.core.models import CreditNote, CreditNoteStatus, CreditNoteType
from aquabill.core.repositories.billing import BillingRepository
from aquabill.core.repositories.credit_note import CreditNoteRepository
from aquabill.services.balance import BalanceResolver

logger = logging.getLogger(__name__)

ENTITY = "credit_note"


class CreditNoteProcessor:
    """Applies and voids credit notes.

    A credit note lowers the derived balance of its bill; the bill's total is
    never touched and its status is always re-derived from payments and the
    credit notes still applied.
    """

    def __init__(
        self,
        credit_note_repo: CreditNoteRepository,
        billing_repo: BillingRepository,
        balance_resolver: BalanceResolver,
        audit: AuditSink,
        clock: Clock,
    ):
        self._credit_note_repo = credit_note_repo
        self._billing_repo = billing_repo
        self._balance_resolver = balance_resolver
        self._audit = audit
        self._clock = clock

    async def apply(
        self,
        billing_id: UUID | str,
        type: CreditNoteType,
        amount: Decimal,
        reason: str,
        created_by: str | None = None,
    ) -> CreditNote:
        """
        Applies a credit note of ``amount`` to a bill.

        Raises:
            InvalidAmount: ``amount`` is not positive.
            BillVoided: the bill is voided.
            InsufficientBalance: ``amount`` exceeds the bill's balance.
        """
        if amount <= 0:
            raise InvalidAmount("Credit note amount must be positive.")

        now = self._clock.now()
        try:
            async with in_transaction():
                billing = await self._billing_repo.get_for_update(billing_id)
                if billing is None:
                    raise NotFound(f"Bill {billing_id} not found.")
                if billing.is_voided:
                    raise BillVoided(f"Cannot credit voided bill {billing.id}.")

                balance = await self._balance_resolver.balance(billing)
                if amount > balance:
                    raise InsufficientBalance(
                        f"Credit note amount {amount} exceeds the bill balance {balance}."
                    )

                reference = await self._credit_note_repo.next_reference(now.year)
                credit_note = await self._credit_note_repo.create(
                    billing=billing,
                    reference=reference,
                    type=type,
                    amount=amount,
                    reason=reason,
                    status=CreditNoteStatus.APPLIED,
                    created_by=created_by,
                )
                status = await self._balance_resolver.refresh_status(billing, now)
        except IntegrityError as exc:
            # Two notes drew the same reference; the retry picks the next one.
            raise TransientFailure(f"Credit note reference clash: {exc}") from exc

        await self._audit.log_event(
            ENTITY,
            credit_note.id,
            "applied",
            {
                "billing_id": str(billing.id),
                "reference": reference,
                "type": type.value,
                "amount": str(amount),
                "previous_balance": str(balance),
                "billing_status": status.value,
            },
        )
        logger.info("Credit note %s of %s applied to bill %s", reference, amount, billing.id)
        return credit_note

    async def void(
        self,
        credit_note_id: UUID | str,
        void_reason: str,
        voided_by: str | None = None,
    ) -> CreditNote:
        """Voids a credit note and re-derives its bill's status without it."""
        now = self._clock.now()
        async with in_transaction():
            credit_note = await self._credit_note_repo.get_for_update(credit_note_id)
            if credit_note is None:
                raise NotFound(f"Credit note {credit_note_id} not found.")
            if credit_note.status == CreditNoteStatus.VOIDED:
                raise CreditNoteAlreadyVoided(
                    f"Credit note {credit_note.reference} is already voided."
                )

            credit_note.status = CreditNoteStatus.VOIDED
            credit_note.void_reason = void_reason
            credit_note.voided_at = now
            credit_note.voided_by = voided_by
            await credit_note.save(
                update_fields=["status", "void_reason", "voided_at", "voided_by", "updated_at"]
            )

            billing = await self._billing_repo.get_for_update(credit_note.billing_id)
            status = await self._balance_resolver.refresh_status(billing, now)

        await self._audit.log_event(
            ENTITY,
            credit_note.id,
            "voided",
            {
                "billing_id": str(credit_note.billing_id),
                "reference": credit_note.reference,
                "void_reason": void_reason,
                "billing_status": status.value,
            },
        )
        logger.info("Credit note %s voided", credit_note.reference)
        return credit_note

"""Tests for the CreditNoteProcessor."""

from datetime import date
from decimal import Decimal

import pytest

from aquabill.core.exceptions import (
    BillVoided,
    CreditNoteAlreadyVoided,
    InsufficientBalance,
    InvalidAmount,
)
from aquabill.core.models import (
    Billing,
    BillingStatus,
    CreditNote,
    CreditNoteStatus,
    CreditNoteType,
)


@pytest.mark.asyncio
async def test_credit_note_settles_and_void_reopens(
    services, make_account, make_bill, make_payment, audit
):
    # --- Arrange ---
    account, _ = await make_account()
    bill = await make_bill(account, "2025-01", 100, date(2025, 2, 1))
    payment = await make_payment(account, 40)
    await services.payments.reconcile_payment(payment.id)

    # --- Act ---
    note = await services.credit_notes.apply(
        bill.id, CreditNoteType.BILLING_ERROR, Decimal("60"), "Misread meter", "clerk"
    )

    # --- Assert ---
    assert note.reference == "CN-2025-0001"
    assert note.status == CreditNoteStatus.APPLIED
    bill = await Billing.get(id=bill.id)
    assert bill.status == BillingStatus.PAID
    assert bill.total_amount == Decimal("100")  # totals are never rewritten
    assert bill.paid_at is not None

    # --- Act ---
    await services.credit_notes.void(note.id, "Applied to the wrong bill", "admin")

    # --- Assert ---
    bill = await Billing.get(id=bill.id)
    assert bill.status == BillingStatus.PARTIALLY_PAID
    assert bill.paid_at is None
    assert await services.balances.balance(bill) == Decimal("60")
    assert audit.names()[-2:] == ["credit_note.applied", "credit_note.voided"]


@pytest.mark.asyncio
async def test_void_of_only_credit_returns_bill_to_pending(services, make_account, make_bill):
    # --- Arrange ---
    account, _ = await make_account()
    bill = await make_bill(account, "2025-01", 100, date(2025, 2, 1))
    note = await services.credit_notes.apply(
        bill.id, CreditNoteType.GOODWILL, Decimal("100"), "Service outage"
    )
    assert (await Billing.get(id=bill.id)).status == BillingStatus.PAID

    # --- Act ---
    await services.credit_notes.void(note.id, "Outage was elsewhere")

    # --- Assert ---
    assert (await Billing.get(id=bill.id)).status == BillingStatus.PENDING


@pytest.mark.asyncio
async def test_references_are_sequential(services, make_account, make_bill):
    account, _ = await make_account()
    bill = await make_bill(account, "2025-01", 100, date(2025, 2, 1))

    first = await services.credit_notes.apply(
        bill.id, CreditNoteType.OTHER, Decimal("10"), "First"
    )
    second = await services.credit_notes.apply(
        bill.id, CreditNoteType.OTHER, Decimal("10"), "Second"
    )

    assert [first.reference, second.reference] == ["CN-2025-0001", "CN-2025-0002"]


@pytest.mark.asyncio
async def test_credit_cannot_exceed_balance(services, make_account, make_bill):
    # --- Arrange ---
    account, _ = await make_account()
    bill = await make_bill(account, "2025-01", 100, date(2025, 2, 1))

    # --- Act / Assert ---
    with pytest.raises(InsufficientBalance):
        await services.credit_notes.apply(
            bill.id, CreditNoteType.GOODWILL, Decimal("150"), "Too generous"
        )
    with pytest.raises(InvalidAmount):
        await services.credit_notes.apply(
            bill.id, CreditNoteType.GOODWILL, Decimal("0"), "Nothing"
        )
    assert await CreditNote.all().count() == 0


@pytest.mark.asyncio
async def test_voided_bill_cannot_be_credited(services, make_account, make_bill):
    account, _ = await make_account()
    bill = await make_bill(
        account, "2025-01", 100, date(2025, 2, 1),
        status=BillingStatus.VOIDED, period_lock=None,
    )

    with pytest.raises(BillVoided):
        await services.credit_notes.apply(
            bill.id, CreditNoteType.PREVIOUS_RESIDENT_DEBT, Decimal("10"), "Old debt"
        )


@pytest.mark.asyncio
async def test_credit_note_cannot_be_voided_twice(services, make_account, make_bill):
    # --- Arrange ---
    account, _ = await make_account()
    bill = await make_bill(account, "2025-01", 100, date(2025, 2, 1))
    note = await services.credit_notes.apply(
        bill.id, CreditNoteType.GOODWILL, Decimal("20"), "Goodwill"
    )
    await services.credit_notes.void(note.id, "Mistake")

    # --- Act / Assert ---
    with pytest.raises(CreditNoteAlreadyVoided):
        await services.credit_notes.void(note.id, "Mistake again")

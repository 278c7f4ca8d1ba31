"""Tests for the account-level balance views."""

from datetime import date
from decimal import Decimal

import pytest

from aquabill.core.exceptions import InvalidAmount
from aquabill.core.models import PaymentAllocation


@pytest.fixture
def account_with_history(services, make_account, make_bill, make_payment):
    """
    Three open bills of 1000, 2000 and 3000, the oldest partly paid.

    On 2025-02-10 the November bill is 82 days late, the December bill 47
    days and the January bill is not due yet.
    """

    async def _make():
        account, _ = await make_account()
        november = await make_bill(account, "2024-11", 1000, date(2024, 11, 20))
        december = await make_bill(account, "2024-12", 2000, date(2024, 12, 25))
        january = await make_bill(account, "2025-01", 3000, date(2025, 2, 20))
        payment = await make_payment(account, 500)
        await services.payments.reconcile_payment(payment.id)
        return account, (november, december, january)

    return _make


@pytest.mark.asyncio
async def test_account_balance_totals_open_bills(services, account_with_history):
    # --- Arrange ---
    account, (november, _, _) = await account_with_history()

    # --- Act ---
    result = await services.account_balances.account_balance(account.id)

    # --- Assert ---
    assert result.total_billed == Decimal("6000")
    assert result.total_paid == Decimal("500")
    assert result.outstanding_balance == Decimal("5500")
    assert result.credit_balance == Decimal("0")
    assert result.net_balance == Decimal("5500")
    assert result.overdue_amount == Decimal("2500")  # 500 + 2000
    assert result.overdue_bill_count == 2
    assert result.has_overdue_bills
    assert result.outstanding_bill_count == 3
    assert result.oldest_due_date == november.due_date
    assert result.oldest_days_overdue == 82


@pytest.mark.asyncio
async def test_unallocated_payment_counts_as_credit(services, make_account, make_bill, make_payment):
    # --- Arrange ---
    account, _ = await make_account()
    await make_bill(account, "2025-01", 1000, date(2025, 2, 20))
    payment = await make_payment(account, 1500)
    await services.payments.reconcile_payment(payment.id)

    # --- Act ---
    result = await services.account_balances.account_balance(account.id)

    # --- Assert ---
    assert result.outstanding_balance == Decimal("0")
    assert result.outstanding_bill_count == 0
    assert result.credit_balance == Decimal("500")
    assert result.net_balance == Decimal("-500")
    assert result.oldest_due_date is None


@pytest.mark.asyncio
async def test_outstanding_summary_groups_by_status_and_period(
    services, account_with_history
):
    # --- Arrange ---
    account, _ = await account_with_history()

    # --- Act ---
    summary = await services.account_balances.outstanding_summary(account.id)

    # --- Assert ---
    assert summary["total_count"] == 3
    assert summary["total_amount"] == Decimal("6000")
    assert summary["total_balance"] == Decimal("5500")
    assert summary["by_status"]["partially_paid"] == {
        "count": 1,
        "total_amount": Decimal("1000"),
        "balance": Decimal("500"),
    }
    assert summary["by_status"]["pending"]["count"] == 2
    assert list(summary["by_period"]) == ["2024-11", "2024-12", "2025-01"]
    assert summary["oldest_due_date"] == date(2024, 11, 20)
    assert summary["newest_due_date"] == date(2025, 2, 20)


@pytest.mark.asyncio
async def test_aging_report_buckets_by_days_late(services, account_with_history):
    # --- Arrange ---
    account, _ = await account_with_history()

    # --- Act ---
    report = await services.account_balances.aging_report(account.id)
    later = await services.account_balances.aging_report(
        account.id, today=date(2025, 3, 1)
    )

    # --- Assert ---
    assert report["current"] == {"count": 1, "amount": Decimal("3000")}
    assert report["30_days"] == {"count": 1, "amount": Decimal("2000")}
    assert report["60_days"] == {"count": 1, "amount": Decimal("500")}
    assert report["90_plus"] == {"count": 0, "amount": Decimal("0")}
    assert later["90_plus"] == {"count": 1, "amount": Decimal("500")}


@pytest.mark.asyncio
async def test_payment_projection_stores_nothing(services, account_with_history):
    # --- Arrange ---
    account, (november, december, january) = await account_with_history()
    before = await PaymentAllocation.all().count()

    # --- Act ---
    projection = await services.account_balances.project_payment_impact(
        account.id, Decimal("2800")
    )

    # --- Assert ---
    assert [a.billing_id for a in projection.allocations] == [
        str(november.id),
        str(december.id),
        str(january.id),
    ]
    assert [a.allocated_amount for a in projection.allocations] == [
        Decimal("500"),
        Decimal("2000"),
        Decimal("300"),
    ]
    assert projection.bills_to_be_paid == 2
    assert projection.remaining_amount == Decimal("0")
    assert projection.outstanding_after == Decimal("2700")
    assert await PaymentAllocation.all().count() == before


@pytest.mark.asyncio
async def test_payment_projection_needs_a_positive_amount(services, make_account):
    account, _ = await make_account()

    with pytest.raises(InvalidAmount):
        await services.account_balances.project_payment_impact(account.id, Decimal("0"))


@pytest.mark.asyncio
async def test_carried_balance_is_reported_once(services, make_account, add_reading):
    # --- Arrange ---
    account, meter = await make_account()
    await add_reading(meter, 1000, date(2024, 12, 15))
    await add_reading(meter, 1150, date(2025, 1, 20))
    january = await services.billing.generate_monthly_bill(account.id, "2025-01")
    await add_reading(meter, 1160, date(2025, 2, 5))
    february = await services.billing.generate_monthly_bill(account.id, "2025-02")

    # --- Act ---
    details = await services.account_balances.carry_forward_details(account.id)
    balance = await services.account_balances.account_balance(account.id)

    # --- Assert ---
    assert details["carried"] == [
        {
            "from_billing_id": str(january.id),
            "from_period": "2025-01",
            "to_billing_id": str(february.id),
            "to_period": "2025-02",
            "amount": Decimal("45000"),
        }
    ]
    assert details["total_debits"] == Decimal("45000")
    assert details["total_credits"] == Decimal("0")
    assert balance.outstanding_bill_count == 1
    assert balance.outstanding_balance == Decimal("48000")

"""Pytest configuration and fixtures."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from tortoise import Tortoise

from aquabill.config import Settings
from aquabill.core.clock import FixedClock
from aquabill.core.models import (
    Account,
    Billing,
    BillingStatus,
    Meter,
    MeterReading,
    Payment,
    PaymentStatus,
)
from aquabill.services.batch import BatchRunner
from aquabill.services.container import build_services


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db_session():
    """
    Provides a clean in-memory SQLite database for each test function.
    """
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["aquabill.core.models"]},
    )
    await Tortoise.generate_schemas()

    yield

    await Tortoise.close_connections()


class RecordingAuditSink:
    """Keeps audit events in memory for assertions."""

    def __init__(self):
        self.events = []

    async def log_event(self, entity_type, entity_id, event, payload=None):
        self.events.append((entity_type, entity_id, event, payload or {}))

    def names(self) -> list[str]:
        return [f"{entity_type}.{event}" for entity_type, _, event, _ in self.events]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 2, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DEFAULT_UNIT_PRICE=Decimal("300"),
        BILLING_DUE_DAYS=14,
        BILLING_WORKER_CONCURRENCY=1,
        BILLING_INTER_ITEM_DELAY_SECONDS=0,
        LATE_FEES_ENABLED=True,
        LATE_FEE_STRATEGY="percentage",
        LATE_FEE_PERCENTAGE=Decimal("5"),
        LATE_FEE_MINIMUM=Decimal("50"),
        LATE_FEE_MAXIMUM=Decimal("5000"),
        LATE_FEE_GRACE_PERIOD_DAYS=14,
        RECONCILIATION_WHO_CAN_REVERSE="admin_only",
        RECONCILIATION_REVERSAL_TIME_LIMIT_HOURS=24,
        JOB_RETRY_ATTEMPTS=3,
        JOB_RETRY_BACKOFF_SECONDS=0,
        JOB_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
def services(settings, clock, audit):
    """The full service graph over the in-memory database."""
    return build_services(
        settings, clock=clock, audit=audit, batch_runner=BatchRunner(concurrency=1)
    )


@pytest.fixture
def make_account():
    async def _make(number: str = "ACC-001", with_meter: bool = True, **kwargs):
        account = await Account.create(
            account_number=number, name=kwargs.pop("name", f"Account {number}"), **kwargs
        )
        meter = None
        if with_meter:
            meter = await Meter.create(meter_number=f"M-{number}", account=account)
        return account, meter

    return _make


@pytest.fixture
def add_reading():
    async def _add(meter: Meter, value, on: date) -> MeterReading:
        return await MeterReading.create(
            meter=meter,
            reading_value=Decimal(str(value)),
            reading_date=on,
            reading_month=on.replace(day=1),
        )

    return _add


@pytest.fixture
def make_bill(clock):
    async def _make(account: Account, period: str, total, due: date, **kwargs) -> Billing:
        return await Billing.create(
            account=account,
            billing_period=period,
            period_lock=kwargs.pop("period_lock", period),
            amount=Decimal(str(total)),
            total_amount=Decimal(str(total)),
            status=kwargs.pop("status", BillingStatus.PENDING),
            issued_at=clock.now() - timedelta(days=30),
            due_date=due,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_payment(clock):
    async def _make(account: Account, amount, **kwargs) -> Payment:
        return await Payment.create(
            account=account,
            amount=Decimal(str(amount)),
            status=kwargs.pop("status", PaymentStatus.COMPLETED),
            payment_date=kwargs.pop("payment_date", clock.today()),
            **kwargs,
        )

    return _make

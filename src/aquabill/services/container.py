"""Wiring of repositories and services."""

from __future__ import annotations

from dataclasses import dataclass

from aquabill.config import Settings
from aquabill.core.audit import AuditSink, LoggingAuditSink
from aquabill.core.clock import Clock, SystemClock
from aquabill.core.idempotency import IdempotencyStore
from aquabill.core.repositories.account import AccountRepository
from aquabill.core.repositories.billing import BillingRepository
from aquabill.core.repositories.credit_note import CreditNoteRepository
from aquabill.core.repositories.meter import MeterRepository
from aquabill.core.repositories.payment import PaymentRepository
from aquabill.core.repositories.reading import ReadingRepository
from aquabill.core.repositories.tariff import TariffRepository
from aquabill.services.account_balances import AccountBalanceService
from aquabill.services.accounts import AccountService
from aquabill.services.balance import BalanceResolver
from aquabill.services.batch import BatchRunner
from aquabill.services.billing import BillingOrchestrator
from aquabill.services.bulk_meters import BulkMeterService
from aquabill.services.charges import ChargeCalculator, late_fee_policy_from_settings
from aquabill.services.credit_notes import CreditNoteProcessor
from aquabill.services.jobs import RetryPolicy
from aquabill.services.late_fees import LateFeeService
from aquabill.services.payments import PaymentAllocationEngine, ReversalPolicy
from aquabill.services.readings import MeterReadingService, MeterReadingValidator
from aquabill.services.rebilling import RebillingService, RecomputeDifferencePolicy
from aquabill.services.tariffs import TariffResolver


@dataclass
class Services:
    settings: Settings
    clock: Clock
    audit: AuditSink
    idempotency: IdempotencyStore
    retry_policy: RetryPolicy
    batch_runner: BatchRunner
    account_repo: AccountRepository
    meter_repo: MeterRepository
    reading_repo: ReadingRepository
    tariff_repo: TariffRepository
    billing_repo: BillingRepository
    payment_repo: PaymentRepository
    credit_note_repo: CreditNoteRepository
    accounts: AccountService
    readings: MeterReadingService
    bulk_meters: BulkMeterService
    tariffs: TariffResolver
    charges: ChargeCalculator
    balances: BalanceResolver
    account_balances: AccountBalanceService
    billing: BillingOrchestrator
    late_fees: LateFeeService
    payments: PaymentAllocationEngine
    credit_notes: CreditNoteProcessor
    rebilling: RebillingService


def build_services(
    settings: Settings,
    clock: Clock | None = None,
    audit: AuditSink | None = None,
    batch_runner: BatchRunner | None = None,
) -> Services:
    """Builds the service graph from settings."""
    clock = clock or SystemClock()
    audit = audit or LoggingAuditSink()

    account_repo = AccountRepository()
    meter_repo = MeterRepository()
    reading_repo = ReadingRepository()
    tariff_repo = TariffRepository()
    billing_repo = BillingRepository()
    payment_repo = PaymentRepository()
    credit_note_repo = CreditNoteRepository()

    balances = BalanceResolver(payment_repo, credit_note_repo, billing_repo)
    tariffs = TariffResolver(
        tariff_repo, settings.DEFAULT_UNIT_PRICE, settings.DEFAULT_TARIFF_NAME
    )
    charges = ChargeCalculator(
        tariffs,
        late_fee_policy_from_settings(settings),
        grace_period_days=settings.LATE_FEE_GRACE_PERIOD_DAYS,
        late_fees_enabled=settings.LATE_FEES_ENABLED,
    )
    validator = MeterReadingValidator(reading_repo, audit, clock)
    readings = MeterReadingService(meter_repo, reading_repo, validator, audit)
    billing = BillingOrchestrator(
        account_repo,
        meter_repo,
        reading_repo,
        billing_repo,
        payment_repo,
        charges,
        balances,
        audit,
        clock,
        due_days=settings.BILLING_DUE_DAYS,
    )

    return Services(
        settings=settings,
        clock=clock,
        audit=audit,
        idempotency=IdempotencyStore(settings.IDEMPOTENCY_TTL_SECONDS, clock),
        retry_policy=RetryPolicy.from_settings(settings),
        batch_runner=batch_runner
        or BatchRunner(
            concurrency=settings.BILLING_WORKER_CONCURRENCY,
            inter_item_delay=settings.BILLING_INTER_ITEM_DELAY_SECONDS,
        ),
        account_repo=account_repo,
        meter_repo=meter_repo,
        reading_repo=reading_repo,
        tariff_repo=tariff_repo,
        billing_repo=billing_repo,
        payment_repo=payment_repo,
        credit_note_repo=credit_note_repo,
        accounts=AccountService(account_repo, meter_repo, audit, clock),
        readings=readings,
        bulk_meters=BulkMeterService(
            meter_repo,
            reading_repo,
            readings,
            billing,
            audit,
            require_full_allocation=settings.BULK_METER_REQUIRE_FULL_ALLOCATION,
        ),
        tariffs=tariffs,
        charges=charges,
        balances=balances,
        account_balances=AccountBalanceService(
            account_repo, billing_repo, payment_repo, balances, clock
        ),
        billing=billing,
        late_fees=LateFeeService(billing_repo, charges, balances, audit, clock),
        payments=PaymentAllocationEngine(
            payment_repo,
            billing_repo,
            balances,
            audit,
            clock,
            min_allocation=settings.RECONCILIATION_MIN_ALLOCATION,
            reversal_policy=ReversalPolicy(
                settings.RECONCILIATION_WHO_CAN_REVERSE,
                settings.RECONCILIATION_REVERSAL_TIME_LIMIT_HOURS,
            ),
        ),
        credit_notes=CreditNoteProcessor(
            credit_note_repo, billing_repo, balances, audit, clock
        ),
        rebilling=RebillingService(
            billing_repo,
            balances,
            RecomputeDifferencePolicy(charges),
            audit,
            clock,
            due_days=settings.BILLING_DUE_DAYS,
        ),
    )

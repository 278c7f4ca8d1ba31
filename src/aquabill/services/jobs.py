"""Queued units of work: retries, timeouts and self re-enqueueing batches."""

from __future__ import annotations

import abc
import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar
from uuid import UUID

from tortoise.exceptions import DBConnectionError, IntegrityError, OperationalError

from aquabill.config import Settings
from aquabill.core.audit import AuditSink
from aquabill.core.exceptions import PermanentFailure, TransientFailure
from aquabill.core.idempotency import IdempotencyStore
from aquabill.core.models import Payment
from aquabill.core.repositories.payment import PaymentRepository
from aquabill.services.batch import BatchRunner, BatchStats, ItemResult
from aquabill.services.billing import BillingOrchestrator
from aquabill.services.late_fees import LateFeeService
from aquabill.services.payments import PaymentAllocationEngine, ReconciliationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryStrategy(str, enum.Enum):
    FIXED = "fixed"
    LINEAR = "linear"


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a queued unit is retried."""

    attempts: int = 3
    backoff_seconds: float = 60
    strategy: RetryStrategy = RetryStrategy.FIXED
    timeout_seconds: float | None = 600

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            attempts=settings.JOB_RETRY_ATTEMPTS,
            backoff_seconds=settings.JOB_RETRY_BACKOFF_SECONDS,
            strategy=RetryStrategy(settings.JOB_RETRY_STRATEGY),
            timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
        )

    def delay_for(self, failed_attempts: int) -> float:
        """Seconds to wait after the ``failed_attempts``-th failure."""
        if self.strategy == RetryStrategy.LINEAR:
            return self.backoff_seconds * failed_attempts
        return self.backoff_seconds


def is_transient(exc: BaseException) -> bool:
    """Contention, lost connections and timeouts are worth another attempt."""
    if isinstance(exc, IntegrityError):
        return False
    return isinstance(
        exc, (TransientFailure, asyncio.TimeoutError, OperationalError, DBConnectionError)
    )


async def run_with_retry(
    name: str,
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Runs ``operation`` under the retry policy.

    Each attempt is bounded by the policy's timeout. Validation errors and
    business rule violations are raised straight away; transient errors
    are retried with backoff until the attempts run out.

    Raises:
        PermanentFailure: every attempt failed with a transient error.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            if policy.timeout_seconds:
                return await asyncio.wait_for(operation(), policy.timeout_seconds)
            return await operation()
        except Exception as exc:
            if not is_transient(exc):
                raise
            last_error = exc
            if attempt < policy.attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %s/%s): %r; retrying in %ss",
                    name,
                    attempt,
                    policy.attempts,
                    exc,
                    delay,
                )
                await sleep(delay)

    logger.critical(
        "%s failed permanently after %s attempts: %r",
        name,
        policy.attempts,
        last_error,
        exc_info=last_error,
    )
    raise PermanentFailure(
        f"{name} failed after {policy.attempts} attempts",
        attempts=policy.attempts,
        last_error=last_error,
    ) from last_error


class Job(abc.ABC):
    """A unit of work that can be queued."""

    @property
    @abc.abstractmethod
    def name(self) -> str: ...

    @abc.abstractmethod
    async def run(self) -> Any: ...


class JobQueue(Protocol):
    async def enqueue(self, job: Job, delay_seconds: float = 0) -> None: ...


class GenerateBillJob(Job):
    """Generates one account's bill; repeated deliveries are answered from the idempotency store."""

    def __init__(
        self,
        orchestrator: BillingOrchestrator,
        idempotency: IdempotencyStore,
        policy: RetryPolicy,
        account_id: UUID | str,
        period: str,
    ):
        self._orchestrator = orchestrator
        self._idempotency = idempotency
        self._policy = policy
        self.account_id = account_id
        self.period = period

    @property
    def name(self) -> str:
        return f"generate_bill:{self.account_id}:{self.period}"

    async def run(self) -> UUID:
        key = IdempotencyStore.key("bill", self.account_id, self.period)
        cached = await self._idempotency.get(key)
        if cached is not None:
            logger.info("%s already done, bill %s", self.name, cached)
            return cached

        billing = await run_with_retry(
            self.name,
            lambda: self._orchestrator.generate_monthly_bill(self.account_id, self.period),
            self._policy,
        )
        await self._idempotency.put(key, billing.id)
        return billing.id


class ReconcilePaymentJob(Job):
    def __init__(
        self,
        engine: PaymentAllocationEngine,
        policy: RetryPolicy,
        payment_id: UUID | str,
        reconciled_by: str | None = None,
    ):
        self._engine = engine
        self._policy = policy
        self.payment_id = payment_id
        self.reconciled_by = reconciled_by

    @property
    def name(self) -> str:
        return f"reconcile_payment:{self.payment_id}"

    async def run(self) -> ReconciliationResult:
        return await run_with_retry(
            self.name,
            lambda: self._engine.reconcile_payment(
                self.payment_id, reconciled_by=self.reconciled_by
            ),
            self._policy,
        )


class MonthlyBillingJob(Job):
    """Bills one page of accounts and queues itself for the next page."""

    def __init__(
        self,
        orchestrator: BillingOrchestrator,
        runner: BatchRunner,
        queue: JobQueue | None,
        period: str,
        batch_size: int,
        offset: int = 0,
        account_ids: Sequence[UUID | str] | None = None,
        reenqueue_delay: float = 0,
    ):
        self._orchestrator = orchestrator
        self._runner = runner
        self._queue = queue
        self.period = period
        self.batch_size = batch_size
        self.offset = offset
        self.account_ids = account_ids
        self.reenqueue_delay = reenqueue_delay

    @property
    def name(self) -> str:
        return f"monthly_billing:{self.period}:{self.offset}"

    async def run(self) -> BatchStats:
        stats = await self._orchestrator.generate_for_accounts(
            self.period,
            self._runner,
            limit=self.batch_size,
            offset=self.offset,
            account_ids=self.account_ids,
        )
        if stats.has_more and self._queue is not None:
            logger.info("%s: page full, queueing the next page", self.name)
            await self._queue.enqueue(
                MonthlyBillingJob(
                    self._orchestrator,
                    self._runner,
                    self._queue,
                    self.period,
                    self.batch_size,
                    offset=self.offset + self.batch_size,
                    account_ids=self.account_ids,
                    reenqueue_delay=self.reenqueue_delay,
                ),
                self.reenqueue_delay,
            )
        return stats


class BulkReconciliationJob(Job):
    """Reconciles a page of pending payments, queueing itself while any remain.

    With an explicit ``limit`` the job handles that many payments once and
    does not queue a follow-up.
    """

    def __init__(
        self,
        engine: PaymentAllocationEngine,
        payment_repo: PaymentRepository,
        runner: BatchRunner,
        queue: JobQueue | None,
        audit: AuditSink,
        batch_size: int,
        account_id: UUID | str | None = None,
        limit: int | None = None,
        reenqueue_delay: float = 0,
    ):
        self._engine = engine
        self._payment_repo = payment_repo
        self._runner = runner
        self._queue = queue
        self._audit = audit
        self.batch_size = batch_size
        self.account_id = account_id
        self.limit = limit
        self.reenqueue_delay = reenqueue_delay

    @property
    def name(self) -> str:
        return f"bulk_reconciliation:{self.account_id or 'all'}"

    async def run(self) -> BatchStats:
        payments = await self._payment_repo.list_unreconciled(
            self.limit or self.batch_size, account_id=self.account_id
        )
        if not payments:
            logger.info("No unreconciled payments found")
            return BatchStats()

        async def _reconcile(payment: Payment) -> ItemResult:
            result = await self._engine.reconcile_payment(payment.id)
            return ItemResult.ok(str(payment.id), result.reconciliation_status)

        stats = await self._runner.run(payments, _reconcile, key=lambda p: str(p.id))
        await self._audit.log_event(
            "payment",
            None,
            "bulk_reconciliation_completed",
            {**stats.as_dict(), "errors": stats.errors},
        )
        logger.info("%s completed: %s", self.name, stats.as_dict())

        if stats.succeeded > 0 and self.limit is None:
            remaining = await self._payment_repo.count_unreconciled(self.account_id)
            stats.has_more = remaining > 0
            if stats.has_more and self._queue is not None:
                logger.info("%s: %s payments remain, queueing again", self.name, remaining)
                await self._queue.enqueue(
                    BulkReconciliationJob(
                        self._engine,
                        self._payment_repo,
                        self._runner,
                        self._queue,
                        self._audit,
                        self.batch_size,
                        account_id=self.account_id,
                        reenqueue_delay=self.reenqueue_delay,
                    ),
                    self.reenqueue_delay,
                )
        return stats


class LateFeeJob(Job):
    """Marks overdue bills and applies late fees, one page at a time."""

    def __init__(
        self,
        late_fee_service: LateFeeService,
        runner: BatchRunner,
        queue: JobQueue | None,
        batch_size: int,
        enabled: bool = True,
        offset: int = 0,
        period: str | None = None,
        reenqueue_delay: float = 0,
    ):
        self._late_fee_service = late_fee_service
        self._runner = runner
        self._queue = queue
        self.batch_size = batch_size
        self.enabled = enabled
        self.offset = offset
        self.period = period
        self.reenqueue_delay = reenqueue_delay

    @property
    def name(self) -> str:
        return f"late_fees:{self.period or 'all'}:{self.offset}"

    async def run(self) -> BatchStats:
        if not self.enabled:
            logger.info("Late fees are disabled in configuration")
            return BatchStats()

        if self.offset == 0:
            await self._late_fee_service.mark_overdue()
        stats = await self._late_fee_service.apply_late_fees(
            self._runner, limit=self.batch_size, offset=self.offset, period=self.period
        )
        if stats.has_more and self._queue is not None:
            await self._queue.enqueue(
                LateFeeJob(
                    self._late_fee_service,
                    self._runner,
                    self._queue,
                    self.batch_size,
                    enabled=self.enabled,
                    offset=self.offset + self.batch_size,
                    period=self.period,
                    reenqueue_delay=self.reenqueue_delay,
                ),
                self.reenqueue_delay,
            )
        return stats

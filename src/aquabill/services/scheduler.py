"""Service for scheduling background jobs."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from aquabill.core.dates import format_period, previous_period
from aquabill.services.container import Services
from aquabill.services.jobs import (
    BulkReconciliationJob,
    GenerateBillJob,
    Job,
    LateFeeJob,
    MonthlyBillingJob,
    ReconcilePaymentJob,
)

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages scheduled tasks and acts as the queue for follow-up jobs."""

    def __init__(self, services: Services, scheduler: AsyncIOScheduler):
        self._services = services
        self._scheduler = scheduler

    def start(self):
        """Starts the scheduler and adds the recurring jobs."""
        logger.info("Starting scheduler...")
        settings = self._services.settings
        self._scheduler.add_job(
            self._run_monthly_billing,
            # Bills for the previous month, early on the generation day
            trigger=CronTrigger(day=settings.BILLING_GENERATION_DAY, hour=2, minute=0),
            id="monthly_billing",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._run_late_fees,
            trigger=CronTrigger(hour=3, minute=0),
            id="late_fees",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._run_reconciliation,
            trigger=CronTrigger(minute=30),
            id="payment_reconciliation",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._services.idempotency.purge_expired,
            trigger=CronTrigger(minute=0),
            id="idempotency_purge",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Scheduler started.")

    def shutdown(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped.")

    async def enqueue(self, job: Job, delay_seconds: float = 0) -> None:
        """Runs ``job`` once, ``delay_seconds`` from now."""
        run_date = self._services.clock.now() + timedelta(seconds=delay_seconds)
        self._scheduler.add_job(
            self._execute,
            trigger=DateTrigger(run_date=run_date),
            args=[job],
            id=f"{job.name}:{uuid.uuid4().hex[:8]}",
        )
        logger.info("Queued %s for %s", job.name, run_date.isoformat())

    async def _execute(self, job: Job):
        try:
            await job.run()
        except Exception as e:
            logger.error(f"Job {job.name} failed: {e}", exc_info=True)

    def generate_bill_job(self, account_id, period: str) -> GenerateBillJob:
        return GenerateBillJob(
            self._services.billing,
            self._services.idempotency,
            self._services.retry_policy,
            account_id,
            period,
        )

    def reconcile_payment_job(self, payment_id, reconciled_by=None) -> ReconcilePaymentJob:
        return ReconcilePaymentJob(
            self._services.payments,
            self._services.retry_policy,
            payment_id,
            reconciled_by=reconciled_by,
        )

    async def _run_monthly_billing(self):
        """Bills every eligible account for the month that just ended."""
        period = previous_period(format_period(self._services.clock.today()))
        logger.info(f"Starting monthly billing job for {period}.")
        settings = self._services.settings
        job = MonthlyBillingJob(
            self._services.billing,
            self._services.batch_runner,
            self,
            period,
            settings.BILLING_BATCH_SIZE,
            reenqueue_delay=settings.JOB_REENQUEUE_DELAY_SECONDS,
        )
        await self._execute(job)
        logger.info("Monthly billing job finished.")

    async def _run_late_fees(self):
        logger.info("Starting late fee job.")
        settings = self._services.settings
        job = LateFeeJob(
            self._services.late_fees,
            self._services.batch_runner,
            self,
            settings.BILLING_BATCH_SIZE,
            enabled=settings.LATE_FEES_ENABLED,
            reenqueue_delay=settings.JOB_REENQUEUE_DELAY_SECONDS,
        )
        await self._execute(job)
        logger.info("Late fee job finished.")

    async def _run_reconciliation(self):
        logger.info("Starting payment reconciliation job.")
        settings = self._services.settings
        job = BulkReconciliationJob(
            self._services.payments,
            self._services.payment_repo,
            self._services.batch_runner,
            self,
            self._services.audit,
            settings.RECONCILIATION_BATCH_SIZE,
            reenqueue_delay=settings.JOB_REENQUEUE_DELAY_SECONDS,
        )
        await self._execute(job)
        logger.info("Payment reconciliation job finished.")

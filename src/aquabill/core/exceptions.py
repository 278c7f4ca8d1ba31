"""Error taxonomy shared by the billing core.

``ValidationError`` and ``BusinessRuleViolation`` are deterministic and are
never retried. ``TransientFailure`` marks errors the job layer may retry;
``PermanentFailure`` is raised once the retry budget is exhausted.
"""

from __future__ import annotations


class BillingCoreError(Exception):
    """Base class for all errors raised by the billing core."""


class ValidationError(BillingCoreError):
    """Malformed input."""


class NegativeReadingValue(ValidationError):
    pass


class FutureReadingDate(ValidationError):
    pass


class InvalidPeriod(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


class TariffTierError(ValidationError):
    """Tariff tiers are not contiguous or overlap."""


class TariffOverlap(ValidationError):
    """Another tariff for the meter type is already active in the date range."""


class InvalidAllocation(ValidationError):
    """Sub-meter allocation percentages are out of range or incomplete."""


class BusinessRuleViolation(BillingCoreError):
    """A deterministic domain rule refused the operation."""


class NotFound(BusinessRuleViolation):
    pass


class MonotonicViolation(BusinessRuleViolation):
    pass


class DuplicateReading(BusinessRuleViolation):
    pass


class ReadingAlreadyBilled(BusinessRuleViolation):
    pass


class DependentReadings(BusinessRuleViolation):
    pass


class ReadingAlreadyDistributed(BusinessRuleViolation):
    pass


class BulkMeterError(BusinessRuleViolation):
    """A bulk meter is not set up for the requested operation."""


class MeterStateError(BusinessRuleViolation):
    pass


class AccountStateError(BusinessRuleViolation):
    pass


class BillingError(BusinessRuleViolation):
    """Bill generation or modification refused."""


class DuplicateBilling(BillingError):
    pass


class InactiveAccount(BillingError):
    pass


class NoActiveMeters(BillingError):
    pass


class MissingReading(BillingError):
    pass


class BillNotModifiable(BillingError):
    pass


class PaymentError(BusinessRuleViolation):
    pass


class PaymentNotCompleted(PaymentError):
    pass


class PaymentAlreadyReconciled(PaymentError):
    pass


class AllocationError(PaymentError):
    pass


class ReversalNotAllowed(PaymentError):
    pass


class CreditNoteError(BusinessRuleViolation):
    pass


class InsufficientBalance(CreditNoteError):
    pass


class CreditNoteAlreadyVoided(CreditNoteError):
    pass


class BillVoided(CreditNoteError):
    pass


class TransientFailure(BillingCoreError):
    """Contention or timeout; eligible for the job retry policy."""


class PermanentFailure(BillingCoreError):
    """Retries exhausted; needs manual follow-up."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error

"""Domain models for the AquaBill billing core."""

from __future__ import annotations

import enum
import uuid

from tortoise import fields, models


class AccountStatus(str, enum.Enum):
    """Lifecycle states of a billing account."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class MeterStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    REPLACED = "replaced"


class MeterType(str, enum.Enum):
    """Individual meters are billed directly; bulk meters feed sub-meters."""

    INDIVIDUAL = "individual"
    BULK = "bulk"


class ReadingType(str, enum.Enum):
    ACTUAL = "actual"
    ESTIMATED = "estimated"
    CORRECTION = "correction"


class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"


class BillingStatus(str, enum.Enum):
    """Statuses a bill moves through between issue and settlement."""

    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    VOIDED = "voided"


class BillType(str, enum.Enum):
    REGULAR = "regular"
    ADJUSTMENT = "adjustment"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ReconciliationStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_RECONCILED = "partially_reconciled"
    RECONCILED = "reconciled"


class CreditNoteType(str, enum.Enum):
    PREVIOUS_RESIDENT_DEBT = "previous_resident_debt"
    BILLING_ERROR = "billing_error"
    GOODWILL = "goodwill"
    OTHER = "other"


class CreditNoteStatus(str, enum.Enum):
    APPLIED = "applied"
    VOIDED = "voided"


class BaseModel(models.Model):
    """Abstract base model with common fields."""

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        abstract = True


class Account(BaseModel):
    """A billing entity owning one or more meters."""

    account_number = fields.CharField(max_length=50, unique=True)
    name = fields.CharField(max_length=255)
    status = fields.CharEnumField(AccountStatus, default=AccountStatus.ACTIVE)
    activated_at = fields.DatetimeField(null=True)
    suspended_at = fields.DatetimeField(null=True)

    meters: fields.ReverseRelation[Meter]
    billings: fields.ReverseRelation[Billing]
    payments: fields.ReverseRelation[Payment]

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def __str__(self) -> str:
        return f"{self.account_number} ({self.name})"


class Meter(BaseModel):
    """A physical or logical consumption point owned by an account."""

    meter_number = fields.CharField(max_length=50, unique=True)
    status = fields.CharEnumField(MeterStatus, default=MeterStatus.ACTIVE)
    type = fields.CharEnumField(MeterType, default=MeterType.INDIVIDUAL)
    account: fields.ForeignKeyRelation[Account] = fields.ForeignKeyField(
        "models.Account", related_name="meters"
    )
    parent_meter: fields.ForeignKeyNullableRelation[Meter] = fields.ForeignKeyField(
        "models.Meter",
        related_name="sub_meters",
        null=True,
        on_delete=fields.SET_NULL,
        description="Bulk meter this sub-meter is measured under",
    )
    allocation_percentage = fields.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        description="Share of the bulk meter's consumption charged to this sub-meter",
    )

    readings: fields.ReverseRelation[MeterReading]
    sub_meters: fields.ReverseRelation[Meter]

    def __str__(self) -> str:
        return f"Meter {self.meter_number} ({self.type.value})"


class MeterReading(BaseModel):
    """A cumulative meter value recorded on a given date."""

    meter: fields.ForeignKeyRelation[Meter] = fields.ForeignKeyField(
        "models.Meter", related_name="readings"
    )
    reading_value = fields.DecimalField(max_digits=12, decimal_places=2)
    reading_date = fields.DateField()
    reading_month = fields.DateField(
        description="First day of the reading's calendar month"
    )
    reading_type = fields.CharEnumField(ReadingType, default=ReadingType.ACTUAL)
    is_distributed = fields.BooleanField(default=False)
    distributed_from: fields.ForeignKeyNullableRelation[MeterReading] = (
        fields.ForeignKeyField(
            "models.MeterReading",
            related_name="distributed_readings",
            null=True,
            on_delete=fields.SET_NULL,
            description="Bulk meter reading this sub-meter reading was derived from",
        )
    )
    processing_status = fields.CharEnumField(
        ProcessingStatus, default=ProcessingStatus.PENDING
    )
    notes = fields.TextField(null=True)

    class Meta:
        unique_together = ("meter", "reading_month")

    def __str__(self) -> str:
        return f"Reading for meter {self.meter_id} on {self.reading_date}: {self.reading_value}"


class Tariff(BaseModel):
    """A versioned price list for one meter type."""

    name = fields.CharField(max_length=100)
    meter_type = fields.CharEnumField(MeterType, default=MeterType.INDIVIDUAL)
    effective_from = fields.DateField()
    effective_to = fields.DateField(null=True)
    is_default = fields.BooleanField(default=False)

    rates: fields.ReverseRelation[TariffRate]

    def __str__(self) -> str:
        end = self.effective_to or "now"
        return f"Tariff {self.name} ({self.effective_from} to {end})"


class TariffRate(BaseModel):
    """A consumption band of a tariff."""

    tariff: fields.ForeignKeyRelation[Tariff] = fields.ForeignKeyField(
        "models.Tariff", related_name="rates"
    )
    tier_number = fields.IntField()
    min_units = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    max_units = fields.DecimalField(max_digits=12, decimal_places=2, null=True)
    rate_per_unit = fields.DecimalField(max_digits=12, decimal_places=4)
    fixed_charge = fields.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        unique_together = ("tariff", "tier_number")

    def __str__(self) -> str:
        upper = self.max_units if self.max_units is not None else "∞"
        return f"Tier {self.tier_number}: {self.min_units}-{upper} @ {self.rate_per_unit}"


class Billing(BaseModel):
    """A bill for one account and billing period."""

    account: fields.ForeignKeyRelation[Account] = fields.ForeignKeyField(
        "models.Account", related_name="billings"
    )
    billing_period = fields.CharField(max_length=7)  # YYYY-MM
    period_lock = fields.CharField(
        max_length=7,
        null=True,
        description="billing_period while this is the live regular bill, else NULL",
    )
    bill_type = fields.CharEnumField(BillType, default=BillType.REGULAR)
    opening_balance = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    amount = fields.DecimalField(
        max_digits=12, decimal_places=2, default=0, description="Charges for the period"
    )
    late_fee = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    status = fields.CharEnumField(BillingStatus, default=BillingStatus.PENDING)
    issued_at = fields.DatetimeField()
    due_date = fields.DateField()
    paid_at = fields.DatetimeField(null=True)
    late_fee_applied_at = fields.DatetimeField(null=True)
    voided_at = fields.DatetimeField(null=True)
    void_reason = fields.TextField(null=True)
    original_billing: fields.ForeignKeyNullableRelation[Billing] = (
        fields.ForeignKeyField(
            "models.Billing",
            related_name="adjustment_bills",
            null=True,
            on_delete=fields.SET_NULL,
        )
    )
    carried_forward_to: fields.ForeignKeyNullableRelation[Billing] = (
        fields.ForeignKeyField(
            "models.Billing",
            related_name="carried_from",
            null=True,
            on_delete=fields.SET_NULL,
        )
    )
    carried_forward_amount = fields.DecimalField(
        max_digits=12, decimal_places=2, default=0
    )
    adjustment_reason = fields.TextField(null=True)

    details: fields.ReverseRelation[BillingDetail]
    allocations: fields.ReverseRelation[PaymentAllocation]
    credit_notes: fields.ReverseRelation[CreditNote]

    class Meta:
        unique_together = ("account", "period_lock")

    @property
    def is_voided(self) -> bool:
        return self.status == BillingStatus.VOIDED

    def can_be_modified(self) -> bool:
        return self.status not in (BillingStatus.PAID, BillingStatus.VOIDED)

    def __str__(self) -> str:
        return (
            f"{self.bill_type.value.capitalize()} bill {self.billing_period} "
            f"for account {self.account_id}: {self.total_amount}"
        )


class BillingDetail(BaseModel):
    """A line item tying a bill to one meter's consumption."""

    billing: fields.ForeignKeyRelation[Billing] = fields.ForeignKeyField(
        "models.Billing", related_name="details"
    )
    meter: fields.ForeignKeyRelation[Meter] = fields.ForeignKeyField(
        "models.Meter", related_name="billing_details"
    )
    previous_reading: fields.ForeignKeyNullableRelation[MeterReading] = (
        fields.ForeignKeyField(
            "models.MeterReading",
            related_name="billed_as_previous",
            null=True,
            on_delete=fields.RESTRICT,
        )
    )
    current_reading: fields.ForeignKeyNullableRelation[MeterReading] = (
        fields.ForeignKeyField(
            "models.MeterReading",
            related_name="billed_as_current",
            null=True,
            on_delete=fields.RESTRICT,
        )
    )
    previous_reading_value = fields.DecimalField(max_digits=12, decimal_places=2)
    current_reading_value = fields.DecimalField(max_digits=12, decimal_places=2)
    units_used = fields.DecimalField(max_digits=12, decimal_places=2)
    rate = fields.DecimalField(max_digits=12, decimal_places=4)
    amount = fields.DecimalField(max_digits=12, decimal_places=2)
    breakdown = fields.JSONField(default=list)
    description = fields.CharField(max_length=255, null=True)

    def __str__(self) -> str:
        return f"Detail for meter {self.meter_id}: {self.units_used} units = {self.amount}"


class Payment(BaseModel):
    """Money received from an account."""

    account: fields.ForeignKeyRelation[Account] = fields.ForeignKeyField(
        "models.Account", related_name="payments"
    )
    amount = fields.DecimalField(max_digits=12, decimal_places=2)
    method = fields.CharField(max_length=50, default="cash")
    transaction_id = fields.CharField(max_length=100, unique=True, null=True)
    status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    reconciliation_status = fields.CharEnumField(
        ReconciliationStatus, default=ReconciliationStatus.PENDING
    )
    payment_date = fields.DateField()
    reconciled_at = fields.DatetimeField(null=True)
    reconciled_by = fields.CharField(max_length=100, null=True)

    allocations: fields.ReverseRelation[PaymentAllocation]

    def __str__(self) -> str:
        return f"Payment {self.id} of {self.amount} ({self.status.value})"


class PaymentAllocation(BaseModel):
    """The part of a payment applied to one bill."""

    payment: fields.ForeignKeyRelation[Payment] = fields.ForeignKeyField(
        "models.Payment", related_name="allocations"
    )
    billing: fields.ForeignKeyRelation[Billing] = fields.ForeignKeyField(
        "models.Billing", related_name="allocations"
    )
    allocated_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    allocated_at = fields.DatetimeField()

    def __str__(self) -> str:
        return (
            f"Allocation of {self.allocated_amount} from payment {self.payment_id} "
            f"to bill {self.billing_id}"
        )


class CreditNote(BaseModel):
    """A non-cash adjustment reducing a bill's outstanding balance."""

    billing: fields.ForeignKeyRelation[Billing] = fields.ForeignKeyField(
        "models.Billing", related_name="credit_notes"
    )
    reference = fields.CharField(max_length=20, unique=True)
    type = fields.CharEnumField(CreditNoteType)
    amount = fields.DecimalField(max_digits=12, decimal_places=2)
    reason = fields.TextField()
    status = fields.CharEnumField(CreditNoteStatus, default=CreditNoteStatus.APPLIED)
    void_reason = fields.TextField(null=True)
    voided_at = fields.DatetimeField(null=True)
    created_by = fields.CharField(max_length=100, null=True)
    voided_by = fields.CharField(max_length=100, null=True)

    def __str__(self) -> str:
        return f"Credit note {self.reference}: {self.amount} ({self.status.value})"

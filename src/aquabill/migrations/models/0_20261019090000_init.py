from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE TABLE IF NOT EXISTS "account" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "account_number" VARCHAR(50) NOT NULL UNIQUE,
    "name" VARCHAR(255) NOT NULL,
    "status" VARCHAR(9) NOT NULL DEFAULT 'active',
    "activated_at" TIMESTAMPTZ,
    "suspended_at" TIMESTAMPTZ
);
COMMENT ON COLUMN "account"."status" IS 'ACTIVE: active\nSUSPENDED: suspended\nINACTIVE: inactive';
COMMENT ON TABLE "account" IS 'A billing entity owning one or more meters.';
CREATE TABLE IF NOT EXISTS "meter" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "meter_number" VARCHAR(50) NOT NULL UNIQUE,
    "status" VARCHAR(8) NOT NULL DEFAULT 'active',
    "type" VARCHAR(10) NOT NULL DEFAULT 'individual',
    "account_id" UUID NOT NULL REFERENCES "account" ("id") ON DELETE CASCADE,
    "parent_meter_id" UUID REFERENCES "meter" ("id") ON DELETE SET NULL
);
COMMENT ON COLUMN "meter"."status" IS 'ACTIVE: active\nINACTIVE: inactive\nREPLACED: replaced';
COMMENT ON COLUMN "meter"."type" IS 'INDIVIDUAL: individual\nBULK: bulk';
COMMENT ON COLUMN "meter"."parent_meter_id" IS 'Bulk meter this sub-meter is measured under';
COMMENT ON TABLE "meter" IS 'A physical or logical consumption point owned by an account.';
CREATE TABLE IF NOT EXISTS "meterreading" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "reading_value" DECIMAL(12,2) NOT NULL,
    "reading_date" DATE NOT NULL,
    "reading_month" DATE NOT NULL,
    "reading_type" VARCHAR(10) NOT NULL DEFAULT 'actual',
    "is_distributed" BOOL NOT NULL DEFAULT False,
    "processing_status" VARCHAR(9) NOT NULL DEFAULT 'pending',
    "notes" TEXT,
    "meter_id" UUID NOT NULL REFERENCES "meter" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_meterreadin_meter_i_5c1e0a" UNIQUE ("meter_id", "reading_month")
);
COMMENT ON COLUMN "meterreading"."reading_month" IS 'First day of the reading''s calendar month';
COMMENT ON COLUMN "meterreading"."reading_type" IS 'ACTUAL: actual\nESTIMATED: estimated\nCORRECTION: correction';
COMMENT ON COLUMN "meterreading"."processing_status" IS 'PENDING: pending\nPROCESSED: processed';
COMMENT ON TABLE "meterreading" IS 'A cumulative meter value recorded on a given date.';
CREATE TABLE IF NOT EXISTS "tariff" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "name" VARCHAR(100) NOT NULL,
    "meter_type" VARCHAR(10) NOT NULL DEFAULT 'individual',
    "effective_from" DATE NOT NULL,
    "effective_to" DATE,
    "is_default" BOOL NOT NULL DEFAULT False
);
COMMENT ON COLUMN "tariff"."meter_type" IS 'INDIVIDUAL: individual\nBULK: bulk';
COMMENT ON TABLE "tariff" IS 'A versioned price list for one meter type.';
CREATE TABLE IF NOT EXISTS "tariffrate" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "tier_number" INT NOT NULL,
    "min_units" DECIMAL(12,2) NOT NULL DEFAULT 0,
    "max_units" DECIMAL(12,2),
    "rate_per_unit" DECIMAL(12,4) NOT NULL,
    "fixed_charge" DECIMAL(12,2) NOT NULL DEFAULT 0,
    "tariff_id" UUID NOT NULL REFERENCES "tariff" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_tariffrate_tariff__0b8f3d" UNIQUE ("tariff_id", "tier_number")
);
COMMENT ON TABLE "tariffrate" IS 'A consumption band of a tariff.';
CREATE TABLE IF NOT EXISTS "billing" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "billing_period" VARCHAR(7) NOT NULL,
    "period_lock" VARCHAR(7),
    "bill_type" VARCHAR(10) NOT NULL DEFAULT 'regular',
    "opening_balance" DECIMAL(12,2) NOT NULL DEFAULT 0,
    "amount" DECIMAL(12,2) NOT NULL DEFAULT 0,
    "late_fee" DECIMAL(12,2) NOT NULL DEFAULT 0,
    "total_amount" DECIMAL(12,2) NOT NULL,
    "status" VARCHAR(14) NOT NULL DEFAULT 'pending',
    "issued_at" TIMESTAMPTZ NOT NULL,
    "due_date" DATE NOT NULL,
    "paid_at" TIMESTAMPTZ,
    "late_fee_applied_at" TIMESTAMPTZ,
    "voided_at" TIMESTAMPTZ,
    "void_reason" TEXT,
    "carried_forward_amount" DECIMAL(12,2) NOT NULL DEFAULT 0,
    "adjustment_reason" TEXT,
    "account_id" UUID NOT NULL REFERENCES "account" ("id") ON DELETE CASCADE,
    "carried_forward_to_id" UUID REFERENCES "billing" ("id") ON DELETE SET NULL,
    "original_billing_id" UUID REFERENCES "billing" ("id") ON DELETE SET NULL,
    CONSTRAINT "uid_billing_account_7d2f4e" UNIQUE ("account_id", "period_lock")
);
COMMENT ON COLUMN "billing"."period_lock" IS 'billing_period while this is the live regular bill, else NULL';
COMMENT ON COLUMN "billing"."bill_type" IS 'REGULAR: regular\nADJUSTMENT: adjustment';
COMMENT ON COLUMN "billing"."amount" IS 'Charges for the period';
COMMENT ON COLUMN "billing"."status" IS 'PENDING: pending\nPARTIALLY_PAID: partially_paid\nPAID: paid\nOVERDUE: overdue\nVOIDED: voided';
COMMENT ON TABLE "billing" IS 'A bill for one account and billing period.';
CREATE TABLE IF NOT EXISTS "billingdetail" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "previous_reading_value" DECIMAL(12,2) NOT NULL,
    "current_reading_value" DECIMAL(12,2) NOT NULL,
    "units_used" DECIMAL(12,2) NOT NULL,
    "rate" DECIMAL(12,4) NOT NULL,
    "amount" DECIMAL(12,2) NOT NULL,
    "breakdown" JSONB NOT NULL,
    "description" VARCHAR(255),
    "billing_id" UUID NOT NULL REFERENCES "billing" ("id") ON DELETE CASCADE,
    "current_reading_id" UUID REFERENCES "meterreading" ("id") ON DELETE RESTRICT,
    "meter_id" UUID NOT NULL REFERENCES "meter" ("id") ON DELETE CASCADE,
    "previous_reading_id" UUID REFERENCES "meterreading" ("id") ON DELETE RESTRICT
);
COMMENT ON TABLE "billingdetail" IS 'A line item tying a bill to one meter''s consumption.';
CREATE TABLE IF NOT EXISTS "payment" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "amount" DECIMAL(12,2) NOT NULL,
    "method" VARCHAR(50) NOT NULL DEFAULT 'cash',
    "transaction_id" VARCHAR(100) UNIQUE,
    "status" VARCHAR(9) NOT NULL DEFAULT 'pending',
    "reconciliation_status" VARCHAR(20) NOT NULL DEFAULT 'pending',
    "payment_date" DATE NOT NULL,
    "reconciled_at" TIMESTAMPTZ,
    "reconciled_by" VARCHAR(100),
    "account_id" UUID NOT NULL REFERENCES "account" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "payment"."status" IS 'PENDING: pending\nCOMPLETED: completed\nFAILED: failed';
COMMENT ON COLUMN "payment"."reconciliation_status" IS 'PENDING: pending\nPARTIALLY_RECONCILED: partially_reconciled\nRECONCILED: reconciled';
COMMENT ON TABLE "payment" IS 'Money received from an account.';
CREATE TABLE IF NOT EXISTS "paymentallocation" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "allocated_amount" DECIMAL(12,2) NOT NULL,
    "allocated_at" TIMESTAMPTZ NOT NULL,
    "billing_id" UUID NOT NULL REFERENCES "billing" ("id") ON DELETE CASCADE,
    "payment_id" UUID NOT NULL REFERENCES "payment" ("id") ON DELETE CASCADE
);
COMMENT ON TABLE "paymentallocation" IS 'The part of a payment applied to one bill.';
CREATE TABLE IF NOT EXISTS "creditnote" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "reference" VARCHAR(20) NOT NULL UNIQUE,
    "type" VARCHAR(22) NOT NULL,
    "amount" DECIMAL(12,2) NOT NULL,
    "reason" TEXT NOT NULL,
    "status" VARCHAR(7) NOT NULL DEFAULT 'applied',
    "void_reason" TEXT,
    "voided_at" TIMESTAMPTZ,
    "created_by" VARCHAR(100),
    "voided_by" VARCHAR(100),
    "billing_id" UUID NOT NULL REFERENCES "billing" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "creditnote"."type" IS 'PREVIOUS_RESIDENT_DEBT: previous_resident_debt\nBILLING_ERROR: billing_error\nGOODWILL: goodwill\nOTHER: other';
COMMENT ON COLUMN "creditnote"."status" IS 'APPLIED: applied\nVOIDED: voided';
COMMENT ON TABLE "creditnote" IS 'A non-cash adjustment reducing a bill''s outstanding balance.';
CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        """

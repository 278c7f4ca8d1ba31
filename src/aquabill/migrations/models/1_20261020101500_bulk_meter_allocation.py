from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        ALTER TABLE "meter" ADD "allocation_percentage" DECIMAL(5,2);
        COMMENT ON COLUMN "meter"."allocation_percentage" IS 'Share of the bulk meter''s consumption charged to this sub-meter';
        ALTER TABLE "meterreading" ADD "distributed_from_id" UUID;
        ALTER TABLE "meterreading" ADD CONSTRAINT "fk_meterrea_meterrea_8a4f2c1d" FOREIGN KEY ("distributed_from_id") REFERENCES "meterreading" ("id") ON DELETE SET NULL;
        COMMENT ON COLUMN "meterreading"."distributed_from_id" IS 'Bulk meter reading this sub-meter reading was derived from';"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        ALTER TABLE "meterreading" DROP CONSTRAINT IF EXISTS "fk_meterrea_meterrea_8a4f2c1d";
        ALTER TABLE "meterreading" DROP COLUMN "distributed_from_id";
        ALTER TABLE "meter" DROP COLUMN "allocation_percentage";"""

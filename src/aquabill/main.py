"""Main entry point for the billing worker."""

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from tortoise import Tortoise

from aquabill.config import settings
from aquabill.core.db import TORTOISE_ORM
from aquabill.services.container import build_services
from aquabill.services.scheduler import SchedulerService

logger = logging.getLogger(__name__)


async def on_startup() -> SchedulerService:
    """Initializes the database and starts the scheduled jobs."""
    logger.info("Initializing database...")
    await Tortoise.init(config=TORTOISE_ORM)
    logger.info("Database initialized.")

    services = build_services(settings)
    await services.tariffs.ensure_default()

    scheduler_service = SchedulerService(
        services, AsyncIOScheduler(timezone="UTC")
    )
    scheduler_service.start()
    logger.info("Billing worker started.")
    return scheduler_service


async def on_shutdown(scheduler_service: SchedulerService):
    """Actions on worker shutdown."""
    logger.info("Closing connections...")
    scheduler_service.shutdown()
    await Tortoise.close_connections()
    logger.info("Connections closed.")


async def main():
    """Initializes and runs the worker until it is stopped."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    logger.info("Starting billing worker initialization...")

    scheduler_service = await on_startup()
    try:
        await asyncio.Event().wait()
    finally:
        await on_shutdown(scheduler_service)


def run():
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Worker stopped manually.")


if __name__ == "__main__":
    run()

from apscheduler.jobstores.base import ConflictingIdError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from app.core.settings import Settings
from app.db.session import Database
from app.services.shares.payments import PaymentService


# ================================
# JOB: expire stale PENDING orders
# ================================
async def expire_stale_orders_job(database: Database, settings: Settings):
    logger.info("🔎 Running stale order sweep...")

    async with database.session() as session:
        service = PaymentService(session, gateway=None, settings=settings)
        try:
            expired = await service.expire_stale_orders(settings.ORDER_PENDING_MAX_HOURS)
            logger.success(f"✔ Stale order sweep: {expired} order(s) expired")
        except Exception as e:
            logger.error(f"❌ Stale order sweep error: {e}")


def start_scheduler(database: Database, settings: Settings) -> AsyncIOScheduler:
    """Build and start the scheduler. The caller owns shutdown."""
    scheduler = AsyncIOScheduler()
    try:
        scheduler.add_job(
            expire_stale_orders_job,
            trigger=IntervalTrigger(minutes=settings.ORDER_SWEEP_INTERVAL_MINUTES),
            id="expire_stale_orders_job",
            kwargs={"database": database, "settings": settings},
            replace_existing=True,
            max_instances=1,
        )
    except ConflictingIdError:
        logger.warning("⚠ expire_stale_orders_job existed")

    scheduler.start()
    logger.info(
        f"🔔 Scheduler started (stale order sweep every {settings.ORDER_SWEEP_INTERVAL_MINUTES} min)"
    )
    return scheduler

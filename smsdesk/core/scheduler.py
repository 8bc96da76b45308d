import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from smsdesk.core.config import config
from smsdesk.services.poller import ReconciliationPoller

logger = logging.getLogger("[RECONCILE]")

RECONCILIATION_JOB_ID = "reconcile_orders_periodic"


def init_scheduler(scheduler: AsyncIOScheduler, poller: ReconciliationPoller) -> AsyncIOScheduler:
    """
    Реєструє фонову звірку замовлень.
    max_instances=1 + coalesce: пропущені запуски не накопичуються.
    """
    scheduler.add_job(
        func=poller.run_tick,
        trigger=IntervalTrigger(seconds=config.POLL_INTERVAL_SECONDS),
        id=RECONCILIATION_JOB_ID,
        name="Звірка активацій та оренд з провайдером",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Reconciliation job scheduled every {config.POLL_INTERVAL_SECONDS}s")
    return scheduler


def shutdown_scheduler(scheduler: AsyncIOScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Reconciliation scheduler stopped")

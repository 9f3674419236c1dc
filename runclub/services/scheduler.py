from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
import logging

from runclub.config import get_settings
from runclub.database import SessionLocal
from runclub.services.reconciliation import ReconciliationService

settings = get_settings()
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

jobstores = {
    'default': SQLAlchemyJobStore(url=settings.database_url)
}

RECONCILIATION_JOB_ID = "refund_reconciliation"


def init_scheduler():
    """Initialize the scheduler with job stores and the reconciliation job."""
    scheduler.configure(jobstores=jobstores)
    scheduler.start()
    schedule_reconciliation(settings.reconciliation_interval_seconds)
    logger.info("Scheduler started")


def shutdown_scheduler():
    """Shutdown the scheduler."""
    scheduler.shutdown()
    logger.info("Scheduler shutdown")


def run_reconciliation():
    """Retry refunds whose local writes did not land."""
    db = SessionLocal()
    try:
        counts = ReconciliationService.retry_pending(db)
        if counts["resolved"] or counts["pending"]:
            logger.info(
                f"Reconciliation run: {counts['resolved']} resolved, {counts['pending']} still pending"
            )
    except Exception as e:
        logger.error(f"Error running refund reconciliation: {e}")
    finally:
        db.close()


def schedule_reconciliation(interval_seconds: int):
    scheduler.add_job(
        run_reconciliation,
        'interval',
        seconds=interval_seconds,
        id=RECONCILIATION_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1
    )
    logger.info(f"Scheduled refund reconciliation every {interval_seconds}s")

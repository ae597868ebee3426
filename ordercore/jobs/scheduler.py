"""
APScheduler configuration.

One in-process AsyncIOScheduler, started and stopped by the application
lifespan. Jobs open their own database sessions.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from ordercore.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='Asia/Kolkata'
)


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        from ordercore.jobs.invoice_jobs import retry_pending_final_invoices

        scheduler.add_job(
            retry_pending_final_invoices,
            'interval',
            minutes=settings.FINAL_INVOICE_RETRY_INTERVAL_MINUTES,
            id='retry_pending_final_invoices',
            name='Retry Pending Final Invoices',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]

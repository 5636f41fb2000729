"""
APScheduler Configuration

Background job scheduler for the commission lifecycle:
- Holdback release on a fixed interval
- Weekly partner payouts on a cron trigger

Each job opens its own sessions; a failing run is logged and retried on the
next trigger.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from leadmarket.config import settings
from leadmarket.jobs.commission_jobs import run_holdback_job, run_weekly_payouts_job

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
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE,
)


def register_jobs(target: AsyncIOScheduler = scheduler) -> None:
    """Add the commission jobs to a scheduler, replacing earlier registrations."""
    target.add_job(
        run_holdback_job,
        'interval',
        minutes=settings.HOLDBACK_INTERVAL_MINUTES,
        id='release_commission_holdback',
        name='Release Commission Holdback',
        replace_existing=True,
    )

    target.add_job(
        run_weekly_payouts_job,
        'cron',
        day_of_week=settings.PAYOUT_CRON_DAY_OF_WEEK,
        hour=settings.PAYOUT_CRON_HOUR,
        minute=0,
        id='weekly_partner_payouts',
        name='Weekly Partner Payouts',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        register_jobs(scheduler)
        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    status = []
    for job in jobs:
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, 'next_run_time', None)
        status.append({
            'id': job.id,
            'name': job.name,
            'next_run_time': str(next_run) if next_run else None,
            'trigger': str(job.trigger),
        })
    return status

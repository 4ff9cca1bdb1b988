"""
APScheduler Configuration

Background jobs for the rewards engine:
- Annual tier renewal (cron, RENEWAL_CRON)
- Recompute outbox drain (interval, RECOMPUTE_INTERVAL_SECONDS)
- Rewards config cache refresh (interval, REWARDS_CONFIG_REFRESH_SECONDS)

The scheduler is built per application in main.lifespan and carried on
app.state alongside the services it drives.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.cron import CronTrigger

from partner_rewards.config import Settings
from partner_rewards.jobs.recompute_worker import RecomputeWorker
from partner_rewards.services.renewal_service import RenewalService
from partner_rewards.services.rewards_config_service import RewardsConfigCache

logger = logging.getLogger(__name__)


def build_scheduler(settings: Settings) -> AsyncIOScheduler:
    return AsyncIOScheduler(
        jobstores={
            'default': MemoryJobStore()
        },
        executors={
            'default': AsyncIOExecutor(),
        },
        job_defaults={
            'coalesce': True,  # Combine multiple pending executions into one
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
        },
        timezone=settings.SCHEDULER_TIMEZONE,
    )


async def run_tier_renewal(renewal_service: RenewalService):
    """Scheduled entry point for the renewal batch."""
    try:
        stats = await renewal_service.process_all_due_renewals()
        if stats.skipped:
            logger.info("Job 'tier_renewal' skipped: lease held elsewhere")
        else:
            logger.info(
                f"Job 'tier_renewal' completed: {stats.processed} processed, "
                f"{stats.downgraded} downgraded, {len(stats.errors)} errors"
            )
    except Exception as e:
        logger.error(f"Job 'tier_renewal' failed: {e}")


async def run_recompute_drain(worker: RecomputeWorker):
    await worker.drain()


async def run_config_refresh(config_cache: RewardsConfigCache):
    try:
        config = await config_cache.refresh()
        logger.debug(f"Rewards config refreshed (v{config.version})")
    except Exception as e:
        logger.error(f"Job 'config_refresh' failed: {e}")


def start_scheduler(
    scheduler: AsyncIOScheduler,
    settings: Settings,
    renewal_service: RenewalService,
    worker: RecomputeWorker,
    config_cache: RewardsConfigCache,
):
    """Register the rewards jobs and start the scheduler."""
    if scheduler.running:
        return

    # Annual renewal check (monthly by default)
    scheduler.add_job(
        run_tier_renewal,
        CronTrigger.from_crontab(settings.RENEWAL_CRON, timezone=settings.SCHEDULER_TIMEZONE),
        args=[renewal_service],
        id='tier_renewal',
        name='Annual Tier Renewal',
        replace_existing=True,
    )

    # Drain the recompute outbox
    scheduler.add_job(
        run_recompute_drain,
        'interval',
        seconds=settings.RECOMPUTE_INTERVAL_SECONDS,
        args=[worker],
        id='recompute_drain',
        name='Recompute Outbox Drain',
        replace_existing=True,
    )

    # Keep the config cache warm
    scheduler.add_job(
        run_config_refresh,
        'interval',
        seconds=settings.REWARDS_CONFIG_REFRESH_SECONDS,
        args=[config_cache],
        id='config_refresh',
        name='Rewards Config Refresh',
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    # Log all scheduled jobs
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler(scheduler: AsyncIOScheduler):
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status(scheduler: AsyncIOScheduler):
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]

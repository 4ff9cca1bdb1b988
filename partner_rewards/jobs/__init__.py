"""
Background Jobs Module

Handles scheduled tasks for:
- Annual tier renewal
- Recompute outbox drain
- Rewards config refresh
"""

from partner_rewards.jobs.recompute_worker import RecomputeWorker
from partner_rewards.jobs.scheduler import build_scheduler, start_scheduler, shutdown_scheduler, get_job_status

__all__ = [
    "RecomputeWorker",
    "build_scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
]

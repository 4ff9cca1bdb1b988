"""
Recompute Worker

Drains the recompute outbox (recompute_tasks). Pending rows are coalesced
per (partner_id, kind) so a burst of signals for one partner costs a single
recomputation. Each group runs in its own session:

- rating:       RatingService.recalculate_and_update_partner
- achievements: automatic achievements, then eligibility-driven promotion

Failures are logged and recorded on the task rows (attempts, last_error);
a group is retried on the next drain until RECOMPUTE_MAX_ATTEMPTS.
Nothing is ever raised into the caller.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from partner_rewards.config import Settings
from partner_rewards.core.exceptions import NotFoundError
from partner_rewards.database import session_scope, utcnow
from partner_rewards.models.recompute_task import RecomputeTask, RecomputeKind, RecomputeStatus
from partner_rewards.schemas.rewards_config import RewardsConfig
from partner_rewards.services.achievement_service import AchievementService
from partner_rewards.services.rating_service import RatingService
from partner_rewards.services.rewards_config_service import RewardsConfigCache
from partner_rewards.services.tier_service import TierService

logger = logging.getLogger(__name__)

GroupKey = Tuple[uuid.UUID, str]


class RecomputeWorker:
    """Coalescing drain of the recompute outbox."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config_cache: RewardsConfigCache,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.config_cache = config_cache
        self.batch_size = settings.RECOMPUTE_BATCH_SIZE
        self.max_attempts = settings.RECOMPUTE_MAX_ATTEMPTS
        self.event_window_days = settings.RATING_EVENT_WINDOW_DAYS
        self._lock = asyncio.Lock()

    async def _fetch_groups(self) -> Dict[GroupKey, List[RecomputeTask]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RecomputeTask)
                .where(RecomputeTask.status == RecomputeStatus.PENDING.value)
                .order_by(RecomputeTask.id)
                .limit(self.batch_size)
            )
            tasks = result.scalars().all()

        groups: Dict[GroupKey, List[RecomputeTask]] = OrderedDict()
        for task in tasks:
            groups.setdefault((task.partner_id, task.kind), []).append(task)

        # Ratings first: promotion reads the stored rating
        return OrderedDict(sorted(
            groups.items(),
            key=lambda item: item[0][1] != RecomputeKind.RATING.value,
        ))

    async def _run_group(
        self,
        session: AsyncSession,
        partner_id: uuid.UUID,
        kind: str,
        actor_id: Optional[str],
        config: Optional[RewardsConfig],
    ) -> None:
        if kind == RecomputeKind.RATING.value:
            await RatingService(session, self.event_window_days).recalculate_and_update_partner(
                partner_id, actor_id
            )
            return

        awarded = await AchievementService(session, config).evaluate_automatic_achievements(partner_id)
        promotion = await TierService(session, config).promote_if_eligible(partner_id)
        if awarded or promotion:
            logger.info(
                f"Partner {partner_id}: awarded={awarded} "
                f"promoted={promotion.tier if promotion else None}"
            )

    async def _mark(self, task_ids: List[int], **values) -> None:
        async with session_scope(self.session_factory) as session:
            await session.execute(
                update(RecomputeTask)
                .where(RecomputeTask.id.in_(task_ids))
                .values(attempts=RecomputeTask.attempts + 1, **values)
            )

    async def _process_group(self, key: GroupKey, tasks: List[RecomputeTask]) -> bool:
        partner_id, kind = key
        task_ids = [task.id for task in tasks]
        actor_id = tasks[-1].actor_id

        try:
            config = None
            if kind == RecomputeKind.ACHIEVEMENTS.value:
                config = await self.config_cache.get()
            async with session_scope(self.session_factory) as session:
                await self._run_group(session, partner_id, kind, actor_id, config)
                await session.execute(
                    update(RecomputeTask)
                    .where(RecomputeTask.id.in_(task_ids))
                    .values(
                        status=RecomputeStatus.DONE.value,
                        attempts=RecomputeTask.attempts + 1,
                        processed_at=utcnow(),
                        last_error=None,
                    )
                )
            return True
        except NotFoundError as e:
            logger.warning(f"Recompute {kind} dropped for partner {partner_id}: {e.message}")
            await self._mark(
                task_ids,
                status=RecomputeStatus.FAILED.value,
                last_error=e.message,
                processed_at=utcnow(),
            )
        except Exception as e:
            logger.exception(f"Recompute {kind} failed for partner {partner_id}")
            exhausted = max(task.attempts for task in tasks) + 1 >= self.max_attempts
            await self._mark(
                task_ids,
                status=RecomputeStatus.FAILED.value if exhausted else RecomputeStatus.PENDING.value,
                last_error=str(e)[:2000],
                processed_at=utcnow() if exhausted else None,
            )
        return False

    async def drain(self) -> dict:
        """Process one batch of pending tasks. Returns a summary."""
        if self._lock.locked():
            return {"status": "skipped", "groups": 0, "tasks": 0, "failed": 0}

        async with self._lock:
            start_time = datetime.now(timezone.utc)
            try:
                groups = await self._fetch_groups()
            except Exception as e:
                logger.error(f"Recompute worker could not read the outbox: {e}")
                return {"status": "failed", "groups": 0, "tasks": 0, "failed": 0}

            failed = 0
            for key, tasks in groups.items():
                try:
                    if not await self._process_group(key, tasks):
                        failed += 1
                except Exception as e:
                    # Marking the failure itself failed; the rows stay pending
                    logger.error(f"Recompute bookkeeping failed for {key}: {e}")
                    failed += 1

            duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
            summary = {
                "status": "completed",
                "groups": len(groups),
                "tasks": sum(len(tasks) for tasks in groups.values()),
                "failed": failed,
                "duration_ms": duration_ms,
            }
            if groups:
                logger.info(
                    f"Recompute drain: {summary['groups']} groups / {summary['tasks']} tasks, "
                    f"{failed} failed in {duration_ms}ms"
                )
            return summary

"""
Recompute outbox writer.

Business changes enqueue RecomputeTask rows on the caller's session so the
request and the task commit (or roll back) together. The recompute worker
(jobs/recompute_worker.py) drains them.
"""
import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from partner_rewards.models.recompute_task import RecomputeTask, RecomputeKind, RecomputeStatus


ALL_KINDS = (RecomputeKind.RATING.value, RecomputeKind.ACHIEVEMENTS.value)


async def enqueue_recompute(
    db: AsyncSession,
    partner_ids: Iterable[uuid.UUID],
    kinds: Sequence[str] = ALL_KINDS,
    actor_id: Optional[str] = None,
) -> int:
    """Insert one pending task per (partner, kind). Returns the number of rows."""
    rows = [
        {
            "partner_id": partner_id,
            "actor_id": actor_id,
            "kind": RecomputeKind(kind).value,
            "status": RecomputeStatus.PENDING.value,
            "attempts": 0,
        }
        for partner_id in partner_ids
        for kind in kinds
    ]
    if not rows:
        return 0
    await db.execute(insert(RecomputeTask), rows)
    return len(rows)

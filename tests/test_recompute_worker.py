"""Tests for the recompute outbox drain."""

import uuid

import pytest
from sqlalchemy import select

from partner_rewards.database import session_scope
from partner_rewards.jobs.recompute_worker import RecomputeWorker
from partner_rewards.models.recompute_task import RecomputeTask
from partner_rewards.services.outbox import enqueue_recompute


@pytest.fixture
async def worker(session_factory, config_cache, settings):
    # Prime the cache so drains never open a second session for it
    await config_cache.refresh()
    return RecomputeWorker(session_factory, config_cache, settings)


async def _enqueue(session_factory, partner_id, kinds):
    async with session_scope(session_factory) as session:
        await enqueue_recompute(session, [partner_id], kinds=kinds)


async def _tasks(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(RecomputeTask).order_by(RecomputeTask.id))
        return list(result.scalars().all())


class TestDrain:
    """Coalescing and ordering."""

    @pytest.mark.asyncio
    async def test_burst_coalesced_into_one_group(self, worker, session_factory, seed_partner):
        partner_id = await seed_partner()
        for _ in range(3):
            await _enqueue(session_factory, partner_id, ["rating"])

        summary = await worker.drain()

        assert (summary["groups"], summary["tasks"], summary["failed"]) == (1, 3, 0)
        tasks = await _tasks(session_factory)
        assert {t.status for t in tasks} == {"done"}
        assert all(t.processed_at is not None for t in tasks)

    @pytest.mark.asyncio
    async def test_rating_runs_before_promotion(self, worker, session_factory, seed_partner, load_partner):
        partner_id = await seed_partner(active_certifications=1, annual_certified_employees=1)
        # Achievements queued first on purpose
        await _enqueue(session_factory, partner_id, ["achievements"])
        await _enqueue(session_factory, partner_id, ["rating"])

        summary = await worker.drain()

        assert summary["failed"] == 0
        partner = await load_partner(partner_id)
        assert partner.rating == pytest.approx(2.9)
        assert partner.tier == "silver"
        assert partner.achievement_points == 50

    @pytest.mark.asyncio
    async def test_empty_outbox(self, worker):
        summary = await worker.drain()

        assert summary["status"] == "completed"
        assert summary["groups"] == 0


class TestFailures:
    """Failed groups are recorded, never raised."""

    @pytest.mark.asyncio
    async def test_unknown_partner_marked_failed(self, worker, session_factory):
        await _enqueue(session_factory, uuid.uuid4(), ["rating"])

        summary = await worker.drain()

        assert summary["failed"] == 1
        [task] = await _tasks(session_factory)
        assert task.status == "failed"
        assert task.attempts == 1
        assert "not found" in task.last_error

    @pytest.mark.asyncio
    async def test_retried_until_max_attempts(
        self, session_factory, config_cache, settings, seed_partner, monkeypatch
    ):
        partner_id = await seed_partner()
        await _enqueue(session_factory, partner_id, ["rating"])
        worker = RecomputeWorker(
            session_factory,
            config_cache,
            settings.model_copy(update={"RECOMPUTE_MAX_ATTEMPTS": 2}),
        )

        async def broken(session, partner_id, kind, actor_id, config):
            raise RuntimeError("deadlock detected")

        monkeypatch.setattr(worker, "_run_group", broken)

        await worker.drain()
        [task] = await _tasks(session_factory)
        assert (task.status, task.attempts, task.last_error) == ("pending", 1, "deadlock detected")

        await worker.drain()
        [task] = await _tasks(session_factory)
        assert (task.status, task.attempts) == ("failed", 2)
        assert task.processed_at is not None

        # Exhausted rows are no longer picked up
        assert (await worker.drain())["tasks"] == 0

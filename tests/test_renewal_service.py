"""Tests for the annual renewal batch and its lease."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from partner_rewards.core.calendar import add_years
from partner_rewards.database import utcnow
from partner_rewards.models.audit_log import AuditLog
from partner_rewards.models.tier_history import TierHistoryEntry
from partner_rewards.services.renewal_service import (
    RENEWAL_LEASE_KEY,
    RENEWED,
    InMemoryLease,
    RedisLease,
    RenewalService,
)


@pytest.fixture
def lease():
    return InMemoryLease()


@pytest.fixture
def renewal_service(session_factory, config_cache, lease, settings):
    return RenewalService(session_factory, config_cache, lease, settings)


async def _history(session_factory, partner_id):
    async with session_factory() as session:
        result = await session.execute(
            select(TierHistoryEntry).where(TierHistoryEntry.partner_id == partner_id)
        )
        return list(result.scalars().all())


class TestRenewalBatch:
    """process_all_due_renewals"""

    @pytest.mark.asyncio
    async def test_unmet_requirements_downgrade_one_tier(
        self, renewal_service, seed_partner, load_partner, session_factory
    ):
        now = utcnow()
        due = now - timedelta(days=1)
        partner_id = await seed_partner(
            tier="gold",
            renewal_due_at=due,
            annual_certified_employees=1,
            annual_opportunities=4,
            annual_deals_won=0,
        )

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert (stats.processed, stats.downgraded, stats.renewed) == (1, 1, 0)
        assert stats.errors == []

        partner = await load_partner(partner_id)
        assert partner.tier == "silver"
        assert partner.renewal_due_at == add_years(due, 1)
        assert partner.annual_counters == {"certified_employees": 0, "opportunities": 0, "deals_won": 0}

        history = await _history(session_factory, partner_id)
        assert [(h.tier, h.previous_tier, h.reason) for h in history] == [
            ("silver", "gold", "annual_renewal")
        ]

    @pytest.mark.asyncio
    async def test_second_run_processes_nothing(self, renewal_service, seed_partner):
        now = utcnow()
        await seed_partner(tier="gold", renewal_due_at=now - timedelta(days=1))

        first = await renewal_service.process_all_due_renewals(now=now)
        second = await renewal_service.process_all_due_renewals(now=now)

        assert first.processed == 1
        assert second.processed == 0
        assert second.skipped is False

    @pytest.mark.asyncio
    async def test_met_requirements_keep_tier(
        self, renewal_service, seed_partner, load_partner, session_factory
    ):
        now = utcnow()
        partner_id = await seed_partner(
            tier="silver",
            renewal_due_at=now - timedelta(hours=1),
            annual_certified_employees=1,
        )

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert (stats.processed, stats.renewed, stats.downgraded) == (1, 1, 0)
        partner = await load_partner(partner_id)
        assert partner.tier == "silver"
        assert partner.annual_certified_employees == 0
        assert await _history(session_factory, partner_id) == []

        async with session_factory() as session:
            audit = (await session.execute(
                select(AuditLog).where(AuditLog.action == "TIER_RENEWAL_CONFIRMED")
            )).scalars().all()
        assert [a.entity_id for a in audit] == [str(partner_id)]

    @pytest.mark.asyncio
    async def test_bronze_never_drops(self, renewal_service, seed_partner, load_partner):
        now = utcnow()
        partner_id = await seed_partner(tier="bronze", renewal_due_at=now - timedelta(days=3))

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert stats.renewed == 1
        assert (await load_partner(partner_id)).tier == "bronze"

    @pytest.mark.asyncio
    async def test_partners_not_due_untouched(self, renewal_service, seed_partner, load_partner):
        now = utcnow()
        due = now + timedelta(days=30)
        partner_id = await seed_partner(tier="gold", renewal_due_at=due)

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert stats.processed == 0
        partner = await load_partner(partner_id)
        assert partner.tier == "gold"
        assert partner.renewal_due_at == due

    @pytest.mark.asyncio
    async def test_overdue_by_years_lands_in_future(self, renewal_service, seed_partner, load_partner):
        now = utcnow()
        partner_id = await seed_partner(tier="silver", renewal_due_at=now - timedelta(days=800))

        await renewal_service.process_all_due_renewals(now=now)

        partner = await load_partner(partner_id)
        assert now < partner.renewal_due_at <= add_years(now, 1)


class TestLeaseAndErrors:
    """Lease exclusion and per-partner error isolation."""

    @pytest.mark.asyncio
    async def test_lease_held_skips_run(self, renewal_service, lease, seed_partner, load_partner):
        now = utcnow()
        partner_id = await seed_partner(tier="gold", renewal_due_at=now - timedelta(days=1))
        await lease.acquire(RENEWAL_LEASE_KEY, 60)

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert stats.skipped is True
        assert stats.processed == 0
        assert (await load_partner(partner_id)).tier == "gold"

    @pytest.mark.asyncio
    async def test_lease_released_after_run(self, renewal_service, lease):
        await renewal_service.process_all_due_renewals()

        assert await lease.acquire(RENEWAL_LEASE_KEY, 60) is not None

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(
        self, renewal_service, seed_partner, load_partner, monkeypatch
    ):
        now = utcnow()
        bad_id = await seed_partner(tier="gold", renewal_due_at=now - timedelta(days=2))
        good_id = await seed_partner(tier="gold", renewal_due_at=now - timedelta(days=1))

        original = renewal_service.process_partner

        async def flaky(partner_id, config, when):
            if partner_id == bad_id:
                raise RuntimeError("partner row locked")
            return await original(partner_id, config, when)

        monkeypatch.setattr(renewal_service, "process_partner", flaky)

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert stats.processed == 1
        assert [(e.partner_id, e.error) for e in stats.errors] == [(str(bad_id), "partner row locked")]
        assert (await load_partner(good_id)).tier == "silver"
        assert (await load_partner(bad_id)).tier == "gold"


class TestManualOverridePolicy:
    """Manual tier set during the period being renewed."""

    @pytest.mark.asyncio
    async def test_respect_keeps_manual_tier(self, renewal_service, seed_partner, load_partner):
        now = utcnow()
        partner_id = await seed_partner(
            tier="gold",
            renewal_due_at=now - timedelta(days=1),
            manual_tier_set_at=now - timedelta(days=60),
        )

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert stats.renewed == 1
        partner = await load_partner(partner_id)
        assert partner.tier == "gold"
        assert partner.annual_counters == {"certified_employees": 0, "opportunities": 0, "deals_won": 0}

    @pytest.mark.asyncio
    async def test_manual_change_before_period_not_protected(self, renewal_service, seed_partner, load_partner):
        now = utcnow()
        partner_id = await seed_partner(
            tier="gold",
            renewal_due_at=now - timedelta(days=1),
            manual_tier_set_at=now - timedelta(days=500),
        )

        await renewal_service.process_all_due_renewals(now=now)

        assert (await load_partner(partner_id)).tier == "silver"

    @pytest.mark.asyncio
    async def test_overwrite_policy_downgrades(
        self, session_factory, config_cache, lease, settings, seed_partner, load_partner
    ):
        now = utcnow()
        partner_id = await seed_partner(
            tier="gold",
            renewal_due_at=now - timedelta(days=1),
            manual_tier_set_at=now - timedelta(days=60),
        )
        overwrite = settings.model_copy(update={"RENEWAL_MANUAL_OVERRIDE_POLICY": "overwrite"})
        service = RenewalService(session_factory, config_cache, lease, overwrite)

        stats = await service.process_all_due_renewals(now=now)

        assert stats.downgraded == 1
        assert (await load_partner(partner_id)).tier == "silver"


class TestLeapDayAnchor:
    """Renewal dates anchored on Feb 29."""

    @pytest.mark.asyncio
    async def test_leap_anchor_returns_in_leap_year(self, renewal_service, seed_partner, load_partner):
        now = datetime(2027, 3, 1, tzinfo=timezone.utc)
        partner_id = await seed_partner(
            tier="bronze",
            renewal_due_at=datetime(2027, 2, 28, tzinfo=timezone.utc),
            renewal_anchor_at=datetime(2024, 2, 29, tzinfo=timezone.utc),
        )

        stats = await renewal_service.process_all_due_renewals(now=now)

        assert stats.renewed == 1
        partner = await load_partner(partner_id)
        assert partner.renewal_due_at == datetime(2028, 2, 29, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_missing_anchor_taken_from_due_date(self, renewal_service, seed_partner, load_partner):
        now = utcnow()
        due = now - timedelta(days=1)
        partner_id = await seed_partner(tier="bronze", renewal_due_at=due)

        await renewal_service.process_all_due_renewals(now=now)

        partner = await load_partner(partner_id)
        assert partner.renewal_anchor_at == due
        assert partner.renewal_due_at == add_years(due, 1)


class TestConcurrency:
    """RENEWAL_MAX_CONCURRENT bounds the partners evaluated at once."""

    @pytest.mark.asyncio
    async def test_batch_respects_concurrency_limit(
        self, session_factory, config_cache, lease, settings, seed_partner, monkeypatch
    ):
        now = utcnow()
        for days in range(1, 5):
            await seed_partner(tier="gold", renewal_due_at=now - timedelta(days=days))
        service = RenewalService(
            session_factory,
            config_cache,
            lease,
            settings.model_copy(update={"RENEWAL_MAX_CONCURRENT": 2}),
        )

        in_flight = 0
        peak = 0

        async def slow(partner_id, config, when):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return RENEWED

        monkeypatch.setattr(service, "process_partner", slow)

        stats = await service.process_all_due_renewals(now=now)

        assert (stats.processed, stats.renewed) == (4, 4)
        assert peak == 2


class TestRedisLease:
    """Lease semantics against an in-process Redis."""

    @pytest.fixture
    def redis_lease(self):
        fakeredis = pytest.importorskip("fakeredis", reason="fakeredis is required for Redis lease tests")
        lease = RedisLease("redis://localhost:6379/0")
        lease._client = fakeredis.aioredis.FakeRedis(decode_responses=True)
        return lease

    @pytest.mark.asyncio
    async def test_second_acquire_refused_while_held(self, redis_lease):
        token = await redis_lease.acquire(RENEWAL_LEASE_KEY, 60)

        assert token is not None
        assert await redis_lease.acquire(RENEWAL_LEASE_KEY, 60) is None
        assert await redis_lease._client.ttl(RENEWAL_LEASE_KEY) > 0

    @pytest.mark.asyncio
    async def test_release_requires_owner_token(self, redis_lease):
        token = await redis_lease.acquire(RENEWAL_LEASE_KEY, 60)

        assert await redis_lease.release(RENEWAL_LEASE_KEY, "someone-else") is False
        assert await redis_lease.acquire(RENEWAL_LEASE_KEY, 60) is None

        assert await redis_lease.release(RENEWAL_LEASE_KEY, token) is True
        assert await redis_lease.acquire(RENEWAL_LEASE_KEY, 60) is not None

    @pytest.mark.asyncio
    async def test_batch_skipped_while_redis_lease_held(
        self, redis_lease, session_factory, config_cache, settings, seed_partner, load_partner
    ):
        now = utcnow()
        partner_id = await seed_partner(tier="gold", renewal_due_at=now - timedelta(days=1))
        service = RenewalService(session_factory, config_cache, redis_lease, settings)
        await redis_lease.acquire(RENEWAL_LEASE_KEY, 60)

        stats = await service.process_all_due_renewals(now=now)

        assert stats.skipped is True
        assert (await load_partner(partner_id)).tier == "gold"

    @pytest.mark.asyncio
    async def test_batch_releases_redis_lease(self, redis_lease, session_factory, config_cache, settings):
        service = RenewalService(session_factory, config_cache, redis_lease, settings)

        await service.process_all_due_renewals()

        assert await redis_lease._client.exists(RENEWAL_LEASE_KEY) == 0
        await redis_lease.close()
        assert redis_lease._client is None

"""Tests for versioned rewards config storage and the process cache."""

import pytest
from sqlalchemy import select

from partner_rewards.core.exceptions import InternalError, NotFoundError, ValidationError
from partner_rewards.database import session_scope
from partner_rewards.models.audit_log import AuditLog
from partner_rewards.models.recompute_task import RecomputeTask
from partner_rewards.models.rewards_config import RewardsConfigVersion
from partner_rewards.services.rewards_config_service import RewardsConfigService


def _with_gold_discount(config, discount):
    payload = config.payload()
    payload["tiers"]["gold"]["benefits"]["discount"] = discount
    return payload


class TestConfigVersions:
    """Load, save, history and rollback."""

    @pytest.mark.asyncio
    async def test_defaults_when_nothing_saved(self, db, config):
        loaded = await RewardsConfigService(db).load_config()

        assert loaded.version == 0
        assert loaded == config

    @pytest.mark.asyncio
    async def test_save_creates_version_and_queues_partners(self, db, config, admin, add_partner):
        first = await add_partner()
        second = await add_partner(name="Globex Care")
        service = RewardsConfigService(db)

        saved = await service.save_config(_with_gold_discount(config, 27), admin, "Gold promo")

        assert saved.version == 1
        assert saved.tiers["gold"].benefits.discount == 27
        assert (await service.load_config()).version == 1

        audit = (await db.execute(select(AuditLog))).scalars().all()
        assert [(a.action, a.entity_id, a.actor_id) for a in audit] == [
            ("REWARDS_CONFIG_UPDATED", "1", "admin-1")
        ]
        tasks = (await db.execute(select(RecomputeTask))).scalars().all()
        assert {t.partner_id for t in tasks} == {first.id, second.id}
        assert {t.kind for t in tasks} == {"achievements"}

    @pytest.mark.asyncio
    async def test_unknown_achievement_reference_rejected(self, db, config, admin):
        payload = config.payload()
        payload["tiers"]["silver"]["achievements"]["required"] = ["moon_landing"]

        with pytest.raises(ValidationError):
            await RewardsConfigService(db).save_config(payload, admin)

    @pytest.mark.asyncio
    async def test_missing_tier_rejected(self, db, config, admin):
        payload = config.payload()
        del payload["tiers"]["platinum"]

        with pytest.raises(ValidationError):
            await RewardsConfigService(db).save_config(payload, admin)
        assert await RewardsConfigService(db).list_history() == []

    @pytest.mark.asyncio
    async def test_history_newest_first(self, db, config, admin):
        service = RewardsConfigService(db)
        await service.save_config(config.payload(), admin, "initial")
        await service.save_config(_with_gold_discount(config, 26), admin, "bump gold")

        history = await service.list_history()

        assert [(h.version, h.note) for h in history] == [(2, "bump gold"), (1, "initial")]

    @pytest.mark.asyncio
    async def test_rollback_saves_new_version(self, db, config, admin):
        service = RewardsConfigService(db)
        await service.save_config(_with_gold_discount(config, 27), admin)
        await service.save_config(config.payload(), admin)

        restored = await service.rollback(1, admin)

        assert restored.version == 3
        assert restored.tiers["gold"].benefits.discount == 27
        latest = await service.get_latest_version()
        assert latest.note == "Rollback to version 1"

    @pytest.mark.asyncio
    async def test_rollback_unknown_version(self, db, admin):
        with pytest.raises(NotFoundError):
            await RewardsConfigService(db).rollback(42, admin)

    @pytest.mark.asyncio
    async def test_invalid_stored_payload(self, db):
        db.add(RewardsConfigVersion(version=1, payload={"achievements": {}, "tiers": {}}))
        await db.flush()

        with pytest.raises(InternalError):
            await RewardsConfigService(db).load_config()


class TestConfigCache:
    """Process-local cache refresh behavior."""

    @pytest.mark.asyncio
    async def test_refresh_picks_up_saved_version(self, config_cache, session_factory, config, admin):
        assert (await config_cache.get()).version == 0

        async with session_scope(session_factory) as session:
            await RewardsConfigService(session).save_config(config.payload(), admin)

        # Still fresh: the old version is served until invalidated
        assert (await config_cache.get()).version == 0
        config_cache.invalidate()
        assert (await config_cache.get()).version == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_serves_last_good(self, config_cache, monkeypatch):
        await config_cache.get()
        config_cache.invalidate()

        async def unavailable():
            raise OSError("connection refused")

        monkeypatch.setattr(config_cache, "refresh", unavailable)

        assert (await config_cache.get()).version == 0

    @pytest.mark.asyncio
    async def test_failed_refresh_with_nothing_cached(self, config_cache, monkeypatch):
        async def unavailable():
            raise OSError("connection refused")

        monkeypatch.setattr(config_cache, "refresh", unavailable)

        with pytest.raises(InternalError):
            await config_cache.get()

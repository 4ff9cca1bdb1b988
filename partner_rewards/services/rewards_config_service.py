"""
Rewards Config Service - versioned tier/achievement configuration.

Handles:
- Loading the active config (highest stored version, else built-in defaults)
- Saving a new version with audit trail
- Version history and rollback
- Process-local cache refreshed on a bounded interval
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pydantic
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from partner_rewards.core.defaults import build_default_config
from partner_rewards.core.exceptions import InternalError, NotFoundError, ValidationError
from partner_rewards.core.security import Actor
from partner_rewards.models.partner import Partner
from partner_rewards.models.recompute_task import RecomputeKind
from partner_rewards.models.rewards_config import RewardsConfigVersion
from partner_rewards.schemas.rewards_config import RewardsConfig
from partner_rewards.services.audit_service import AuditService
from partner_rewards.services.outbox import enqueue_recompute

logger = logging.getLogger(__name__)


def _validation_details(exc: pydantic.ValidationError) -> dict:
    return {
        "errors": [
            {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
            for error in exc.errors()
        ]
    }


class RewardsConfigService:
    """Persistence for rewards config versions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_latest_version(self) -> Optional[RewardsConfigVersion]:
        result = await self.db.execute(
            select(RewardsConfigVersion)
            .order_by(RewardsConfigVersion.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def load_config(self) -> RewardsConfig:
        """
        Active config: the highest stored version, or the built-in defaults
        when nothing was ever saved.

        Raises:
            InternalError: the stored payload no longer validates
        """
        row = await self.get_latest_version()
        if row is None:
            return build_default_config()

        try:
            return RewardsConfig.model_validate({**row.payload, "version": row.version})
        except pydantic.ValidationError as e:
            logger.error(f"Stored rewards config v{row.version} is invalid: {e}")
            raise InternalError(
                f"Stored rewards config version {row.version} is invalid",
                _validation_details(e),
            )

    async def save_config(
        self,
        payload: dict,
        actor: Actor,
        note: Optional[str] = None,
    ) -> RewardsConfig:
        """
        Validate and store a new config version.

        Every partner gets an achievements recompute task, since the new
        definitions may change what they hold or qualify for.

        Raises:
            ValidationError: the payload is malformed
        """
        try:
            config = RewardsConfig.model_validate({**payload, "version": 0})
        except pydantic.ValidationError as e:
            raise ValidationError("Invalid rewards config", _validation_details(e))

        current = await self.db.scalar(select(func.max(RewardsConfigVersion.version)))
        version = (current or 0) + 1
        config = config.model_copy(update={"version": version})

        self.db.add(RewardsConfigVersion(
            version=version,
            payload=config.payload(),
            updated_by=actor.id,
            note=note,
        ))

        await AuditService(self.db).log(
            action="REWARDS_CONFIG_UPDATED",
            entity_type="REWARDS_CONFIG",
            entity_id=str(version),
            actor_id=actor.id,
            old_values={"version": current or 0},
            new_values={"version": version},
            description=note or f"Rewards config saved as version {version}",
        )

        partner_ids = (await self.db.execute(select(Partner.id))).scalars().all()
        queued = await enqueue_recompute(
            self.db, partner_ids, kinds=[RecomputeKind.ACHIEVEMENTS.value], actor_id=actor.id
        )
        await self.db.flush()

        logger.info(f"Rewards config v{version} saved by {actor.id}; {queued} partners queued for re-evaluation")
        return config

    async def list_history(self, limit: int = 50) -> List[RewardsConfigVersion]:
        result = await self.db.execute(
            select(RewardsConfigVersion)
            .order_by(RewardsConfigVersion.version.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def rollback(self, version: int, actor: Actor) -> RewardsConfig:
        """Re-save an older version's payload as the newest version."""
        row = await self.db.get(RewardsConfigVersion, version)
        if row is None:
            raise NotFoundError(f"Rewards config version {version} not found", {"version": version})

        return await self.save_config(
            dict(row.payload),
            actor,
            note=f"Rollback to version {version}",
        )


class RewardsConfigCache:
    """
    Process-local cache of the active config.

    Refreshed when older than refresh_seconds. If a refresh fails the last
    good config keeps being served; with nothing cached the failure surfaces
    as InternalError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], refresh_seconds: int = 300):
        self._session_factory = session_factory
        self._refresh_interval = timedelta(seconds=refresh_seconds)
        self._config: Optional[RewardsConfig] = None
        self._loaded_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        if self._config is None or self._loaded_at is None:
            return False
        return datetime.now(timezone.utc) - self._loaded_at < self._refresh_interval

    async def get(self) -> RewardsConfig:
        if self._is_fresh():
            return self._config

        async with self._lock:
            if self._is_fresh():
                return self._config
            try:
                return await self.refresh()
            except (SQLAlchemyError, OSError, InternalError) as e:
                if self._config is not None:
                    logger.warning(f"Rewards config refresh failed, serving v{self._config.version}: {e}")
                    return self._config
                if isinstance(e, InternalError):
                    raise
                raise InternalError("Rewards config store unavailable", {"error": str(e)})

    async def refresh(self) -> RewardsConfig:
        async with self._session_factory() as session:
            config = await RewardsConfigService(session).load_config()
        self.set(config)
        return config

    def set(self, config: RewardsConfig) -> None:
        self._config = config
        self._loaded_at = datetime.now(timezone.utc)

    def invalidate(self) -> None:
        self._loaded_at = None

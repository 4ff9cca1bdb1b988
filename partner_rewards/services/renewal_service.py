"""
Annual Tier Renewal

Re-evaluates every partner whose renewal_due_at has passed against its
current tier's annual requirements:
- Met: tier kept, counters reset, renewal date advanced, audit entry written
- Not met: one tier down (never below bronze), counters reset, renewal
  date advanced, tier history entry appended

The batch runs under a fleet-wide lease so concurrent triggers (scheduler,
cron endpoint, manual call) never overlap. Partners are processed
concurrently up to RENEWAL_MAX_CONCURRENT, each in its own session, and a
failure for one partner never stops the batch.

Supports:
1. Redis lease (SET NX EX, preferred for production)
2. In-process lease (development/single instance)
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from partner_rewards.config import Settings
from partner_rewards.core.calendar import add_years, advance_past
from partner_rewards.core.exceptions import InternalError
from partner_rewards.core.tiers import get_previous_tier
from partner_rewards.database import session_scope, utcnow
from partner_rewards.models.partner import Partner
from partner_rewards.models.tier_history import TierChangeReason
from partner_rewards.schemas.rewards import RenewalStats, RenewalError
from partner_rewards.schemas.rewards_config import RewardsConfig
from partner_rewards.services.audit_service import AuditService
from partner_rewards.services.rewards_config_service import RewardsConfigCache
from partner_rewards.services.tier_service import TierService, meets_annual_requirements

logger = logging.getLogger(__name__)

RENEWAL_LEASE_KEY = "partner_rewards:lease:tier_renewal"

RENEWED = "renewed"
DOWNGRADED = "downgraded"
NOT_DUE = "not_due"


# ==================== Lease backends ====================

class LeaseBackend(ABC):
    """Abstract exclusive-lease interface."""

    @abstractmethod
    async def acquire(self, key: str, ttl: int) -> Optional[str]:
        """Claim key for ttl seconds. Returns an owner token, or None if held."""
        pass

    @abstractmethod
    async def release(self, key: str, token: str) -> bool:
        """Release key only if still owned by token."""
        pass


class InMemoryLease(LeaseBackend):
    """
    Process-local lease for development/fallback.

    Note: only protects a single process. Use Redis when more than one
    instance can trigger renewals.
    """

    def __init__(self):
        self._leases: Dict[str, Tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, key: str, ttl: int) -> Optional[str]:
        async with self._lock:
            now = datetime.now(timezone.utc)
            held = self._leases.get(key)
            if held is not None and held[1] > now:
                return None
            token = uuid.uuid4().hex
            self._leases[key] = (token, now + timedelta(seconds=ttl))
            return token

    async def release(self, key: str, token: str) -> bool:
        async with self._lock:
            held = self._leases.get(key)
            if held is not None and held[0] == token:
                del self._leases[key]
                return True
            return False


class RedisLease(LeaseBackend):
    """Redis lease backend for production."""

    # Delete only if the stored token is ours
    _RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def acquire(self, key: str, ttl: int) -> Optional[str]:
        token = uuid.uuid4().hex
        try:
            acquired = await self._get_client().set(key, token, nx=True, ex=ttl)
        except RedisError as e:
            raise InternalError("Lease store unavailable", {"error": str(e)})
        return token if acquired else None

    async def release(self, key: str, token: str) -> bool:
        try:
            released = await self._get_client().eval(self._RELEASE_SCRIPT, 1, key, token)
            return bool(released)
        except RedisError as e:
            logger.error(f"Failed to release lease {key}: {e}")
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_lease_backend(settings: Settings) -> LeaseBackend:
    """Redis when REDIS_URL is configured, otherwise in-process."""
    if settings.REDIS_URL:
        logger.info("Renewal lease backend: Redis")
        return RedisLease(settings.REDIS_URL)
    logger.info("Renewal lease backend: in-memory")
    return InMemoryLease()


# ==================== Renewal batch ====================

class RenewalService:
    """
    Executes the annual renewal batch.

    Features:
    - Fleet-wide lease (concurrent runs return skipped=True)
    - Config snapshot read once per run
    - Bounded concurrency, one session per partner
    - Error isolation (one partner failure doesn't affect others)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config_cache: RewardsConfigCache,
        lease: LeaseBackend,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.config_cache = config_cache
        self.lease = lease
        self.lease_ttl = settings.RENEWAL_LEASE_TTL_SECONDS
        self.max_concurrent = settings.RENEWAL_MAX_CONCURRENT
        self.override_policy = settings.RENEWAL_MANUAL_OVERRIDE_POLICY

    async def get_due_partner_ids(self, now: datetime) -> List[uuid.UUID]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Partner.id)
                    .where(Partner.renewal_due_at <= now)
                    .order_by(Partner.renewal_due_at, Partner.id)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise InternalError("Partner store unavailable", {"error": str(e)})

    def _manual_override_protects(self, partner: Partner) -> bool:
        """Under 'respect', a tier set manually during the period being renewed is kept."""
        if self.override_policy != "respect" or partner.manual_tier_set_at is None:
            return False
        period_start = add_years(partner.renewal_due_at, -1)
        return partner.manual_tier_set_at > period_start

    async def process_partner(
        self,
        partner_id: uuid.UUID,
        config: RewardsConfig,
        now: datetime,
    ) -> str:
        """Renew one partner in its own transaction. Returns the outcome."""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(Partner)
                .where(Partner.id == partner_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            partner = result.scalar_one_or_none()

            # Renewed by someone else since the due query
            if partner is None or partner.renewal_due_at > now:
                return NOT_DUE

            current_tier = partner.tier
            requirement = config.get_tier(current_tier)
            meets = meets_annual_requirements(partner.annual_counters, requirement)
            new_tier = current_tier
            if not meets and not self._manual_override_protects(partner):
                new_tier = get_previous_tier(current_tier) or current_tier

            if partner.renewal_anchor_at is None:
                partner.renewal_anchor_at = partner.renewal_due_at
            next_due = advance_past(partner.renewal_due_at, now, partner.renewal_anchor_at)

            if new_tier != current_tier:
                await TierService(session, config).record_tier_change(
                    partner,
                    new_tier,
                    TierChangeReason.ANNUAL_RENEWAL,
                    note=f"Annual requirements for {current_tier} not met",
                    changed_at=now,
                )
                outcome = DOWNGRADED
            else:
                await AuditService(session).log_renewal_confirmed(
                    partner.id, current_tier, next_due.isoformat()
                )
                outcome = RENEWED

            partner.annual_certified_employees = 0
            partner.annual_opportunities = 0
            partner.annual_deals_won = 0
            partner.renewal_due_at = next_due

        logger.info(f"Renewal for partner {partner_id}: {outcome} ({current_tier} -> {new_tier})")
        return outcome

    async def _run_one(
        self,
        semaphore: asyncio.Semaphore,
        partner_id: uuid.UUID,
        config: RewardsConfig,
        now: datetime,
    ) -> Tuple[uuid.UUID, str, Optional[str]]:
        async with semaphore:
            try:
                return partner_id, await self.process_partner(partner_id, config, now), None
            except Exception as e:
                logger.exception(f"Renewal failed for partner {partner_id}")
                return partner_id, "error", str(e)

    async def process_all_due_renewals(self, now: Optional[datetime] = None) -> RenewalStats:
        """
        Run the renewal batch.

        Raises:
            InternalError: config, partner store or lease store unavailable
        """
        now = now or utcnow()

        token = await self.lease.acquire(RENEWAL_LEASE_KEY, self.lease_ttl)
        if token is None:
            logger.info("Tier renewal already running elsewhere, skipping")
            return RenewalStats(skipped=True)

        try:
            config = await self.config_cache.get()
            partner_ids = await self.get_due_partner_ids(now)
            if not partner_ids:
                logger.info("Tier renewal: no partners due")
                return RenewalStats()

            logger.info(f"Tier renewal: {len(partner_ids)} partners due (config v{config.version})")
            semaphore = asyncio.Semaphore(self.max_concurrent)
            results = await asyncio.gather(*[
                self._run_one(semaphore, partner_id, config, now)
                for partner_id in partner_ids
            ])
        finally:
            await self.lease.release(RENEWAL_LEASE_KEY, token)

        stats = RenewalStats()
        for partner_id, outcome, error in results:
            if error is not None:
                stats.errors.append(RenewalError(partner_id=str(partner_id), error=error))
            elif outcome == RENEWED:
                stats.processed += 1
                stats.renewed += 1
            elif outcome == DOWNGRADED:
                stats.processed += 1
                stats.downgraded += 1

        logger.info(
            f"Tier renewal completed: processed={stats.processed} renewed={stats.renewed} "
            f"downgraded={stats.downgraded} errors={len(stats.errors)}"
        )
        return stats

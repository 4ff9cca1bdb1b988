"""
Achievement Service - ledger of achievement grants per partner.

Handles:
- Manual awards and revocations (admin, with reason and audit trail)
- Automatic grants derived from partner counters
- Point total, recomputed from the active ledger
- Progress by category
"""
import logging
import uuid
from typing import Iterable, List, Optional, Set

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from partner_rewards.core.exceptions import NotFoundError
from partner_rewards.core.security import Actor, DEFAULT_ADMIN_ROLES, require_admin, require_reason
from partner_rewards.database import insert_ignore, utcnow
from partner_rewards.models.achievement import PartnerAchievement, GrantSource
from partner_rewards.models.partner import Partner
from partner_rewards.models.recompute_task import RecomputeKind
from partner_rewards.schemas.rewards import (
    AwardResult,
    RevokeResult,
    EarnedAchievement,
    AchievementProgress,
    CategoryProgress,
)
from partner_rewards.schemas.rewards_config import (
    AchievementCategory,
    AchievementDefinition,
    RewardsConfig,
)
from partner_rewards.services.audit_service import AuditService
from partner_rewards.services.outbox import enqueue_recompute

logger = logging.getLogger(__name__)


# Automatic achievements: (achievement id, partner counter, threshold)
AUTOMATIC_ACHIEVEMENTS = [
    ("first_opportunity", "deals_total", 1),
    ("five_opportunities", "deals_total", 5),
    ("first_deal_won", "deals_won", 1),
    ("two_deals_won", "deals_won", 2),
    ("first_certification", "active_certifications", 1),
    ("second_certification", "active_certifications", 2),
    ("third_certification", "active_certifications", 3),
]


class AchievementService:
    """Achievement grants for one session and one config snapshot."""

    def __init__(
        self,
        db: AsyncSession,
        config: RewardsConfig,
        admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES,
    ):
        self.db = db
        self.config = config
        self.admin_roles = tuple(admin_roles)

    # ==================== Lookups ====================

    async def _get_partner(self, partner_id: uuid.UUID) -> Partner:
        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            raise NotFoundError(f"Partner {partner_id} not found", {"partner_id": str(partner_id)})
        return partner

    def _get_definition(self, achievement_id: str) -> AchievementDefinition:
        definition = self.config.get_achievement(achievement_id)
        if definition is None:
            raise NotFoundError(
                f"Achievement {achievement_id} not found",
                {"achievement_id": achievement_id},
            )
        return definition

    async def _active_entries(self, partner_id: uuid.UUID) -> List[PartnerAchievement]:
        result = await self.db.execute(
            select(PartnerAchievement)
            .where(
                PartnerAchievement.partner_id == partner_id,
                PartnerAchievement.revoked_at.is_(None),
            )
            .order_by(PartnerAchievement.awarded_at, PartnerAchievement.id)
        )
        return list(result.scalars().all())

    async def get_held_ids(self, partner_id: uuid.UUID) -> Set[str]:
        result = await self.db.execute(
            select(PartnerAchievement.achievement_id)
            .where(
                PartnerAchievement.partner_id == partner_id,
                PartnerAchievement.revoked_at.is_(None),
            )
            .distinct()
        )
        return set(result.scalars().all())

    async def has_achievement(self, partner_id: uuid.UUID, achievement_id: str) -> bool:
        return await self.get_achievement_count(partner_id, achievement_id) > 0

    async def get_achievement_count(self, partner_id: uuid.UUID, achievement_id: str) -> int:
        """Active grants of one achievement (more than one only for repeatables)."""
        count = await self.db.scalar(
            select(func.count(PartnerAchievement.id))
            .where(
                PartnerAchievement.partner_id == partner_id,
                PartnerAchievement.achievement_id == achievement_id,
                PartnerAchievement.revoked_at.is_(None),
            )
        )
        return count or 0

    def _to_earned(self, entry: PartnerAchievement) -> EarnedAchievement:
        definition = self.config.get_achievement(entry.achievement_id)
        return EarnedAchievement(
            ledger_id=entry.id,
            achievement_id=entry.achievement_id,
            name=definition.name if definition else entry.achievement_id,
            description=definition.description if definition else "",
            icon=definition.icon if definition else "Award",
            category=definition.category.value if definition else "",
            tier=definition.tier.value if definition else "",
            points=entry.points,
            source=entry.source,
            awarded_at=entry.awarded_at,
            awarded_by=entry.awarded_by,
            reason=entry.reason,
        )

    async def get_partner_achievements(self, partner_id: uuid.UUID) -> List[EarnedAchievement]:
        """One item per active ledger entry, joined with its current definition."""
        await self._get_partner(partner_id)
        return [self._to_earned(entry) for entry in await self._active_entries(partner_id)]

    # ==================== Points ====================

    async def get_total_points(self, partner_id: uuid.UUID) -> int:
        total = await self.db.scalar(
            select(func.coalesce(func.sum(PartnerAchievement.points), 0))
            .where(
                PartnerAchievement.partner_id == partner_id,
                PartnerAchievement.revoked_at.is_(None),
            )
        )
        return int(total or 0)

    async def _refresh_points(self, partner_id: uuid.UUID) -> int:
        """Store the ledger total on the partner row."""
        total = await self.get_total_points(partner_id)
        await self.db.execute(
            update(Partner)
            .where(Partner.id == partner_id)
            .values(achievement_points=total)
        )
        return total

    # ==================== Grants ====================

    async def _grant(
        self,
        partner_id: uuid.UUID,
        definition: AchievementDefinition,
        source: GrantSource,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[PartnerAchievement]:
        """
        Append a ledger entry. Returns None when a non-repeatable achievement
        is already held (including when a concurrent grant wins the race on
        the unique dedupe key).
        """
        if not definition.repeatable and await self.has_achievement(partner_id, definition.id):
            return None

        entry_id = uuid.uuid4()
        result = await insert_ignore(
            self.db,
            PartnerAchievement,
            {
                "id": entry_id,
                "partner_id": partner_id,
                "achievement_id": definition.id,
                "points": definition.points,
                "dedupe_key": uuid.uuid4().hex if definition.repeatable else definition.id,
                "source": source.value,
                "awarded_at": utcnow(),
                "awarded_by": actor_id,
                "reason": reason,
            },
            index_elements=["partner_id", "dedupe_key"],
        )
        if result.rowcount == 0:
            logger.info(f"Achievement {definition.id} already held by partner {partner_id}")
            return None
        return await self.db.get(PartnerAchievement, entry_id)

    async def check_and_award(
        self,
        partner_id: uuid.UUID,
        achievement_id: str,
        source: GrantSource = GrantSource.SYSTEM,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """System grant. Unknown ids are logged and ignored."""
        definition = self.config.get_achievement(achievement_id)
        if definition is None:
            logger.warning(f"Achievement not found: {achievement_id}")
            return False

        entry = await self._grant(partner_id, definition, source, actor_id, reason)
        if entry is None:
            return False

        await self._refresh_points(partner_id)
        logger.info(f"Partner {partner_id} earned {achievement_id} (+{definition.points})")
        return True

    async def evaluate_automatic_achievements(self, partner_id: uuid.UUID) -> List[str]:
        """
        Grant every counter-based achievement the partner now qualifies for.
        Returns the ids granted by this call.
        """
        partner = await self._get_partner(partner_id)
        awarded = []
        for achievement_id, counter, threshold in AUTOMATIC_ACHIEVEMENTS:
            if getattr(partner, counter) >= threshold:
                if await self.check_and_award(partner_id, achievement_id):
                    awarded.append(achievement_id)
        return awarded

    async def award_achievement(
        self,
        partner_id: uuid.UUID,
        achievement_id: str,
        actor: Optional[Actor],
        reason: Optional[str],
    ) -> AwardResult:
        """
        Manual grant.

        Awarding a held non-repeatable achievement succeeds with awarded=False.

        Raises:
            ForbiddenError: actor is not an admin
            ValidationError: reason shorter than 10 characters
            NotFoundError: unknown partner or achievement
        """
        actor = require_admin(actor, self.admin_roles)
        reason = require_reason(reason)
        await self._get_partner(partner_id)
        definition = self._get_definition(achievement_id)

        entry = await self._grant(partner_id, definition, GrantSource.MANUAL, actor.id, reason)
        if entry is None:
            total = await self.get_total_points(partner_id)
            await AuditService(self.db).log_achievement_awarded(
                partner_id, achievement_id, actor.id, reason, total, awarded=False
            )
            logger.info(f"Achievement {achievement_id} already held by partner {partner_id}, not awarded")
            return AwardResult(awarded=False, total_points=total)

        total = await self._refresh_points(partner_id)
        await AuditService(self.db).log_achievement_awarded(
            partner_id, achievement_id, actor.id, reason, total
        )
        await enqueue_recompute(
            self.db, [partner_id], kinds=[RecomputeKind.ACHIEVEMENTS.value], actor_id=actor.id
        )
        await self.db.flush()

        logger.info(f"Achievement {achievement_id} awarded to partner {partner_id} by {actor.id}")
        return AwardResult(awarded=True, achievement=self._to_earned(entry), total_points=total)

    async def revoke_achievement(
        self,
        partner_id: uuid.UUID,
        achievement_id: str,
        actor: Optional[Actor],
        reason: Optional[str],
    ) -> RevokeResult:
        """
        Revoke the most recent active grant of an achievement.

        Raises:
            ForbiddenError: actor is not an admin
            ValidationError: reason shorter than 10 characters
            NotFoundError: unknown partner, or achievement not held
        """
        actor = require_admin(actor, self.admin_roles)
        reason = require_reason(reason)
        await self._get_partner(partner_id)

        result = await self.db.execute(
            select(PartnerAchievement)
            .where(
                PartnerAchievement.partner_id == partner_id,
                PartnerAchievement.achievement_id == achievement_id,
                PartnerAchievement.revoked_at.is_(None),
            )
            .order_by(PartnerAchievement.awarded_at.desc(), PartnerAchievement.id.desc())
            .limit(1)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError(
                f"Partner {partner_id} does not hold achievement {achievement_id}",
                {"partner_id": str(partner_id), "achievement_id": achievement_id},
            )

        entry.revoked_at = utcnow()
        entry.revoked_by = actor.id
        entry.revoke_reason = reason
        entry.dedupe_key = None
        await self.db.flush()

        total = await self._refresh_points(partner_id)
        await AuditService(self.db).log_achievement_revoked(
            partner_id, achievement_id, actor.id, reason, total
        )

        logger.info(f"Achievement {achievement_id} revoked from partner {partner_id} by {actor.id}")
        return RevokeResult(achievement_id=achievement_id, total_points=total)

    # ==================== Progress ====================

    async def get_progress_by_category(self, partner_id: uuid.UUID) -> AchievementProgress:
        await self._get_partner(partner_id)
        entries = await self._active_entries(partner_id)
        held = {entry.achievement_id for entry in entries}

        categories = []
        for category in AchievementCategory:
            definitions = [d for d in self.config.achievements.values() if d.category == category]
            ids = {d.id for d in definitions}
            categories.append(CategoryProgress(
                category=category.value,
                earned=len(ids & held),
                total=len(definitions),
                points=sum(e.points for e in entries if e.achievement_id in ids),
            ))

        return AchievementProgress(
            partner_id=partner_id,
            total_points=sum(e.points for e in entries),
            categories=categories,
        )

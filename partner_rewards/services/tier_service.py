"""
Tier Service - tier eligibility, promotion, manual overrides and history.

Handles:
- Eligibility for the next tier (rating, required achievements, annual counters)
- Detailed next-tier requirements
- Annual renewal status for the current tier
- Eligibility-driven promotion (reason: achievement)
- Admin tier override (reason: manual)
- Tier history

Every tier mutation goes through record_tier_change, which appends exactly
one TierHistoryEntry.
"""
import logging
import math
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partner_rewards.core.exceptions import NotFoundError, ValidationError
from partner_rewards.core.security import Actor, DEFAULT_ADMIN_ROLES, require_admin, require_reason
from partner_rewards.core.tiers import PartnerTier, get_next_tier
from partner_rewards.database import utcnow
from partner_rewards.models.partner import Partner
from partner_rewards.models.tier_history import TierHistoryEntry, TierChangeReason
from partner_rewards.schemas.rewards import (
    TierEligibility,
    TierBlockers,
    NextTierRequirements,
    AchievementRequirementStatus,
    CounterStatus,
    RenewalStatus,
    TierChangeResult,
)
from partner_rewards.schemas.rewards_config import RewardsConfig, TierRequirement, TierBenefits
from partner_rewards.services.achievement_service import AchievementService
from partner_rewards.services.audit_service import AuditService

logger = logging.getLogger(__name__)


# ==================== Pure helpers ====================

def annual_status(counters: Dict[str, int], requirement: TierRequirement) -> Dict[str, CounterStatus]:
    """Per-counter current/required/met against a tier's annual requirements."""
    required = requirement.annual_requirements.as_dict()
    return {
        name: CounterStatus(
            current=counters.get(name, 0),
            required=threshold,
            met=counters.get(name, 0) >= threshold,
        )
        for name, threshold in required.items()
    }


def meets_annual_requirements(counters: Dict[str, int], requirement: TierRequirement) -> bool:
    return all(status.met for status in annual_status(counters, requirement).values())


def missing_required_achievements(held: Set[str], requirement: TierRequirement) -> List[str]:
    """Required ids not held, in config order."""
    return [a for a in requirement.achievements.required if a not in held]


def evaluate_blockers(partner: Partner, held: Set[str], requirement: TierRequirement) -> TierBlockers:
    return TierBlockers(
        rating=(partner.rating or 0) < requirement.min_rating,
        achievements=missing_required_achievements(held, requirement),
        annual_requirements=not meets_annual_requirements(partner.annual_counters, requirement),
    )


def is_clear(blockers: TierBlockers) -> bool:
    return not blockers.rating and not blockers.achievements and not blockers.annual_requirements


class TierService:
    """Tier evaluation and transitions for one session and one config snapshot."""

    def __init__(
        self,
        db: AsyncSession,
        config: RewardsConfig,
        admin_roles: Iterable[str] = DEFAULT_ADMIN_ROLES,
    ):
        self.db = db
        self.config = config
        self.admin_roles = tuple(admin_roles)
        self.achievements = AchievementService(db, config, admin_roles)

    async def _get_partner(self, partner_id: uuid.UUID, for_update: bool = False) -> Partner:
        query = select(Partner).where(Partner.id == partner_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        partner = result.scalar_one_or_none()
        if partner is None:
            raise NotFoundError(f"Partner {partner_id} not found", {"partner_id": str(partner_id)})
        return partner

    # ==================== Config helpers ====================

    def get_tier_requirement(self, tier: str) -> TierRequirement:
        return self.config.get_tier(tier)

    def get_tier_benefits(self, tier: str) -> TierBenefits:
        return self.config.get_tier(tier).benefits

    def get_tier_discount(self, tier: str) -> float:
        return self.config.get_tier(tier).benefits.discount

    def get_min_rating(self, tier: str) -> float:
        return self.config.get_tier(tier).min_rating

    # ==================== Evaluation ====================

    async def calculate_tier_eligibility(self, partner_id: uuid.UUID) -> Optional[TierEligibility]:
        """
        Eligibility for the tier immediately above the current one.

        Returns None at platinum. Optional achievements never block.
        """
        partner = await self._get_partner(partner_id)
        next_tier = get_next_tier(partner.tier)
        if next_tier is None:
            return None

        held = await self.achievements.get_held_ids(partner_id)
        blockers = evaluate_blockers(partner, held, self.config.get_tier(next_tier))

        return TierEligibility(
            partner_id=partner_id,
            current_tier=partner.tier,
            next_tier=next_tier,
            eligible=is_clear(blockers),
            blockers=blockers,
        )

    async def get_next_tier_requirements(self, partner_id: uuid.UUID) -> Optional[NextTierRequirements]:
        partner = await self._get_partner(partner_id)
        next_tier = get_next_tier(partner.tier)
        if next_tier is None:
            return None

        requirement = self.config.get_tier(next_tier)
        held = await self.achievements.get_held_ids(partner_id)

        def status(ids):
            statuses = []
            for achievement_id in ids:
                definition = self.config.get_achievement(achievement_id)
                statuses.append(AchievementRequirementStatus(
                    achievement_id=achievement_id,
                    name=definition.name if definition else achievement_id,
                    held=achievement_id in held,
                ))
            return statuses

        blockers = evaluate_blockers(partner, held, requirement)
        return NextTierRequirements(
            partner_id=partner_id,
            current_tier=partner.tier,
            next_tier=next_tier,
            min_rating=requirement.min_rating,
            current_rating=partner.rating or 0,
            rating_met=not blockers.rating,
            required_achievements=status(requirement.achievements.required),
            optional_achievements=status(requirement.achievements.optional),
            annual_requirements=annual_status(partner.annual_counters, requirement),
            discount=requirement.benefits.discount,
            features=list(requirement.benefits.features),
            eligible=is_clear(blockers),
        )

    async def check_annual_renewal(
        self,
        partner_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> RenewalStatus:
        """Whether the partner currently meets its own tier's annual requirements."""
        now = now or utcnow()
        partner = await self._get_partner(partner_id)
        requirement = self.config.get_tier(partner.tier)
        counters = annual_status(partner.annual_counters, requirement)

        seconds = (partner.renewal_due_at - now).total_seconds()
        return RenewalStatus(
            partner_id=partner_id,
            tier=partner.tier,
            next_renewal_date=partner.renewal_due_at,
            days_until_renewal=math.ceil(seconds / 86400),
            currently_meets=all(c.met for c in counters.values()),
            requirements=counters,
        )

    # ==================== Transitions ====================

    async def record_tier_change(
        self,
        partner: Partner,
        new_tier: str,
        reason: TierChangeReason,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
        changed_at: Optional[datetime] = None,
    ) -> TierHistoryEntry:
        """Set the tier and append its single history entry."""
        changed_at = changed_at or utcnow()
        entry = TierHistoryEntry(
            partner_id=partner.id,
            tier=new_tier,
            previous_tier=partner.tier,
            reason=reason.value,
            actor_id=actor_id,
            note=note,
            changed_at=changed_at,
        )
        partner.tier = new_tier
        if reason == TierChangeReason.MANUAL:
            partner.manual_tier_set_at = changed_at
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def set_tier(
        self,
        partner_id: uuid.UUID,
        tier: str,
        actor: Optional[Actor],
        reason: Optional[str],
        skip_requirements: bool = False,
    ) -> TierChangeResult:
        """
        Admin tier override.

        Raises:
            ForbiddenError: actor is not an admin
            ValidationError: short reason, unknown or unchanged tier, or
                unmet target requirements when skip_requirements is False
            NotFoundError: unknown partner
        """
        actor = require_admin(actor, self.admin_roles)
        reason = require_reason(reason)
        try:
            tier = PartnerTier(tier).value
        except ValueError:
            raise ValidationError(f"Unknown tier: {tier}", {"tier": tier})

        partner = await self._get_partner(partner_id, for_update=True)
        previous_tier = partner.tier
        if previous_tier == tier:
            raise ValidationError(
                f"Partner is already {tier}",
                {"partner_id": str(partner_id), "tier": tier},
            )

        if not skip_requirements:
            held = await self.achievements.get_held_ids(partner_id)
            blockers = evaluate_blockers(partner, held, self.config.get_tier(tier))
            if not is_clear(blockers):
                raise ValidationError(
                    f"Partner does not meet {tier} requirements",
                    {"tier": tier, "blockers": blockers.model_dump()},
                )

        entry = await self.record_tier_change(
            partner, tier, TierChangeReason.MANUAL, actor_id=actor.id, note=reason
        )
        await AuditService(self.db).log_tier_changed(
            partner_id, previous_tier, tier, actor.id, reason, skip_requirements
        )

        logger.info(f"Partner {partner_id} tier set {previous_tier} -> {tier} by {actor.id}")
        return TierChangeResult(
            partner_id=partner_id,
            previous_tier=previous_tier,
            tier=tier,
            reason=entry.reason,
            changed_at=entry.changed_at,
        )

    async def promote_if_eligible(self, partner_id: uuid.UUID) -> Optional[TierChangeResult]:
        """Move one tier up when every blocker is clear."""
        partner = await self._get_partner(partner_id, for_update=True)
        next_tier = get_next_tier(partner.tier)
        if next_tier is None:
            return None

        held = await self.achievements.get_held_ids(partner_id)
        if not is_clear(evaluate_blockers(partner, held, self.config.get_tier(next_tier))):
            return None

        previous_tier = partner.tier
        entry = await self.record_tier_change(partner, next_tier, TierChangeReason.ACHIEVEMENT)

        logger.info(f"Partner {partner_id} promoted {previous_tier} -> {next_tier}")
        return TierChangeResult(
            partner_id=partner_id,
            previous_tier=previous_tier,
            tier=next_tier,
            reason=entry.reason,
            changed_at=entry.changed_at,
        )

    async def get_tier_history(self, partner_id: uuid.UUID, limit: int = 50) -> List[TierHistoryEntry]:
        """Newest first."""
        await self._get_partner(partner_id)
        result = await self.db.execute(
            select(TierHistoryEntry)
            .where(TierHistoryEntry.partner_id == partner_id)
            .order_by(TierHistoryEntry.changed_at.desc(), TierHistoryEntry.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


"""
Rating Service - weighted partner quality score.

Five factors, each 0-100, are combined with FACTOR_WEIGHTS into
total_score (0-100); the rating is total_score / 20 on a 0-5 scale.

Factors are derived from the counters on the partner row plus the rating
events of the last RATING_EVENT_WINDOW_DAYS days, so recomputation is a
pure function of persisted state and repeated runs converge.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partner_rewards.core.exceptions import NotFoundError, ValidationError
from partner_rewards.database import utcnow
from partner_rewards.models.partner import Partner
from partner_rewards.models.rating_event import RatingEvent, RatingEventType
from partner_rewards.models.recompute_task import RecomputeKind
from partner_rewards.schemas.rewards import RatingCalculation, RatingFactors
from partner_rewards.services.outbox import enqueue_recompute

logger = logging.getLogger(__name__)


# Factor weights (total = 1.0)
FACTOR_WEIGHTS: Dict[str, float] = {
    "deal_quality": 0.30,
    "engagement": 0.25,
    "certification": 0.20,
    "compliance": 0.15,
    "revenue": 0.10,
}

# Points awarded/deducted for each event type
EVENT_POINTS: Dict[str, int] = {
    RatingEventType.COPILOT_SESSION_COMPLETED.value: 2,
    RatingEventType.TRAINING_MODULE_COMPLETED.value: 3,
    RatingEventType.CERTIFICATION_EARNED.value: 10,
    RatingEventType.DEAL_CLOSED_WON.value: 15,
    RatingEventType.MEDDIC_SCORE_IMPROVED.value: 1,
    RatingEventType.DEAL_CLOSED_LOST_POOR_QUALIFICATION.value: -10,
    RatingEventType.CERTIFICATION_EXPIRED.value: -5,
    RatingEventType.LEGAL_EXPIRED.value: -8,
    RatingEventType.DEAL_STALE_30_DAYS.value: -3,
    RatingEventType.LOGIN_INACTIVE_30_DAYS.value: -2,
}

MAX_RATING = 5.0


# ==================== Factors ====================

def deal_quality_factor(partner: Partner) -> float:
    """40% approval rate + 40% win rate + 20% partner-generated lead rate."""
    if not partner.deals_total:
        return 50.0  # Neutral score for new partners

    approval_rate = min(partner.deals_reviewed / partner.deals_total, 1.0)
    closed = partner.deals_won + partner.deals_lost
    win_rate = partner.deals_won / closed if closed else 0.0
    lead_rate = min(partner.deals_partner_generated / partner.deals_total, 1.0)

    return approval_rate * 40 + win_rate * 40 + lead_rate * 20


def engagement_factor(events: List[RatingEvent]) -> float:
    """Copilot and training activity in the window, minus inactivity penalties."""
    copilot = sum(1 for e in events if e.event_type == RatingEventType.COPILOT_SESSION_COMPLETED.value)
    training = sum(1 for e in events if e.event_type == RatingEventType.TRAINING_MODULE_COMPLETED.value)
    inactive = sum(1 for e in events if e.event_type == RatingEventType.LOGIN_INACTIVE_30_DAYS.value)

    score = 50
    score += min(copilot * 5, 25)
    score += min(training * 10, 20)
    score -= inactive * 10

    return float(max(0, min(100, score)))


def certification_factor(active_certifications: int) -> float:
    if active_certifications <= 0:
        return 20.0
    if active_certifications == 1:
        return 60.0
    if active_certifications == 2:
        return 80.0
    return 100.0


def compliance_factor(required_documents: int, signed_required_documents: int) -> float:
    if required_documents <= 0:
        return 100.0
    signed = min(signed_required_documents, required_documents)
    return signed / required_documents * 100


def revenue_factor(deals_won: int, won_population_total: int) -> float:
    """Won-deal count plus a bonus for the average population served."""
    if deals_won <= 0:
        return 30.0

    score = min(deals_won * 15, 70)
    avg_population = won_population_total / deals_won
    if avg_population >= 1_000_000:
        score += 30
    elif avg_population >= 500_000:
        score += 20
    elif avg_population >= 100_000:
        score += 10

    return float(min(100, score))


def combine_factors(factors: RatingFactors) -> tuple[int, float]:
    """Weighted total (0-100) and the derived 0-5 rating."""
    values = factors.model_dump()
    total_score = round(sum(values[name] * weight for name, weight in FACTOR_WEIGHTS.items()))
    total_score = max(0, min(100, total_score))
    rating = round(max(0.0, min(MAX_RATING, total_score / 20)), 2)
    return total_score, rating


# ==================== Service ====================

class RatingService:
    """Rating events and rating recomputation for one session."""

    def __init__(self, db: AsyncSession, event_window_days: int = 30):
        self.db = db
        self.event_window_days = event_window_days

    async def _get_partner(self, partner_id: uuid.UUID) -> Partner:
        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            raise NotFoundError(f"Partner {partner_id} not found", {"partner_id": str(partner_id)})
        return partner

    async def log_rating_event(
        self,
        partner_id: uuid.UUID,
        actor_id: Optional[str],
        event_type: str,
        payload: Optional[dict] = None,
        recompute: bool = True,
    ) -> RatingEvent:
        """
        Append a rating event.

        When recompute is set a rating task is enqueued on the same session,
        so the event and the task commit together.

        Raises:
            ValidationError: unknown event type
            NotFoundError: unknown partner
        """
        if event_type not in EVENT_POINTS:
            raise ValidationError(
                f"Unknown rating event type: {event_type}",
                {"event_type": event_type, "allowed": sorted(EVENT_POINTS)},
            )
        await self._get_partner(partner_id)

        event = RatingEvent(
            partner_id=partner_id,
            actor_id=actor_id,
            event_type=event_type,
            points=EVENT_POINTS[event_type],
            payload=payload,
            created_at=utcnow(),
        )
        self.db.add(event)

        if recompute:
            await enqueue_recompute(
                self.db, [partner_id], kinds=[RecomputeKind.RATING.value], actor_id=actor_id
            )

        await self.db.flush()
        logger.debug(f"Rating event {event.id} {event_type} ({event.points:+d}) for partner {partner_id}")
        return event

    async def get_partner_events(self, partner_id: uuid.UUID, limit: int = 100) -> List[RatingEvent]:
        """Most recent events first."""
        result = await self.db.execute(
            select(RatingEvent)
            .where(RatingEvent.partner_id == partner_id)
            .order_by(RatingEvent.created_at.desc(), RatingEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_events_in_range(
        self,
        partner_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> List[RatingEvent]:
        """Events with start <= created_at <= end, oldest first."""
        result = await self.db.execute(
            select(RatingEvent)
            .where(
                RatingEvent.partner_id == partner_id,
                RatingEvent.created_at >= start,
                RatingEvent.created_at <= end,
            )
            .order_by(RatingEvent.created_at, RatingEvent.id)
        )
        return list(result.scalars().all())

    async def calculate_partner_rating(
        self,
        partner_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> RatingCalculation:
        """Compute the rating without persisting it."""
        now = now or utcnow()
        partner = await self._get_partner(partner_id)
        events = await self.get_events_in_range(
            partner_id, now - timedelta(days=self.event_window_days), now
        )

        factors = RatingFactors(
            deal_quality=round(deal_quality_factor(partner), 2),
            engagement=engagement_factor(events),
            certification=certification_factor(partner.active_certifications),
            compliance=round(compliance_factor(partner.required_documents, partner.signed_required_documents), 2),
            revenue=revenue_factor(partner.deals_won, partner.won_population_total),
        )
        total_score, rating = combine_factors(factors)

        return RatingCalculation(
            partner_id=partner_id,
            rating=rating,
            total_score=total_score,
            factors=factors,
            calculated_at=now,
        )

    async def recalculate_and_update_partner(
        self,
        partner_id: uuid.UUID,
        actor_id: Optional[str] = None,
    ) -> RatingCalculation:
        """
        Recompute and store rating, total_score and the factor breakdown.

        Never touches the tier and never writes tier history.
        """
        calculation = await self.calculate_partner_rating(partner_id)

        await self.db.execute(
            update(Partner)
            .where(Partner.id == partner_id)
            .values(
                rating=calculation.rating,
                total_score=calculation.total_score,
                rating_factors=calculation.factors.model_dump(),
                rating_calculated_at=calculation.calculated_at,
            )
        )
        await self.db.flush()

        logger.info(
            f"Rating recalculated for partner {partner_id}: "
            f"{calculation.rating} ({calculation.total_score}/100) by {actor_id or 'system'}"
        )
        return calculation

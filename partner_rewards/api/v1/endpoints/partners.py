"""
Partner Rewards API Endpoints

Read and trigger endpoints used by the partner portal:
- Tier eligibility, next-tier requirements, history, renewal status
- Achievements and category progress
- Rating snapshot, rating events, recalculation
- Business signals (deals, certifications, compliance)
"""

from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from partner_rewards.api.deps import DB, CurrentActor, ActiveConfig
from partner_rewards.database import utcnow
from partner_rewards.schemas.rewards import (
    TierEligibility,
    NextTierRequirements,
    TierHistoryResponse,
    RenewalStatus,
    EarnedAchievement,
    AchievementProgress,
    RatingSnapshot,
    RatingFactors,
    RatingCalculation,
    RatingEventCreate,
    RatingEventResponse,
    RatingEventAccepted,
    DealRegisteredSignal,
    DealStatusSignal,
    CertificationSignal,
    ComplianceSyncSignal,
    SignalAccepted,
)
from partner_rewards.services.achievement_service import AchievementService
from partner_rewards.services.partner_service import PartnerService
from partner_rewards.services.rating_service import RatingService
from partner_rewards.services.tier_service import TierService


router = APIRouter(prefix="/partners", tags=["Partner Rewards"])


def _window_days(request: Request) -> int:
    return request.app.state.settings.RATING_EVENT_WINDOW_DAYS


# ============================================================================
# Tiers
# ============================================================================

@router.get("/{partner_id}/tier/eligibility", response_model=Optional[TierEligibility])
async def get_tier_eligibility(
    partner_id: UUID,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
):
    """
    Eligibility for the next tier.

    Returns null for platinum partners (no next tier).
    """
    return await TierService(db, config).calculate_tier_eligibility(partner_id)


@router.get("/{partner_id}/tier/next", response_model=Optional[NextTierRequirements])
async def get_next_tier(
    partner_id: UUID,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
):
    """Detailed requirements for the next tier (null at platinum)."""
    return await TierService(db, config).get_next_tier_requirements(partner_id)


@router.get("/{partner_id}/tier/history", response_model=List[TierHistoryResponse])
async def get_tier_history(
    partner_id: UUID,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
    limit: int = Query(50, ge=1, le=500),
):
    return await TierService(db, config).get_tier_history(partner_id, limit)


@router.get("/{partner_id}/renewal", response_model=RenewalStatus)
async def get_renewal_status(
    partner_id: UUID,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
):
    """Annual renewal date and whether the current tier's requirements are met."""
    return await TierService(db, config).check_annual_renewal(partner_id)


# ============================================================================
# Achievements
# ============================================================================

@router.get("/{partner_id}/achievements", response_model=List[EarnedAchievement])
async def get_achievements(
    partner_id: UUID,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
):
    return await AchievementService(db, config).get_partner_achievements(partner_id)


@router.get("/{partner_id}/achievements/progress", response_model=AchievementProgress)
async def get_achievement_progress(
    partner_id: UUID,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
):
    return await AchievementService(db, config).get_progress_by_category(partner_id)


# ============================================================================
# Rating
# ============================================================================

@router.get("/{partner_id}/rating", response_model=RatingSnapshot)
async def get_rating(
    partner_id: UUID,
    db: DB,
    actor: CurrentActor,
):
    """Rating as stored by the last recomputation."""
    partner = await PartnerService(db).get_partner_or_raise(partner_id)
    return RatingSnapshot(
        partner_id=partner.id,
        tier=partner.tier,
        rating=partner.rating,
        total_score=partner.total_score,
        factors=RatingFactors(**partner.rating_factors) if partner.rating_factors else None,
        calculated_at=partner.rating_calculated_at,
    )


@router.get("/{partner_id}/rating/events", response_model=List[RatingEventResponse])
async def list_rating_events(
    partner_id: UUID,
    request: Request,
    db: DB,
    actor: CurrentActor,
    days: Optional[int] = Query(None, ge=1, le=3650, description="Only events from the last N days"),
    limit: int = Query(100, ge=1, le=1000),
):
    service = RatingService(db, _window_days(request))
    await PartnerService(db).get_partner_or_raise(partner_id)
    if days is None:
        return await service.get_partner_events(partner_id, limit)

    now = utcnow()
    events = await service.get_events_in_range(partner_id, now - timedelta(days=days), now)
    return events[-limit:]


@router.post(
    "/{partner_id}/rating/events",
    response_model=RatingEventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def log_rating_event(
    partner_id: UUID,
    data: RatingEventCreate,
    request: Request,
    db: DB,
    actor: CurrentActor,
):
    """
    Record a rating event.

    The rating is recomputed in the background; this call returns as soon
    as the event and its recompute task are stored.
    """
    event = await RatingService(db, _window_days(request)).log_rating_event(
        partner_id, actor.id, data.event_type, data.payload, recompute=True
    )
    return RatingEventAccepted(event_id=event.id, points=event.points)


@router.post("/{partner_id}/rating/recalculate", response_model=RatingCalculation)
async def recalculate_rating(
    partner_id: UUID,
    request: Request,
    db: DB,
    actor: CurrentActor,
):
    """Recompute the rating synchronously."""
    return await RatingService(db, _window_days(request)).recalculate_and_update_partner(
        partner_id, actor.id
    )


# ============================================================================
# Business Signals
# ============================================================================

@router.post(
    "/{partner_id}/signals/deal-registered",
    response_model=SignalAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def deal_registered(
    partner_id: UUID,
    data: DealRegisteredSignal,
    request: Request,
    db: DB,
    actor: CurrentActor,
):
    return await PartnerService(db, _window_days(request)).record_deal_registered(partner_id, data, actor.id)


@router.post(
    "/{partner_id}/signals/deal-status",
    response_model=SignalAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def deal_status_changed(
    partner_id: UUID,
    data: DealStatusSignal,
    request: Request,
    db: DB,
    actor: CurrentActor,
):
    return await PartnerService(db, _window_days(request)).record_deal_status(partner_id, data, actor.id)


@router.post(
    "/{partner_id}/signals/certification",
    response_model=SignalAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def certification_changed(
    partner_id: UUID,
    data: CertificationSignal,
    request: Request,
    db: DB,
    actor: CurrentActor,
):
    return await PartnerService(db, _window_days(request)).record_certification(partner_id, data, actor.id)


@router.post(
    "/{partner_id}/signals/compliance",
    response_model=SignalAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def compliance_synced(
    partner_id: UUID,
    data: ComplianceSyncSignal,
    request: Request,
    db: DB,
    actor: CurrentActor,
):
    return await PartnerService(db, _window_days(request)).sync_compliance(partner_id, data, actor.id)

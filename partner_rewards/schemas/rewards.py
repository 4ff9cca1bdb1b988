"""
Pydantic schemas for partner ratings, achievements, tiers and renewals.

This module defines request/response schemas for:
- Partner creation and the partner snapshot
- Rating calculation and rating events
- Achievement grants, revocations and progress
- Tier eligibility, next-tier requirements, manual overrides and history
- Annual renewal status and batch statistics
- Business-signal triggers
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import BaseModel, Field

from partner_rewards.core.tiers import PartnerTier
from partner_rewards.schemas.base import BaseResponseSchema, BaseCreateSchema


# ============================================================================
# Enums
# ============================================================================

class DealStatus(str, Enum):
    """Deal pipeline states the engine reacts to"""
    REGISTERED = "registered"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    WON = "won"
    LOST = "lost"


class CertificationAction(str, Enum):
    EARNED = "earned"
    EXPIRED = "expired"


# ============================================================================
# Partner Schemas
# ============================================================================

class PartnerCreate(BaseCreateSchema):
    """Schema for registering a partner with the engine"""
    name: str = Field(..., min_length=1, max_length=200)
    id: Optional[UUID] = None
    renewal_due_at: Optional[datetime] = None


class PartnerResponse(BaseResponseSchema):
    id: UUID
    name: str
    tier: str
    rating: float
    total_score: int
    achievement_points: int
    annual_certified_employees: int
    annual_opportunities: int
    annual_deals_won: int
    renewal_due_at: datetime
    manual_tier_set_at: Optional[datetime] = None
    created_at: datetime


# ============================================================================
# Rating Schemas
# ============================================================================

class RatingFactors(BaseModel):
    """Per-factor scores, each 0-100"""
    deal_quality: float
    engagement: float
    certification: float
    compliance: float
    revenue: float


class RatingCalculation(BaseModel):
    partner_id: UUID
    rating: float = Field(..., ge=0, le=5)
    total_score: int = Field(..., ge=0, le=100)
    factors: RatingFactors
    calculated_at: datetime


class RatingSnapshot(BaseModel):
    """Stored rating as of the last recomputation"""
    partner_id: UUID
    tier: str
    rating: float
    total_score: int
    factors: Optional[RatingFactors] = None
    calculated_at: Optional[datetime] = None


class RatingEventCreate(BaseCreateSchema):
    event_type: str = Field(..., min_length=1, max_length=60)
    payload: Optional[dict] = None


class RatingEventResponse(BaseResponseSchema):
    id: int
    partner_id: UUID
    actor_id: Optional[str] = None
    event_type: str
    points: int
    payload: Optional[dict] = None
    created_at: datetime


class RatingEventAccepted(BaseModel):
    event_id: int
    points: int


# ============================================================================
# Achievement Schemas
# ============================================================================

class EarnedAchievement(BaseModel):
    """An active ledger entry joined with its current definition"""
    ledger_id: UUID
    achievement_id: str
    name: str
    description: str = ""
    icon: str = "Award"
    category: str
    tier: str
    points: int
    source: str
    awarded_at: datetime
    awarded_by: Optional[str] = None
    reason: Optional[str] = None


class AchievementAward(BaseCreateSchema):
    """Schema for a manual achievement award"""
    achievement_id: str = Field(..., min_length=1, max_length=100)
    reason: str = ""


class AchievementRevoke(BaseCreateSchema):
    reason: str = ""


class AwardResult(BaseModel):
    awarded: bool
    achievement: Optional[EarnedAchievement] = None
    total_points: int


class RevokeResult(BaseModel):
    revoked: bool = True
    achievement_id: str
    total_points: int


class CategoryProgress(BaseModel):
    category: str
    earned: int
    total: int
    points: int


class AchievementProgress(BaseModel):
    partner_id: UUID
    total_points: int
    categories: List[CategoryProgress]


# ============================================================================
# Tier Schemas
# ============================================================================

class TierBlockers(BaseModel):
    """What stands between a partner and the next tier"""
    rating: bool = False
    achievements: List[str] = []
    annual_requirements: bool = False


class TierEligibility(BaseModel):
    partner_id: UUID
    current_tier: str
    next_tier: str
    eligible: bool
    blockers: TierBlockers


class CounterStatus(BaseModel):
    current: int
    required: int
    met: bool


class AchievementRequirementStatus(BaseModel):
    achievement_id: str
    name: str
    held: bool


class NextTierRequirements(BaseModel):
    partner_id: UUID
    current_tier: str
    next_tier: str
    min_rating: float
    current_rating: float
    rating_met: bool
    required_achievements: List[AchievementRequirementStatus]
    optional_achievements: List[AchievementRequirementStatus]
    annual_requirements: Dict[str, CounterStatus]
    discount: float
    features: List[str]
    eligible: bool


class ManualTierChange(BaseCreateSchema):
    """Schema for an admin tier override"""
    tier: PartnerTier
    reason: str = ""
    skip_requirements: bool = False


class TierChangeResult(BaseModel):
    partner_id: UUID
    previous_tier: str
    tier: str
    reason: str
    changed_at: datetime


class TierHistoryResponse(BaseResponseSchema):
    id: int
    partner_id: UUID
    tier: str
    previous_tier: Optional[str] = None
    reason: str
    actor_id: Optional[str] = None
    note: Optional[str] = None
    changed_at: datetime


# ============================================================================
# Renewal Schemas
# ============================================================================

class RenewalStatus(BaseModel):
    partner_id: UUID
    tier: str
    next_renewal_date: datetime
    days_until_renewal: int
    currently_meets: bool
    requirements: Dict[str, CounterStatus]


class RenewalError(BaseModel):
    partner_id: str
    error: str


class RenewalStats(BaseModel):
    """Summary of one renewal batch run"""
    processed: int = 0
    renewed: int = 0
    downgraded: int = 0
    skipped: bool = False
    errors: List[RenewalError] = []


# ============================================================================
# Business Signal Schemas
# ============================================================================

class DealRegisteredSignal(BaseCreateSchema):
    deal_id: str = Field(..., min_length=1, max_length=100)
    partner_generated: bool = False


class DealStatusSignal(BaseCreateSchema):
    deal_id: str = Field(..., min_length=1, max_length=100)
    status: DealStatus
    previous_status: Optional[DealStatus] = None
    population: int = Field(default=0, ge=0, description="Population served by the won deal")
    poor_qualification: bool = False


class CertificationSignal(BaseCreateSchema):
    action: CertificationAction
    certification_id: Optional[str] = Field(None, max_length=100)


class ComplianceSyncSignal(BaseCreateSchema):
    required_documents: int = Field(..., ge=0)
    signed_required_documents: int = Field(..., ge=0)


class SignalAccepted(BaseModel):
    partner_id: UUID
    events_logged: int
    tasks_enqueued: int

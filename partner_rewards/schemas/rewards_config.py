"""
Pydantic schemas for the rewards configuration.

The configuration defines:
- Achievement definitions (category, points, tier association, repeatable)
- Tier requirements (min rating, required/optional achievements,
  annual requirements, benefits)

Config values are frozen. A config is validated when saved and again when
loaded, so a malformed payload never reaches the evaluators.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from partner_rewards.core.tiers import PartnerTier, TIER_HIERARCHY
from partner_rewards.schemas.base import BaseResponseSchema, FrozenSchema


# ============================================================================
# Enums
# ============================================================================

class AchievementCategory(str, Enum):
    """Achievement grouping used for progress views"""
    CERTIFICATION = "certification"
    DEALS = "deals"
    TRAINING = "training"
    COMPLIANCE = "compliance"
    ENGAGEMENT = "engagement"


# ============================================================================
# Definitions
# ============================================================================

class AchievementDefinition(FrozenSchema):
    """A grantable achievement"""
    id: str = Field(..., min_length=1, max_length=100)
    category: AchievementCategory
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    icon: str = "Award"
    points: int = Field(..., ge=0, le=1000)
    tier: PartnerTier
    repeatable: bool = False


class TierAchievementRequirements(FrozenSchema):
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()


class AnnualRequirements(FrozenSchema):
    """Counters that must be reached within each renewal period"""
    certified_employees: int = Field(default=0, ge=0)
    opportunities: int = Field(default=0, ge=0)
    deals_won: int = Field(default=0, ge=0)

    def as_dict(self) -> Dict[str, int]:
        return {
            "certified_employees": self.certified_employees,
            "opportunities": self.opportunities,
            "deals_won": self.deals_won,
        }


class TierBenefits(FrozenSchema):
    discount: float = Field(default=0, ge=0, le=100, description="Discount % (0-100)")
    features: Tuple[str, ...] = ()


class TierRequirement(FrozenSchema):
    """Everything needed to hold (and reach) a tier"""
    tier: PartnerTier
    min_rating: float = Field(default=0, ge=0, le=5)
    achievements: TierAchievementRequirements = TierAchievementRequirements()
    annual_requirements: AnnualRequirements = AnnualRequirements()
    benefits: TierBenefits = TierBenefits()


class RewardsConfig(FrozenSchema):
    """
    One immutable version of the rewards configuration.

    Invariants checked on construction:
    - every tier has exactly one requirement, keyed by its own name
    - achievement keys match their definition ids
    - every required/optional achievement id is defined
    """
    version: int = Field(default=0, ge=0)
    achievements: Dict[str, AchievementDefinition]
    tiers: Dict[str, TierRequirement]

    @model_validator(mode='after')
    def check_consistency(self) -> "RewardsConfig":
        missing = [tier for tier in TIER_HIERARCHY if tier not in self.tiers]
        unknown = [key for key in self.tiers if key not in TIER_HIERARCHY]
        if missing or unknown:
            raise ValueError(f"Tier set mismatch (missing={missing}, unknown={unknown})")

        for key, requirement in self.tiers.items():
            if requirement.tier.value != key:
                raise ValueError(f"Tier key '{key}' holds requirement for '{requirement.tier.value}'")

        for key, definition in self.achievements.items():
            if definition.id != key:
                raise ValueError(f"Achievement key '{key}' holds definition '{definition.id}'")

        for key, requirement in self.tiers.items():
            for achievement_id in requirement.achievements.required + requirement.achievements.optional:
                if achievement_id not in self.achievements:
                    raise ValueError(f"Tier '{key}' references unknown achievement '{achievement_id}'")
        return self

    def get_tier(self, tier: str) -> TierRequirement:
        return self.tiers[tier]

    def get_achievement(self, achievement_id: str) -> Optional[AchievementDefinition]:
        return self.achievements.get(achievement_id)

    def payload(self) -> dict:
        """JSON-safe body for storage (version is kept on the row)."""
        return self.model_dump(mode="json", exclude={"version"})


# ============================================================================
# API Schemas
# ============================================================================

class RewardsConfigUpdate(BaseModel):
    """Body for saving a new config version"""
    achievements: Dict[str, AchievementDefinition]
    tiers: Dict[str, TierRequirement]
    note: Optional[str] = Field(None, max_length=500)


class RewardsConfigVersionResponse(BaseResponseSchema):
    version: int
    updated_by: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime

"""
Partner tier ordering.

Tiers are stored as lowercase VARCHAR values and validated with the
PartnerTier enum at the API boundary.
"""

from enum import Enum
from typing import List, Optional


class PartnerTier(str, Enum):
    """Partnership levels, lowest first."""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


TIER_HIERARCHY: List[str] = [tier.value for tier in PartnerTier]

DEFAULT_TIER = PartnerTier.BRONZE.value


def tier_level(tier: str) -> int:
    """Position of a tier in the hierarchy (bronze=0)."""
    try:
        return TIER_HIERARCHY.index(tier)
    except ValueError:
        raise ValueError(f"Unknown tier: {tier}")


def get_next_tier(current_tier: str) -> Optional[str]:
    """Tier immediately above, or None at the top."""
    index = tier_level(current_tier)
    if index == len(TIER_HIERARCHY) - 1:
        return None
    return TIER_HIERARCHY[index + 1]


def get_previous_tier(current_tier: str) -> Optional[str]:
    """Tier immediately below, or None at the bottom."""
    index = tier_level(current_tier)
    if index == 0:
        return None
    return TIER_HIERARCHY[index - 1]

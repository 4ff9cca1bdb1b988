from partner_rewards.models.partner import Partner
from partner_rewards.models.achievement import PartnerAchievement, GrantSource
from partner_rewards.models.deal import PartnerDeal
from partner_rewards.models.rating_event import RatingEvent, RatingEventType
from partner_rewards.models.tier_history import TierHistoryEntry, TierChangeReason
from partner_rewards.models.audit_log import AuditLog
from partner_rewards.models.recompute_task import RecomputeTask, RecomputeKind, RecomputeStatus
from partner_rewards.models.rewards_config import RewardsConfigVersion

__all__ = [
    "Partner",
    "PartnerAchievement",
    "GrantSource",
    "PartnerDeal",
    "RatingEvent",
    "RatingEventType",
    "TierHistoryEntry",
    "TierChangeReason",
    "AuditLog",
    "RecomputeTask",
    "RecomputeKind",
    "RecomputeStatus",
    "RewardsConfigVersion",
]

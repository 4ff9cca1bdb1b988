# Services module
from partner_rewards.services.audit_service import AuditService
from partner_rewards.services.rating_service import RatingService
from partner_rewards.services.achievement_service import AchievementService
from partner_rewards.services.tier_service import TierService
from partner_rewards.services.partner_service import PartnerService
from partner_rewards.services.renewal_service import RenewalService
from partner_rewards.services.rewards_config_service import RewardsConfigService, RewardsConfigCache

__all__ = [
    "AuditService",
    "RatingService",
    "AchievementService",
    "TierService",
    "PartnerService",
    "RenewalService",
    "RewardsConfigService",
    "RewardsConfigCache",
]

"""
Built-in rewards configuration.

Used until an admin saves the first config version. Minimum ratings are
on the 0-5 rating scale.
"""

from partner_rewards.schemas.rewards_config import RewardsConfig


def _achievement(id, category, name, description, icon, points, tier, repeatable=False):
    return {
        "id": id,
        "category": category,
        "name": name,
        "description": description,
        "icon": icon,
        "points": points,
        "tier": tier,
        "repeatable": repeatable,
    }


DEFAULT_ACHIEVEMENTS = [
    # Certifications
    _achievement("first_certification", "certification", "First Certification",
                 "Certify your first employee", "Award", 50, "silver"),
    _achievement("second_certification", "certification", "Second Certification",
                 "Certify your second employee", "Award", 50, "gold"),
    _achievement("third_certification", "certification", "Third Certification",
                 "Certify your third employee", "Award", 50, "platinum"),

    # Deals
    _achievement("first_opportunity", "deals", "First Opportunity",
                 "Register your first sales opportunity", "TrendingUp", 30, "gold"),
    _achievement("five_opportunities", "deals", "Five Opportunities",
                 "Register 5 sales opportunities", "BarChart3", 50, "gold"),
    _achievement("first_deal_won", "deals", "First Deal Won",
                 "Close your first won deal", "Trophy", 100, "gold"),
    _achievement("two_deals_won", "deals", "Two Deals Won",
                 "Close 2 won deals", "Trophy", 100, "platinum"),

    # Optional
    _achievement("quick_document_signing", "compliance", "Quick Document Signing",
                 "Sign legal documents within 7 days", "CheckCircle", 10, "bronze", repeatable=True),
    _achievement("training_module_complete", "training", "Training Module Complete",
                 "Complete a training module", "BookOpen", 20, "bronze", repeatable=True),
    _achievement("complete_profile", "engagement", "Complete Profile",
                 "Fill in 100% of your partner profile", "User", 15, "bronze"),
    _achievement("attend_webinar", "training", "Attend Webinar",
                 "Attend a webinar or live event", "Video", 25, "bronze", repeatable=True),
    _achievement("refer_partner", "engagement", "Refer a Partner",
                 "Refer another partner who joins", "Users", 50, "bronze", repeatable=True),
]

_BASE_OPTIONAL = [
    "quick_document_signing",
    "training_module_complete",
    "complete_profile",
    "attend_webinar",
]

_GOLD_REQUIRED = [
    "first_certification",
    "second_certification",
    "first_opportunity",
    "first_deal_won",
]

DEFAULT_TIERS = {
    "bronze": {
        "tier": "bronze",
        "min_rating": 0,
        "achievements": {"required": [], "optional": _BASE_OPTIONAL},
        "annual_requirements": {"certified_employees": 0, "opportunities": 0, "deals_won": 0},
        "benefits": {"discount": 5, "features": []},
    },
    "silver": {
        "tier": "silver",
        "min_rating": 2.5,
        "achievements": {"required": ["first_certification"], "optional": _BASE_OPTIONAL},
        "annual_requirements": {"certified_employees": 1, "opportunities": 0, "deals_won": 0},
        "benefits": {"discount": 20, "features": ["priority_support"]},
    },
    "gold": {
        "tier": "gold",
        "min_rating": 3.5,
        "achievements": {"required": _GOLD_REQUIRED, "optional": _BASE_OPTIONAL + ["refer_partner"]},
        "annual_requirements": {"certified_employees": 2, "opportunities": 2, "deals_won": 1},
        "benefits": {"discount": 25, "features": ["priority_support", "co_marketing"]},
    },
    "platinum": {
        "tier": "platinum",
        "min_rating": 4.5,
        "achievements": {
            "required": _GOLD_REQUIRED + ["third_certification", "five_opportunities", "two_deals_won"],
            "optional": _BASE_OPTIONAL + ["refer_partner"],
        },
        "annual_requirements": {"certified_employees": 3, "opportunities": 5, "deals_won": 2},
        "benefits": {
            "discount": 30,
            "features": ["priority_support", "co_marketing", "dedicated_account_manager"],
        },
    },
}


def build_default_config() -> RewardsConfig:
    """Version 0: the built-in configuration."""
    return RewardsConfig.model_validate({
        "version": 0,
        "achievements": {a["id"]: a for a in DEFAULT_ACHIEVEMENTS},
        "tiers": DEFAULT_TIERS,
    })

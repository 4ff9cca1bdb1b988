"""
Rewards Administration Endpoints

Manual overrides and configuration, restricted to ADMIN_ROLES:
- Partner registration
- Manual achievement award / revoke
- Manual tier change
- Rewards config read, update, history and rollback
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from partner_rewards.api.deps import DB, CurrentActor, AdminActor, ActiveConfig, AppSettings
from partner_rewards.schemas.rewards import (
    PartnerCreate,
    PartnerResponse,
    AchievementAward,
    AchievementRevoke,
    AwardResult,
    RevokeResult,
    ManualTierChange,
    TierChangeResult,
)
from partner_rewards.schemas.rewards_config import (
    RewardsConfig,
    RewardsConfigUpdate,
    RewardsConfigVersionResponse,
)
from partner_rewards.services.achievement_service import AchievementService
from partner_rewards.services.partner_service import PartnerService
from partner_rewards.services.rewards_config_service import RewardsConfigService
from partner_rewards.services.tier_service import TierService


router = APIRouter(prefix="/admin/rewards", tags=["Rewards Administration"])


# ============================================================================
# Partners
# ============================================================================

@router.post("/partners", response_model=PartnerResponse, status_code=status.HTTP_201_CREATED)
async def create_partner(
    data: PartnerCreate,
    db: DB,
    admin: AdminActor,
    settings: AppSettings,
):
    """Register a partner at bronze with its first renewal one year out."""
    return await PartnerService(db, settings.RATING_EVENT_WINDOW_DAYS).create_partner(data)


# ============================================================================
# Achievements
# ============================================================================

@router.post("/partners/{partner_id}/achievements/award", response_model=AwardResult)
async def award_achievement(
    partner_id: UUID,
    data: AchievementAward,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
    settings: AppSettings,
):
    """
    Grant an achievement manually.

    Requires a reason of at least 10 characters. Granting an achievement
    the partner already holds returns awarded=false.
    """
    service = AchievementService(db, config, settings.ADMIN_ROLES)
    return await service.award_achievement(partner_id, data.achievement_id, actor, data.reason)


@router.delete("/partners/{partner_id}/achievements/{achievement_id}", response_model=RevokeResult)
async def revoke_achievement(
    partner_id: UUID,
    achievement_id: str,
    data: AchievementRevoke,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
    settings: AppSettings,
):
    """Revoke an achievement. The ledger entry is kept, marked revoked."""
    service = AchievementService(db, config, settings.ADMIN_ROLES)
    return await service.revoke_achievement(partner_id, achievement_id, actor, data.reason)


# ============================================================================
# Tiers
# ============================================================================

@router.post("/partners/{partner_id}/tier", response_model=TierChangeResult)
async def set_partner_tier(
    partner_id: UUID,
    data: ManualTierChange,
    db: DB,
    actor: CurrentActor,
    config: ActiveConfig,
    settings: AppSettings,
):
    """
    Manually change a partner's tier.

    Target requirements are enforced unless skip_requirements is set.
    """
    service = TierService(db, config, settings.ADMIN_ROLES)
    return await service.set_tier(
        partner_id, data.tier, actor, data.reason, skip_requirements=data.skip_requirements
    )


# ============================================================================
# Rewards Config
# ============================================================================

@router.get("/config", response_model=RewardsConfig)
async def get_config(
    admin: AdminActor,
    config: ActiveConfig,
):
    return config


@router.put("/config", response_model=RewardsConfig)
async def update_config(
    data: RewardsConfigUpdate,
    request: Request,
    db: DB,
    admin: AdminActor,
):
    """
    Save a new config version.

    All partners are queued for achievement re-evaluation.
    """
    payload = data.model_dump(mode="json", exclude={"note"})
    config = await RewardsConfigService(db).save_config(payload, admin, data.note)
    await db.commit()
    request.app.state.config_cache.set(config)
    return config


@router.get("/config/history", response_model=List[RewardsConfigVersionResponse])
async def get_config_history(
    db: DB,
    admin: AdminActor,
    limit: int = Query(50, ge=1, le=500),
):
    return await RewardsConfigService(db).list_history(limit)


@router.post("/config/rollback/{version}", response_model=RewardsConfig)
async def rollback_config(
    version: int,
    request: Request,
    db: DB,
    admin: AdminActor,
):
    """Re-save an earlier version as the newest one."""
    config = await RewardsConfigService(db).rollback(version, admin)
    await db.commit()
    request.app.state.config_cache.set(config)
    return config

from fastapi import APIRouter

from partner_rewards.api.v1.endpoints import (
    # Partner portal
    partners,
    # Administration
    admin,
    # External triggers
    cron,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Partner Rewards ====================
api_router.include_router(partners.router)

# ==================== Administration ====================
api_router.include_router(admin.router)

# ==================== Cron ====================
api_router.include_router(cron.router)

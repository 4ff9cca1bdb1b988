from typing import Annotated, Optional
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from partner_rewards.config import Settings
from partner_rewards.core.security import Actor, actor_from_token, verify_cron_secret, require_admin
from partner_rewards.database import get_db
from partner_rewards.schemas.rewards_config import RewardsConfig


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme (401 handled here rather than by FastAPI)
security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


async def get_current_actor(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Dependency to get the authenticated actor.
    Validates the JWT access token issued by the portal auth layer.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    actor = actor_from_token(request.app.state.settings, credentials.credentials)
    if actor is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    return actor


async def get_admin_actor(
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> Actor:
    """Authenticated actor holding one of ADMIN_ROLES (403 otherwise)."""
    return require_admin(actor, request.app.state.settings.ADMIN_ROLES)


async def get_rewards_config(request: Request) -> RewardsConfig:
    """Active rewards config from the application's cache."""
    return await request.app.state.config_cache.get()


async def verify_cron(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> None:
    """Bearer CRON_SECRET check for the renewal trigger."""
    token = credentials.credentials if credentials else None
    if not verify_cron_secret(request.app.state.settings, token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminActor = Annotated[Actor, Depends(get_admin_actor)]
ActiveConfig = Annotated[RewardsConfig, Depends(get_rewards_config)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./partner_rewards.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (tokens are issued by the partner portal auth layer)
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Roles allowed to perform manual overrides - accepts JSON string, comma-separated, or list
    ADMIN_ROLES: list[str] = ["sovra_admin"]

    # Shared secret for the external cron trigger
    CRON_SECRET: str = ""

    # App Settings
    APP_NAME: str = "Partner Rewards Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis (renewal lease). Without it the lease is process-local.
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    RENEWAL_CRON: str = "0 0 1 * *"  # 1st of each month at midnight

    # Annual renewal batch
    RENEWAL_LEASE_TTL_SECONDS: int = 3600  # Must exceed the longest expected run
    RENEWAL_MAX_CONCURRENT: int = 5  # Partners evaluated concurrently
    RENEWAL_MANUAL_OVERRIDE_POLICY: str = "respect"  # respect | overwrite

    # Recompute outbox worker
    RECOMPUTE_INTERVAL_SECONDS: int = 15
    RECOMPUTE_BATCH_SIZE: int = 200
    RECOMPUTE_MAX_ATTEMPTS: int = 5

    # Rewards config cache
    REWARDS_CONFIG_REFRESH_SECONDS: int = 300

    # Rating
    RATING_EVENT_WINDOW_DAYS: int = 30

    @field_validator('ADMIN_ROLES', mode='before')
    @classmethod
    def parse_admin_roles(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [role.strip() for role in v.split(',') if role.strip()]
        return v

    @field_validator('RENEWAL_MANUAL_OVERRIDE_POLICY')
    @classmethod
    def check_override_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("respect", "overwrite"):
            raise ValueError("RENEWAL_MANUAL_OVERRIDE_POLICY must be 'respect' or 'overwrite'")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

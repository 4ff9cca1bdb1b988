from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from partner_rewards.database import Base, JSONType, UTCDateTime, utcnow


class RewardsConfigVersion(Base):
    """
    Versioned rewards configuration (tiers, achievements, benefits).

    Every save inserts a new row; the highest version is active.
    Rollback re-inserts an older payload as a new version.
    """
    __tablename__ = "rewards_config_versions"

    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RewardsConfigVersion(version={self.version})>"

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, Integer, String, Text, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from partner_rewards.database import Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from partner_rewards.models.partner import Partner


class TierChangeReason(str, Enum):
    """Why a tier changed."""
    ACHIEVEMENT = "achievement"          # Eligibility-driven promotion
    ANNUAL_RENEWAL = "annual_renewal"    # Renewal batch demotion
    MANUAL = "manual"                    # Admin override


class TierHistoryEntry(Base):
    """
    Append-only tier transition log. Exactly one row per tier mutation.
    """
    __tablename__ = "tier_history"
    __table_args__ = (
        Index('ix_tier_history_partner_changed', 'partner_id', 'changed_at'),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    partner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False
    )

    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    previous_tier: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)

    # Null for system-driven transitions
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    changed_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )

    # Relationships
    partner: Mapped["Partner"] = relationship("Partner", back_populates="tier_history")

    def __repr__(self) -> str:
        return f"<TierHistoryEntry(partner={self.partner_id}, {self.previous_tier}->{self.tier}, reason={self.reason})>"

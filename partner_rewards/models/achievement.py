import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Integer, Text, ForeignKey, UniqueConstraint, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from partner_rewards.database import Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from partner_rewards.models.partner import Partner


class GrantSource(str, Enum):
    """How an achievement was granted."""
    SYSTEM = "system"    # Derived from counters by the achievement evaluator
    MANUAL = "manual"    # Awarded by an admin


class PartnerAchievement(Base):
    """
    Achievement ledger entry.

    One row per grant. Non-repeatable achievements use the achievement id
    as dedupe_key so the unique constraint allows a single active grant;
    repeatable grants get a random key. Revoking clears dedupe_key (NULLs
    never collide) and keeps the row for history.
    """
    __tablename__ = "partner_achievements"
    __table_args__ = (
        UniqueConstraint("partner_id", "dedupe_key", name="uq_partner_achievement_dedupe"),
        Index('ix_partner_achievements_partner_active', 'partner_id', 'revoked_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    partner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    achievement_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    points: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Points at grant time (definition snapshot)"
    )
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Grant
    source: Mapped[str] = mapped_column(String(20), default=GrantSource.SYSTEM.value, nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    awarded_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Revocation
    revoked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    revoked_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    revoke_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    partner: Mapped["Partner"] = relationship("Partner", back_populates="achievements")

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def __repr__(self) -> str:
        return f"<PartnerAchievement(partner={self.partner_id}, achievement={self.achievement_id})>"

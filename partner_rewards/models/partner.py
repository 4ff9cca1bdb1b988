"""Partner model for the rewards engine.

The partner row carries everything the engine derives or counts:
- Current tier and manual-override marker
- Derived rating (0-5), raw score (0-100) and factor breakdown
- Achievement point total (recomputed from the ledger)
- Lifetime business-signal counters feeding the rating factors
- Annual counters reset at every renewal
"""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Integer, Float, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from partner_rewards.database import Base, JSONType, UTCDateTime, utcnow
from partner_rewards.core.tiers import DEFAULT_TIER

if TYPE_CHECKING:
    from partner_rewards.models.achievement import PartnerAchievement
    from partner_rewards.models.tier_history import TierHistoryEntry


def _counter():
    return mapped_column(Integer, default=0, server_default=text("0"), nullable=False)


class Partner(Base):
    """
    A business account whose quality and standing the engine tracks.

    Mutated only through the rating, achievement, tier and renewal services.
    Counters are changed with atomic UPDATE ... SET col = col + n statements
    (see PartnerService.increment_counters).
    """
    __tablename__ = "partners"
    __table_args__ = (
        Index('ix_partners_renewal_due_at', 'renewal_due_at'),
        Index('ix_partners_tier', 'tier'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Tier (bronze, silver, gold, platinum)
    tier: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_TIER,
        nullable=False,
        comment="Current partnership tier"
    )
    manual_tier_set_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Last manual tier override"
    )

    # Rating
    rating: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
        comment="Derived rating, always within [0, 5]"
    )
    total_score: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Weighted factor score, 0-100"
    )
    rating_factors: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    rating_calculated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Achievements
    achievement_points: Mapped[int] = _counter()

    # Lifetime signal counters
    deals_total: Mapped[int] = _counter()
    deals_reviewed: Mapped[int] = _counter()  # reached approved, won or lost
    deals_won: Mapped[int] = _counter()
    deals_lost: Mapped[int] = _counter()
    deals_partner_generated: Mapped[int] = _counter()
    won_population_total: Mapped[int] = _counter()
    active_certifications: Mapped[int] = _counter()
    required_documents: Mapped[int] = _counter()
    signed_required_documents: Mapped[int] = _counter()

    # Annual counters (reset at renewal)
    annual_certified_employees: Mapped[int] = _counter()
    annual_opportunities: Mapped[int] = _counter()
    annual_deals_won: Mapped[int] = _counter()

    # Renewal
    renewal_due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # Original anniversary; due dates are rolled forward from it so a
    # Feb 29 anchor comes back on leap years
    renewal_anchor_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    achievements: Mapped[List["PartnerAchievement"]] = relationship(
        "PartnerAchievement",
        back_populates="partner",
        lazy="noload",
    )
    tier_history: Mapped[List["TierHistoryEntry"]] = relationship(
        "TierHistoryEntry",
        back_populates="partner",
        lazy="noload",
    )

    @property
    def annual_counters(self) -> dict:
        return {
            "certified_employees": self.annual_certified_employees or 0,
            "opportunities": self.annual_opportunities or 0,
            "deals_won": self.annual_deals_won or 0,
        }

    def __repr__(self) -> str:
        return f"<Partner(id={self.id}, tier={self.tier}, rating={self.rating})>"

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, Integer, String, ForeignKey, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from partner_rewards.database import Base, UTCDateTime, utcnow


class PartnerDeal(Base):
    """
    Last known status of one partner deal.

    Deal signals are applied as the difference between the stored status
    and the incoming one, so redelivered or corrected signals never count
    twice.
    """
    __tablename__ = "partner_deals"
    __table_args__ = (
        UniqueConstraint('partner_id', 'deal_id', name='uq_partner_deals_partner_deal'),
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
    deal_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False)
    partner_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Population credited to won_population_total while the deal is won
    population: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"), nullable=False)

    # Null until the opportunity / first review has been counted
    registered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

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

    def __repr__(self) -> str:
        return f"<PartnerDeal(partner={self.partner_id}, deal={self.deal_id}, status={self.status})>"

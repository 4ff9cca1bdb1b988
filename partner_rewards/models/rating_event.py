import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Integer, String, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from partner_rewards.database import Base, JSONType, UTCDateTime, utcnow


class RatingEventType(str, Enum):
    """Rating-relevant business facts."""
    COPILOT_SESSION_COMPLETED = "COPILOT_SESSION_COMPLETED"
    TRAINING_MODULE_COMPLETED = "TRAINING_MODULE_COMPLETED"
    CERTIFICATION_EARNED = "CERTIFICATION_EARNED"
    DEAL_CLOSED_WON = "DEAL_CLOSED_WON"
    MEDDIC_SCORE_IMPROVED = "MEDDIC_SCORE_IMPROVED"
    DEAL_CLOSED_LOST_POOR_QUALIFICATION = "DEAL_CLOSED_LOST_POOR_QUALIFICATION"
    CERTIFICATION_EXPIRED = "CERTIFICATION_EXPIRED"
    LEGAL_EXPIRED = "LEGAL_EXPIRED"
    DEAL_STALE_30_DAYS = "DEAL_STALE_30_DAYS"
    LOGIN_INACTIVE_30_DAYS = "LOGIN_INACTIVE_30_DAYS"


class RatingEvent(Base):
    """
    Append-only rating event log.

    The integer primary key is a monotonic sequence; events are ordered by
    (created_at, id) so equal timestamps tie-break on insertion order.
    Rows are never updated or deleted.
    """
    __tablename__ = "rating_events"
    __table_args__ = (
        Index('ix_rating_events_partner_created', 'partner_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    partner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    event_type: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<RatingEvent(seq={self.id}, partner={self.partner_id}, type={self.event_type})>"

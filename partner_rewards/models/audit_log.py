import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from partner_rewards.database import Base, JSONType, UTCDateTime, utcnow


class AuditLog(Base):
    """
    Audit log model for tracking manual overrides and system decisions.
    Records: achievement awards/revocations, tier overrides, renewal
    confirmations, rewards config changes.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    # Who performed the action (null for system jobs)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Actions: ACHIEVEMENT_AWARDED, ACHIEVEMENT_REVOKED, TIER_CHANGED,
    #          TIER_RENEWAL_CONFIRMED, REWARDS_CONFIG_UPDATED, etc.

    # Entity being modified
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Entity types: PARTNER, REWARDS_CONFIG

    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Change tracking
    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Additional context
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Integer, String, Text, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from partner_rewards.database import Base, UTCDateTime, utcnow


class RecomputeKind(str, Enum):
    RATING = "rating"
    ACHIEVEMENTS = "achievements"


class RecomputeStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class RecomputeTask(Base):
    """
    Outbox row requesting a derived-state recomputation for one partner.

    Written in the same transaction as the business change that triggers
    it and drained by the recompute worker, which coalesces pending rows
    per (partner_id, kind).
    """
    __tablename__ = "recompute_tasks"
    __table_args__ = (
        Index('ix_recompute_tasks_status_created', 'status', 'id'),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    partner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=RecomputeStatus.PENDING.value,
        nullable=False
    )

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<RecomputeTask(partner={self.partner_id}, kind={self.kind}, status={self.status})>"

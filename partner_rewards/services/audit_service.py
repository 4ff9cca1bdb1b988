from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partner_rewards.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for logging manual overrides and system tier decisions.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID | str] = None,
        actor_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (ACHIEVEMENT_AWARDED, TIER_CHANGED, etc.)
            entity_type: Type of entity (PARTNER, REWARDS_CONFIG)
            entity_id: ID of the affected entity
            actor_id: ID of the actor performing the action (None for system jobs)
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            description: Human-readable description

        Returns:
            The created AuditLog entry
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor_id=actor_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def log_achievement_awarded(
        self,
        partner_id: uuid.UUID,
        achievement_id: str,
        actor_id: str,
        reason: str,
        total_points: int,
        awarded: bool = True,
    ) -> AuditLog:
        """Log a manual achievement grant. awarded=False records an award of an already held achievement."""
        return await self.log(
            action="ACHIEVEMENT_AWARDED",
            entity_type="PARTNER",
            entity_id=partner_id,
            actor_id=actor_id,
            new_values={"achievement_id": achievement_id, "total_points": total_points, "awarded": awarded},
            description=(
                f"Awarded achievement {achievement_id}: {reason}" if awarded
                else f"Achievement {achievement_id} already held, not awarded again: {reason}"
            ),
        )

    async def log_achievement_revoked(
        self,
        partner_id: uuid.UUID,
        achievement_id: str,
        actor_id: str,
        reason: str,
        total_points: int,
    ) -> AuditLog:
        """Log a manual achievement revocation."""
        return await self.log(
            action="ACHIEVEMENT_REVOKED",
            entity_type="PARTNER",
            entity_id=partner_id,
            actor_id=actor_id,
            old_values={"achievement_id": achievement_id},
            new_values={"total_points": total_points},
            description=f"Revoked achievement {achievement_id}: {reason}",
        )

    async def log_tier_changed(
        self,
        partner_id: uuid.UUID,
        old_tier: str,
        new_tier: str,
        actor_id: Optional[str],
        reason: str,
        skip_requirements: bool = False,
    ) -> AuditLog:
        """Log a manual tier override."""
        return await self.log(
            action="TIER_CHANGED",
            entity_type="PARTNER",
            entity_id=partner_id,
            actor_id=actor_id,
            old_values={"tier": old_tier},
            new_values={"tier": new_tier, "skip_requirements": skip_requirements},
            description=f"Tier changed {old_tier} -> {new_tier}: {reason}",
        )

    async def log_renewal_confirmed(
        self,
        partner_id: uuid.UUID,
        tier: str,
        next_renewal: str,
    ) -> AuditLog:
        """Log a renewal that kept the current tier."""
        return await self.log(
            action="TIER_RENEWAL_CONFIRMED",
            entity_type="PARTNER",
            entity_id=partner_id,
            new_values={"tier": tier, "renewal_due_at": next_renewal},
            description=f"Annual renewal confirmed at {tier}",
        )

    async def get_entity_history(
        self,
        entity_type: str,
        entity_id: uuid.UUID | str,
        limit: int = 50,
    ) -> List[AuditLog]:
        """Get audit history for a specific entity, newest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type)
            .where(AuditLog.entity_id == str(entity_id))
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

"""
Partner Service

Handles partner registration and the business signals the rest of the
portal feeds into the rewards engine:
- Deal registration and deal status changes
- Certification earned / expired
- Legal-document compliance sync

Every signal updates counters atomically, logs the matching rating events
and enqueues rating + achievement recomputation in the same transaction.
Deal signals are diffed against the stored PartnerDeal row, so repeats
and corrections keep the counters exact.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partner_rewards.core.calendar import add_years
from partner_rewards.core.exceptions import NotFoundError, ValidationError
from partner_rewards.core.tiers import DEFAULT_TIER
from partner_rewards.database import insert_ignore, utcnow
from partner_rewards.models.deal import PartnerDeal
from partner_rewards.models.partner import Partner
from partner_rewards.models.rating_event import RatingEventType
from partner_rewards.schemas.rewards import (
    PartnerCreate,
    DealRegisteredSignal,
    DealStatusSignal,
    DealStatus,
    CertificationSignal,
    CertificationAction,
    ComplianceSyncSignal,
    SignalAccepted,
)
from partner_rewards.services.outbox import enqueue_recompute
from partner_rewards.services.rating_service import RatingService

logger = logging.getLogger(__name__)


# Deal states that count as "reviewed" for the approval rate
REVIEWED_STATUSES = {DealStatus.APPROVED, DealStatus.WON, DealStatus.LOST}

COUNTER_COLUMNS = {
    "deals_total",
    "deals_reviewed",
    "deals_won",
    "deals_lost",
    "deals_partner_generated",
    "won_population_total",
    "active_certifications",
    "annual_certified_employees",
    "annual_opportunities",
    "annual_deals_won",
}


class PartnerService:
    """Service for partner registration and business signals"""

    def __init__(self, db: AsyncSession, event_window_days: int = 30):
        self.db = db
        self.ratings = RatingService(db, event_window_days)

    # ========================================================================
    # Partners
    # ========================================================================

    async def create_partner(self, data: PartnerCreate) -> Partner:
        """Register a partner at the initial tier; first renewal is one year out."""
        if data.id is not None and await self.db.get(Partner, data.id) is not None:
            raise ValidationError(f"Partner {data.id} already exists", {"partner_id": str(data.id)})

        now = utcnow()
        renewal_due_at = data.renewal_due_at or add_years(now, 1)
        partner = Partner(
            id=data.id or uuid.uuid4(),
            name=data.name,
            tier=DEFAULT_TIER,
            renewal_due_at=renewal_due_at,
            renewal_anchor_at=renewal_due_at,
            created_at=now,
            updated_at=now,
        )
        self.db.add(partner)
        await self.db.flush()

        await enqueue_recompute(self.db, [partner.id])
        logger.info(f"Partner registered: {partner.id} ({partner.name})")
        return partner

    async def get_partner(self, partner_id: uuid.UUID) -> Optional[Partner]:
        return await self.db.get(Partner, partner_id)

    async def get_partner_or_raise(self, partner_id: uuid.UUID) -> Partner:
        partner = await self.get_partner(partner_id)
        if partner is None:
            raise NotFoundError(f"Partner {partner_id} not found", {"partner_id": str(partner_id)})
        return partner

    async def increment_counters(self, partner_id: uuid.UUID, **deltas: int) -> None:
        """Atomic UPDATE partners SET col = col + n. Unknown partner -> NotFoundError."""
        unknown = set(deltas) - COUNTER_COLUMNS
        if unknown:
            raise ValueError(f"Unknown counters: {sorted(unknown)}")

        values = {
            name: getattr(Partner, name) + delta
            for name, delta in deltas.items()
            if delta
        }
        if not values:
            await self.get_partner_or_raise(partner_id)
            return

        result = await self.db.execute(
            update(Partner)
            .where(Partner.id == partner_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Partner {partner_id} not found", {"partner_id": str(partner_id)})

    async def decrement_counters(self, partner_id: uuid.UUID, **amounts: int) -> None:
        """Atomic UPDATE partners SET col = col - n, floored at zero. Caller checks the partner exists."""
        unknown = set(amounts) - COUNTER_COLUMNS
        if unknown:
            raise ValueError(f"Unknown counters: {sorted(unknown)}")

        for name, amount in amounts.items():
            if amount <= 0:
                continue
            column = getattr(Partner, name)
            result = await self.db.execute(
                update(Partner)
                .where(Partner.id == partner_id, column >= amount)
                .values({name: column - amount})
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 0:
                await self.db.execute(
                    update(Partner)
                    .where(Partner.id == partner_id)
                    .values({name: 0})
                    .execution_options(synchronize_session="fetch")
                )

    # ========================================================================
    # Business signals
    # ========================================================================

    async def _finish_signal(self, partner_id: uuid.UUID, actor_id: Optional[str], events_logged: int) -> SignalAccepted:
        tasks = await enqueue_recompute(self.db, [partner_id], actor_id=actor_id)
        await self.db.flush()
        return SignalAccepted(partner_id=partner_id, events_logged=events_logged, tasks_enqueued=tasks)

    async def _log_event(self, partner_id, actor_id, event_type: RatingEventType, payload: dict) -> None:
        await self.ratings.log_rating_event(
            partner_id, actor_id, event_type.value, payload, recompute=False
        )

    async def _lock_deal(self, partner_id: uuid.UUID, deal_id: str) -> Optional[PartnerDeal]:
        result = await self.db.execute(
            select(PartnerDeal)
            .where(PartnerDeal.partner_id == partner_id, PartnerDeal.deal_id == deal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def record_deal_registered(
        self,
        partner_id: uuid.UUID,
        signal: DealRegisteredSignal,
        actor_id: Optional[str] = None,
    ) -> SignalAccepted:
        """A new opportunity was registered. Redelivery of the same deal is ignored."""
        await self.get_partner_or_raise(partner_id)
        now = utcnow()

        result = await insert_ignore(
            self.db,
            PartnerDeal,
            {
                "partner_id": partner_id,
                "deal_id": signal.deal_id,
                "status": DealStatus.REGISTERED.value,
                "partner_generated": signal.partner_generated,
                "population": 0,
                "registered_at": now,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["partner_id", "deal_id"],
        )
        if result.rowcount == 0:
            deal = await self._lock_deal(partner_id, signal.deal_id)
            if deal.registered_at is not None:
                logger.info(f"Deal {signal.deal_id} already registered for partner {partner_id}, ignored")
                return SignalAccepted(partner_id=partner_id, events_logged=0, tasks_enqueued=0)
            # Status arrived before the registration
            deal.registered_at = now
            deal.partner_generated = signal.partner_generated

        await self.increment_counters(
            partner_id,
            deals_total=1,
            annual_opportunities=1,
            deals_partner_generated=1 if signal.partner_generated else 0,
        )
        logger.info(f"Deal registered for partner {partner_id} (deal={signal.deal_id})")
        return await self._finish_signal(partner_id, actor_id, 0)

    async def record_deal_status(
        self,
        partner_id: uuid.UUID,
        signal: DealStatusSignal,
        actor_id: Optional[str] = None,
    ) -> SignalAccepted:
        """
        A deal moved to a new status.

        Counters follow the difference between the stored status of the deal
        and the new one: leaving won takes back deals_won, annual_deals_won
        and the credited population, leaving lost takes back deals_lost.
        deals_reviewed counts a deal once, the first time it enters
        approved/won/lost. A signal matching the stored status is ignored.

        signal.previous_status only matters for a deal seen for the first
        time: a deal already past review is not counted as reviewed again.
        """
        status = signal.status
        if signal.previous_status == status:
            raise ValidationError(
                f"Deal status unchanged: {status.value}",
                {"deal_id": signal.deal_id, "status": status.value},
            )
        await self.get_partner_or_raise(partner_id)
        now = utcnow()

        deal = await self._lock_deal(partner_id, signal.deal_id)
        if deal is None:
            # Nothing counted for this deal yet
            await insert_ignore(
                self.db,
                PartnerDeal,
                {
                    "partner_id": partner_id,
                    "deal_id": signal.deal_id,
                    "status": DealStatus.REGISTERED.value,
                    "partner_generated": False,
                    "population": 0,
                    "reviewed_at": now if signal.previous_status in REVIEWED_STATUSES else None,
                    "created_at": now,
                    "updated_at": now,
                },
                index_elements=["partner_id", "deal_id"],
            )
            deal = await self._lock_deal(partner_id, signal.deal_id)

        previous = DealStatus(deal.status)
        if previous == status:
            logger.info(f"Deal {signal.deal_id} for partner {partner_id} already {status.value}, ignored")
            return SignalAccepted(partner_id=partner_id, events_logged=0, tasks_enqueued=0)

        increments = {}
        decrements = {}
        if status in REVIEWED_STATUSES and deal.reviewed_at is None:
            increments["deals_reviewed"] = 1
            deal.reviewed_at = now

        if previous == DealStatus.WON:
            decrements.update(deals_won=1, annual_deals_won=1, won_population_total=deal.population)
            deal.population = 0
        elif previous == DealStatus.LOST:
            decrements["deals_lost"] = 1

        if status == DealStatus.WON:
            increments.update(deals_won=1, annual_deals_won=1, won_population_total=signal.population)
            deal.population = signal.population
        elif status == DealStatus.LOST:
            increments["deals_lost"] = 1

        deal.status = status.value
        await self.increment_counters(partner_id, **increments)
        await self.decrement_counters(partner_id, **decrements)

        events = 0
        payload = {"deal_id": signal.deal_id}
        if status == DealStatus.WON:
            await self._log_event(
                partner_id, actor_id, RatingEventType.DEAL_CLOSED_WON,
                {**payload, "population": signal.population},
            )
            events += 1
        elif status == DealStatus.LOST and signal.poor_qualification:
            await self._log_event(
                partner_id, actor_id, RatingEventType.DEAL_CLOSED_LOST_POOR_QUALIFICATION, payload
            )
            events += 1

        logger.info(f"Deal {signal.deal_id} for partner {partner_id}: {previous.value} -> {status.value}")
        return await self._finish_signal(partner_id, actor_id, events)

    async def record_certification(
        self,
        partner_id: uuid.UUID,
        signal: CertificationSignal,
        actor_id: Optional[str] = None,
    ) -> SignalAccepted:
        """An employee certification was earned or expired."""
        payload = {"certification_id": signal.certification_id}

        if signal.action == CertificationAction.EARNED:
            await self.increment_counters(partner_id, active_certifications=1, annual_certified_employees=1)
            await self._log_event(partner_id, actor_id, RatingEventType.CERTIFICATION_EARNED, payload)
        else:
            await self.get_partner_or_raise(partner_id)
            await self.decrement_counters(partner_id, active_certifications=1)
            await self._log_event(partner_id, actor_id, RatingEventType.CERTIFICATION_EXPIRED, payload)

        logger.info(f"Certification {signal.action.value} for partner {partner_id}")
        return await self._finish_signal(partner_id, actor_id, 1)

    async def sync_compliance(
        self,
        partner_id: uuid.UUID,
        signal: ComplianceSyncSignal,
        actor_id: Optional[str] = None,
    ) -> SignalAccepted:
        """
        Replace the legal-document counts. A drop in signed documents
        means signatures lapsed and logs LEGAL_EXPIRED.
        """
        if signal.signed_required_documents > signal.required_documents:
            raise ValidationError(
                "Signed documents cannot exceed required documents",
                signal.model_dump(),
            )

        result = await self.db.execute(
            select(Partner.signed_required_documents)
            .where(Partner.id == partner_id)
            .with_for_update()
        )
        previous_signed = result.scalar_one_or_none()
        if previous_signed is None:
            raise NotFoundError(f"Partner {partner_id} not found", {"partner_id": str(partner_id)})

        await self.db.execute(
            update(Partner)
            .where(Partner.id == partner_id)
            .values(
                required_documents=signal.required_documents,
                signed_required_documents=signal.signed_required_documents,
            )
            .execution_options(synchronize_session="fetch")
        )

        events = 0
        lapsed = previous_signed - signal.signed_required_documents
        if lapsed > 0:
            await self._log_event(
                partner_id, actor_id, RatingEventType.LEGAL_EXPIRED, {"lapsed_documents": lapsed}
            )
            events += 1

        return await self._finish_signal(partner_id, actor_id, events)

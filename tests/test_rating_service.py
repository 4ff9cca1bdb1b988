"""Tests for rating factors, rating events and rating recomputation."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from partner_rewards.core.exceptions import NotFoundError, ValidationError
from partner_rewards.database import utcnow
from partner_rewards.models.rating_event import RatingEvent, RatingEventType
from partner_rewards.models.recompute_task import RecomputeTask
from partner_rewards.schemas.rewards import RatingFactors
from partner_rewards.services.rating_service import (
    EVENT_POINTS,
    RatingService,
    certification_factor,
    combine_factors,
    compliance_factor,
    deal_quality_factor,
    engagement_factor,
    revenue_factor,
)
from tests.conftest import build_partner


def _event(event_type: RatingEventType) -> RatingEvent:
    return RatingEvent(event_type=event_type.value, points=EVENT_POINTS[event_type.value])


class TestFactors:
    """Pure factor functions."""

    def test_deal_quality_neutral_without_deals(self):
        assert deal_quality_factor(build_partner()) == 50.0

    def test_deal_quality_weights_rates(self):
        partner = build_partner(
            deals_total=4,
            deals_reviewed=4,
            deals_won=1,
            deals_lost=1,
            deals_partner_generated=2,
        )
        # approval 1.0 * 40 + win 0.5 * 40 + lead 0.5 * 20
        assert deal_quality_factor(partner) == pytest.approx(70.0)

    def test_engagement_caps_and_penalties(self):
        events = [_event(RatingEventType.COPILOT_SESSION_COMPLETED)] * 10
        events += [_event(RatingEventType.TRAINING_MODULE_COMPLETED)] * 3
        assert engagement_factor(events) == 95.0

        events = [_event(RatingEventType.LOGIN_INACTIVE_30_DAYS)] * 6
        assert engagement_factor(events) == 0.0

    def test_certification_steps(self):
        assert [certification_factor(n) for n in range(5)] == [20.0, 60.0, 80.0, 100.0, 100.0]

    def test_compliance_ratio(self):
        assert compliance_factor(0, 0) == 100.0
        assert compliance_factor(4, 3) == 75.0

    def test_revenue_population_bonus(self):
        assert revenue_factor(0, 0) == 30.0
        assert revenue_factor(2, 2_400_000) == 60.0
        assert revenue_factor(10, 0) == 70.0

    def test_combine_clamps_to_scale(self):
        perfect = RatingFactors(deal_quality=100, engagement=100, certification=100, compliance=100, revenue=100)
        assert combine_factors(perfect) == (100, 5.0)

        zero = RatingFactors(deal_quality=0, engagement=0, certification=0, compliance=0, revenue=0)
        assert combine_factors(zero) == (0, 0.0)


class TestRatingEvents:
    """Event logging through RatingService."""

    @pytest.mark.asyncio
    async def test_log_event_records_points_and_enqueues_rating(self, db, add_partner):
        partner = await add_partner()
        service = RatingService(db)

        event = await service.log_rating_event(
            partner.id, "user-1", RatingEventType.DEAL_CLOSED_WON.value, {"deal_id": "D-1"}
        )

        assert event.id is not None
        assert event.points == 15
        tasks = (await db.execute(select(RecomputeTask))).scalars().all()
        assert [(t.partner_id, t.kind) for t in tasks] == [(partner.id, "rating")]

    @pytest.mark.asyncio
    async def test_unknown_event_type_rejected(self, db, add_partner):
        partner = await add_partner()

        with pytest.raises(ValidationError):
            await RatingService(db).log_rating_event(partner.id, None, "DEAL_EXPLODED")

    @pytest.mark.asyncio
    async def test_unknown_partner_rejected(self, db):
        with pytest.raises(NotFoundError):
            await RatingService(db).log_rating_event(
                build_partner().id, None, RatingEventType.LEGAL_EXPIRED.value
            )

    @pytest.mark.asyncio
    async def test_event_ids_increase_with_insertion_order(self, db, add_partner):
        partner = await add_partner()
        service = RatingService(db)

        first = await service.log_rating_event(partner.id, None, RatingEventType.COPILOT_SESSION_COMPLETED.value)
        second = await service.log_rating_event(partner.id, None, RatingEventType.COPILOT_SESSION_COMPLETED.value)

        assert second.id > first.id
        newest_first = await service.get_partner_events(partner.id)
        assert [e.id for e in newest_first] == [second.id, first.id]


class TestRecalculation:
    """Rating recomputation."""

    @pytest.mark.asyncio
    async def test_new_partner_rating_within_scale(self, db, add_partner):
        partner = await add_partner()

        calculation = await RatingService(db).calculate_partner_rating(partner.id)

        assert 0 <= calculation.rating <= 5
        assert calculation.rating == pytest.approx(calculation.total_score / 20)
        assert calculation.factors.certification == 20.0
        assert calculation.factors.compliance == 100.0

    @pytest.mark.asyncio
    async def test_events_outside_window_ignored(self, db, add_partner):
        partner = await add_partner()
        service = RatingService(db, event_window_days=30)
        now = utcnow()

        db.add(RatingEvent(
            partner_id=partner.id,
            event_type=RatingEventType.LOGIN_INACTIVE_30_DAYS.value,
            points=-2,
            created_at=now - timedelta(days=45),
        ))
        await db.flush()

        calculation = await service.calculate_partner_rating(partner.id, now=now)
        assert calculation.factors.engagement == 50.0

    @pytest.mark.asyncio
    async def test_recalculate_stores_rating_but_not_tier(self, db, add_partner):
        partner = await add_partner(tier="silver", active_certifications=3, deals_total=2, deals_reviewed=2)

        calculation = await RatingService(db).recalculate_and_update_partner(partner.id, "user-1")

        await db.refresh(partner)
        assert partner.rating == calculation.rating
        assert partner.total_score == calculation.total_score
        assert partner.rating_factors["certification"] == 100.0
        assert partner.rating_calculated_at is not None
        assert partner.tier == "silver"

    @pytest.mark.asyncio
    async def test_recalculate_is_repeatable(self, db, add_partner):
        partner = await add_partner(deals_total=3, deals_won=1, deals_lost=1, deals_reviewed=2)
        service = RatingService(db)

        first = await service.recalculate_and_update_partner(partner.id)
        second = await service.recalculate_and_update_partner(partner.id)

        assert (first.rating, first.total_score) == (second.rating, second.total_score)

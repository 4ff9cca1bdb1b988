"""HTTP-level tests for the partner, admin and cron routers."""

import uuid
from datetime import timedelta

import pytest

from partner_rewards.database import utcnow


API = "/api/v1"
REASON = "Approved by the channel partnerships team"


async def _create_partner(client, admin_headers, **body):
    body.setdefault("name", "Acme Health")
    response = await client.post(f"{API}/admin/rewards/partners", json=body, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestAuth:
    """Authentication and error bodies."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get(f"{API}/partners/{uuid.uuid4()}/rating")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(
            f"{API}/partners/{uuid.uuid4()}/rating",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_non_admin_award_forbidden(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers)

        response = await client.post(
            f"{API}/admin/rewards/partners/{partner['id']}/achievements/award",
            json={"achievement_id": "complete_profile", "reason": REASON},
            headers=user_headers,
        )

        assert response.status_code == 403
        body = response.json()
        assert set(body) == {"error", "type", "details", "path"}
        assert body["type"] == "ForbiddenError"

    @pytest.mark.asyncio
    async def test_unknown_partner_is_404(self, client, user_headers):
        response = await client.get(f"{API}/partners/{uuid.uuid4()}/tier/eligibility", headers=user_headers)

        assert response.status_code == 404
        assert response.json()["type"] == "NotFoundError"


class TestPartnerEndpoints:
    """Portal reads, events and signals."""

    @pytest.mark.asyncio
    async def test_create_partner(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers, name="Northwind Clinics")

        assert partner["tier"] == "bronze"
        assert partner["achievement_points"] == 0

        response = await client.get(f"{API}/partners/{partner['id']}/rating", headers=user_headers)
        assert response.status_code == 200
        assert response.json()["tier"] == "bronze"

    @pytest.mark.asyncio
    async def test_create_partner_requires_admin(self, client, user_headers):
        response = await client.post(
            f"{API}/admin/rewards/partners", json={"name": "Acme Health"}, headers=user_headers
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_eligibility_and_next_tier(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers)

        eligibility = await client.get(f"{API}/partners/{partner['id']}/tier/eligibility", headers=user_headers)
        next_tier = await client.get(f"{API}/partners/{partner['id']}/tier/next", headers=user_headers)
        renewal = await client.get(f"{API}/partners/{partner['id']}/renewal", headers=user_headers)

        assert eligibility.status_code == 200
        assert eligibility.json()["next_tier"] == "silver"
        assert eligibility.json()["eligible"] is False
        assert next_tier.json()["required_achievements"][0]["achievement_id"] == "first_certification"
        assert renewal.json()["days_until_renewal"] in (365, 366)

    @pytest.mark.asyncio
    async def test_log_rating_event(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers)
        url = f"{API}/partners/{partner['id']}/rating/events"

        accepted = await client.post(url, json={"event_type": "COPILOT_SESSION_COMPLETED"}, headers=user_headers)
        rejected = await client.post(url, json={"event_type": "COFFEE_BREAK"}, headers=user_headers)
        listed = await client.get(url, headers=user_headers)

        assert accepted.status_code == 202
        assert accepted.json()["points"] == 2
        assert rejected.status_code == 400
        assert [e["event_type"] for e in listed.json()] == ["COPILOT_SESSION_COMPLETED"]

    @pytest.mark.asyncio
    async def test_recalculate_rating(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers)

        response = await client.post(f"{API}/partners/{partner['id']}/rating/recalculate", headers=user_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total_score"] == 50
        assert body["factors"]["certification"] == 20

    @pytest.mark.asyncio
    async def test_signals_accepted(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers)
        base = f"{API}/partners/{partner['id']}/signals"

        registered = await client.post(
            f"{base}/deal-registered", json={"deal_id": "D-1", "partner_generated": True}, headers=user_headers
        )
        won = await client.post(
            f"{base}/deal-status",
            json={"deal_id": "D-1", "status": "won", "previous_status": "approved", "population": 120000},
            headers=user_headers,
        )
        certified = await client.post(f"{base}/certification", json={"action": "earned"}, headers=user_headers)

        assert [r.status_code for r in (registered, won, certified)] == [202, 202, 202]
        assert won.json()["events_logged"] == 1
        assert certified.json()["tasks_enqueued"] == 2


class TestAdminEndpoints:
    """Manual overrides and config management."""

    @pytest.mark.asyncio
    async def test_award_and_revoke(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers)
        base = f"{API}/admin/rewards/partners/{partner['id']}/achievements"

        awarded = await client.post(
            f"{base}/award", json={"achievement_id": "complete_profile", "reason": REASON}, headers=admin_headers
        )
        assert awarded.status_code == 200
        assert awarded.json()["total_points"] == 15

        listed = await client.get(f"{API}/partners/{partner['id']}/achievements", headers=user_headers)
        assert [a["achievement_id"] for a in listed.json()] == ["complete_profile"]

        revoked = await client.request(
            "DELETE", f"{base}/complete_profile", json={"reason": "Profile data was inaccurate"}, headers=admin_headers
        )
        assert revoked.status_code == 200
        assert revoked.json()["total_points"] == 0

    @pytest.mark.asyncio
    async def test_short_reason_rejected(self, client, admin_headers):
        partner = await _create_partner(client, admin_headers)

        response = await client.post(
            f"{API}/admin/rewards/partners/{partner['id']}/achievements/award",
            json={"achievement_id": "complete_profile", "reason": "ok"},
            headers=admin_headers,
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_manual_tier_change(self, client, admin_headers, user_headers):
        partner = await _create_partner(client, admin_headers)
        url = f"{API}/admin/rewards/partners/{partner['id']}/tier"

        blocked = await client.post(url, json={"tier": "gold", "reason": REASON}, headers=admin_headers)
        forced = await client.post(
            url, json={"tier": "gold", "reason": REASON, "skip_requirements": True}, headers=admin_headers
        )
        history = await client.get(f"{API}/partners/{partner['id']}/tier/history", headers=user_headers)

        assert blocked.status_code == 400
        assert forced.status_code == 200
        assert (forced.json()["previous_tier"], forced.json()["tier"]) == ("bronze", "gold")
        assert [(h["tier"], h["reason"]) for h in history.json()] == [("gold", "manual")]

    @pytest.mark.asyncio
    async def test_unknown_tier_is_422(self, client, admin_headers):
        partner = await _create_partner(client, admin_headers)

        response = await client.post(
            f"{API}/admin/rewards/partners/{partner['id']}/tier",
            json={"tier": "diamond", "reason": REASON, "skip_requirements": True},
            headers=admin_headers,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_config_update_history_and_rollback(self, client, admin_headers):
        url = f"{API}/admin/rewards/config"

        current = await client.get(url, headers=admin_headers)
        assert current.status_code == 200
        body = current.json()
        assert body["version"] == 0

        body["tiers"]["gold"]["benefits"]["discount"] = 27
        body["note"] = "Gold promo"
        saved = await client.put(url, json=body, headers=admin_headers)
        assert saved.status_code == 200
        assert saved.json()["version"] == 1

        active = await client.get(url, headers=admin_headers)
        assert active.json()["tiers"]["gold"]["benefits"]["discount"] == 27

        rolled_back = await client.post(f"{url}/rollback/1", headers=admin_headers)
        assert rolled_back.json()["version"] == 2

        history = await client.get(f"{url}/history", headers=admin_headers)
        assert [h["version"] for h in history.json()] == [2, 1]

        missing = await client.post(f"{url}/rollback/99", headers=admin_headers)
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_config_rejected(self, client, admin_headers):
        url = f"{API}/admin/rewards/config"
        body = (await client.get(url, headers=admin_headers)).json()
        body["tiers"]["silver"]["achievements"]["required"] = ["moon_landing"]

        response = await client.put(url, json=body, headers=admin_headers)

        assert response.status_code == 400
        assert (await client.get(url, headers=admin_headers)).json()["version"] == 0


class TestCronAndHealth:
    """Renewal trigger and health check."""

    @pytest.mark.asyncio
    async def test_cron_requires_secret(self, client, user_headers):
        assert (await client.get(f"{API}/cron/tier-renewal")).status_code == 401
        assert (await client.post(f"{API}/cron/tier-renewal", headers=user_headers)).status_code == 401

    @pytest.mark.asyncio
    async def test_cron_runs_renewal(self, client, cron_headers, seed_partner, load_partner):
        partner_id = await seed_partner(tier="gold", renewal_due_at=utcnow() - timedelta(days=1))

        response = await client.post(f"{API}/cron/tier-renewal", headers=cron_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["stats"]["processed"] == 1
        assert body["stats"]["downgraded"] == 1
        assert (await load_partner(partner_id)).tier == "silver"

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "connected"

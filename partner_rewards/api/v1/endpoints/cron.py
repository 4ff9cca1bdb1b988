"""
Cron Endpoints

External trigger for the annual renewal batch. Protected by the
CRON_SECRET bearer token rather than user auth. Both GET and POST are
accepted so plain HTTP cron services can call it.
"""
import logging

from fastapi import APIRouter, Depends, Request

from partner_rewards.api.deps import verify_cron
from partner_rewards.database import utcnow


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def _run_renewal(request: Request) -> dict:
    stats = await request.app.state.renewal_service.process_all_due_renewals()

    if stats.skipped:
        message = "Renewal already running elsewhere; skipped"
    else:
        message = (
            f"Processed {stats.processed} renewals "
            f"({stats.renewed} renewed, {stats.downgraded} downgraded, {len(stats.errors)} errors)"
        )
    logger.info(f"Cron tier-renewal: {message}")

    return {
        "success": True,
        "message": message,
        "stats": stats.model_dump(),
        "timestamp": utcnow().isoformat(),
    }


@router.get("/tier-renewal", dependencies=[Depends(verify_cron)])
async def trigger_tier_renewal(request: Request):
    """Run the annual renewal batch for every partner that is due."""
    return await _run_renewal(request)


@router.post("/tier-renewal", dependencies=[Depends(verify_cron)])
async def trigger_tier_renewal_post(request: Request):
    return await _run_renewal(request)

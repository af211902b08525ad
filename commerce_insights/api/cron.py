"""
FastAPI router for the scheduled analytics trigger.

GET|POST /cron/analytics
    Authorization: Bearer <CRON_SECRET>

Runs the pipeline over the last CRON_DAYS days, persists the result and
hands the digest to the DigestQueue. A failed run is logged and returns 500
without persisting anything; a failed digest never affects the response.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from commerce_insights.core.dependencies import (
    DigestQueueDep,
    SettingsDep,
    StoreDep,
    verify_cron_secret,
)
from commerce_insights.jobs.digest_dispatch import dispatch
from commerce_insights.services.orchestrator import run_analytics


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])

# Window of the scheduled run
CRON_DAYS: int = 7


@router.api_route("/analytics", methods=["GET", "POST"])
async def scheduled_run(store: StoreDep, settings: SettingsDep, queue: DigestQueueDep):
    """Scheduled 7-day run followed by a queued digest."""
    try:
        result = await run_analytics(CRON_DAYS, store=store, settings=settings)
    except Exception:
        logger.exception("Scheduled analytics run failed")
        raise HTTPException(status_code=500, detail="Scheduled analytics run failed")

    label = result.run_at.isoformat()
    queued = queue.submit(label, lambda: dispatch(result, store=store, settings=settings))

    return {
        "success": True,
        "run_at": label,
        "orders": result.summary.order_count,
        "recommendations": len(result.recommendations),
        "delivery_issues": len(result.delivery_issues),
        "digest_queued": queued,
    }

"""
FastAPI router module for analytics runs and advice.

Implements:
- POST /analytics/run: manual on-demand run {days, send_email}
- GET /analytics/summary: latest persisted run, no recomputation
- GET /analytics/recommendations: recommendations of the latest persisted run
- GET /analytics/advice: stateless fresh run (not persisted) + advice
- GET /analytics/advice/latest: advice for the latest persisted run

Response Contracts:
- A failed manual run returns {success: false, error} with 400/503/500
- The read-only endpoints return status 'no_data' and empty fields when no
  run has been persisted yet
- The advice endpoints always return the AIAdviceResult shape; on failure
  they return the fallback advice with a non-200 status
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from commerce_insights.core.config import AdvisoryConfig
from commerce_insights.core.dependencies import SettingsDep, StoreDep
from commerce_insights.core.errors import AnalyticsError, DataUnavailable, ValidationError
from commerce_insights.jobs.digest_dispatch import dispatch
from commerce_insights.models import (
    AIAdviceResult,
    Attribution,
    CampaignPerformance,
    DeliveryIssue,
    Recommendation,
    RunStatus,
    Summary,
    Trend,
)
from commerce_insights.services.advisory import advise, fallback_advice
from commerce_insights.services.orchestrator import run_analytics


# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


# =============================================================================
# Local Pydantic Models for API Requests/Responses
# =============================================================================

class RunRequest(BaseModel):
    """Body of POST /analytics/run."""
    days: int = Field(7, description="Lookback window in days (positive integer)")
    send_email: bool = Field(False, description="Dispatch the digest after the run")


class RunResponse(BaseModel):
    """Response of POST /analytics/run."""
    success: bool
    run_at: Optional[datetime] = None
    summary: Optional[Summary] = None
    recommendations: List[Recommendation] = Field(default_factory=list)
    delivery_issues: List[DeliveryIssue] = Field(default_factory=list)
    email_sent: bool = False
    error: Optional[str] = None


class LatestSummaryResponse(BaseModel):
    """Response of GET /analytics/summary."""
    status: RunStatus
    run_at: Optional[datetime] = None
    days: Optional[int] = None
    summary: Optional[Summary] = None
    attribution: Optional[Attribution] = None
    campaigns: List[CampaignPerformance] = Field(default_factory=list)
    trends: List[Trend] = Field(default_factory=list)
    delivery_issues: List[DeliveryIssue] = Field(default_factory=list)


class LatestRecommendationsResponse(BaseModel):
    """Response of GET /analytics/recommendations."""
    status: RunStatus
    run_at: Optional[datetime] = None
    recommendations: List[Recommendation] = Field(default_factory=list)


def _error_response(status_code: int, message: str) -> JSONResponse:
    body = RunResponse(success=False, error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode='json'))


def _fallback_response(status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=fallback_advice().model_dump(mode='json'))


# =============================================================================
# Manual Trigger
# =============================================================================

@router.post("/run", response_model=RunResponse)
async def trigger_run(request: RunRequest, store: StoreDep, settings: SettingsDep):
    """
    Run the analytics pipeline now and optionally send the digest.

    The digest send is awaited, but its failure only sets email_sent=False;
    the run itself has already been persisted and is reported as successful.
    """
    try:
        result = await run_analytics(request.days, store=store, settings=settings)
    except ValidationError as e:
        return _error_response(400, str(e))
    except DataUnavailable as e:
        logger.error(f"Manual analytics run aborted: {e}")
        return _error_response(503, str(e))
    except AnalyticsError as e:
        logger.error(f"Manual analytics run failed: {e}")
        return _error_response(500, str(e))
    except Exception:
        logger.exception("Unexpected error during manual analytics run")
        return _error_response(500, "Internal error while running analytics")

    email_sent = False
    if request.send_email:
        email_sent = await dispatch(result, store=store, settings=settings)

    return RunResponse(
        success=True,
        run_at=result.run_at,
        summary=result.summary,
        recommendations=result.recommendations,
        delivery_issues=result.delivery_issues,
        email_sent=email_sent,
    )


# =============================================================================
# Read-only Latest Run
# =============================================================================

@router.get("/summary", response_model=LatestSummaryResponse)
async def latest_summary(store: StoreDep):
    """Return the most recently persisted run without recomputing it."""
    try:
        result = await store.latest_result()
    except DataUnavailable as e:
        logger.error(f"Cannot read latest analytics run: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    if result is None:
        return LatestSummaryResponse(status=RunStatus.NO_DATA)

    return LatestSummaryResponse(
        status=RunStatus.OK,
        run_at=result.run_at,
        days=result.days,
        summary=result.summary,
        attribution=result.attribution,
        campaigns=result.campaigns,
        trends=result.trends,
        delivery_issues=result.delivery_issues,
    )


@router.get("/recommendations", response_model=LatestRecommendationsResponse)
async def latest_recommendations(store: StoreDep):
    try:
        result = await store.latest_result()
    except DataUnavailable as e:
        logger.error(f"Cannot read latest analytics run: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    if result is None:
        return LatestRecommendationsResponse(status=RunStatus.NO_DATA)

    return LatestRecommendationsResponse(
        status=RunStatus.OK,
        run_at=result.run_at,
        recommendations=result.recommendations,
    )


# =============================================================================
# Advice
# =============================================================================

def _parse_days(raw: str) -> int:
    """Query-string days as an int; ValidationError for non-integer text."""
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ValidationError('days must be a positive integer', detail=f'got {raw!r}') from e


@router.get("/advice", response_model=AIAdviceResult)
async def fresh_advice(
    store: StoreDep,
    settings: SettingsDep,
    days: str = Query("7", description="Lookback window in days (positive integer)"),
):
    """
    Compute a fresh, unpersisted run and advise on it.

    Always returns the AIAdviceResult shape: the fallback advice with 400 for
    an invalid or non-numeric window and 500 for any other failure.
    """
    try:
        result = await run_analytics(_parse_days(days), store=store, settings=settings, persist=False)
        return advise(result, AdvisoryConfig.from_settings(settings))
    except ValidationError as e:
        logger.warning(f"Rejected advice request: {e}")
        return _fallback_response(400)
    except Exception:
        logger.exception("Error generating advice")
        return _fallback_response(500)


@router.get("/advice/latest", response_model=AIAdviceResult)
async def latest_advice(store: StoreDep, settings: SettingsDep):
    """Advise on the latest persisted run; fallback advice when none exists."""
    try:
        result = await store.latest_result()
        return advise(result, AdvisoryConfig.from_settings(settings))
    except Exception:
        logger.exception("Error generating advice for the latest run")
        return _fallback_response(500)

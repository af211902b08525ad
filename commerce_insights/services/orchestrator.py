"""
Analytics Run Orchestrator.

Single entry point of the pipeline: run_analytics(days).

Sequence:
    1. Validate days and build the window of the last ``days`` whole UTC days
    2. Load the window's events once, with earlier touches of its orders
       (DataUnavailable aborts the run)
    3. Load the previous persisted run and VIP customer activity (best effort)
    4. Aggregate -> Summary, Attribution, campaign performance
    5. Analyze -> Trends, DeliveryIssues
    6. Recommend -> ranked Recommendations
    7. Assemble one immutable AnalyticsResult
    8. Persist it (exactly one write attempt, no retries)

run_at is the orchestration start time, so runs triggered by the same
scheduled tick carry comparable timestamps. Any fatal error propagates
before step 7, so a caller either receives a complete result or none.
Persistence is the last step; a run aborted earlier leaves nothing behind.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from commerce_insights.core.config import Settings, get_settings
from commerce_insights.core.errors import DataUnavailable
from commerce_insights.models import AnalyticsResult, AnalyticsWindow, Attribution, VipActivity, ensure_utc
from commerce_insights.services.aggregation import aggregate, campaign_performance, load_window_events
from commerce_insights.services.recommendations import RuleThresholds, recommend
from commerce_insights.services.trends import TRACKED_METRICS, analyze


logger = logging.getLogger(__name__)


async def _previous_attribution(store) -> Optional[Attribution]:
    """Attribution of the latest persisted run; None when absent or unreadable."""
    try:
        previous = await store.latest_result()
    except Exception as e:
        logger.warning(f"Previous run unavailable for comparison: {e}")
        return None
    return previous.attribution if previous is not None else None


async def _vip_activity(store, window: AnalyticsWindow, min_revenue: float) -> Optional[VipActivity]:
    """VIP counts for the window; None when the activity scan is unavailable."""
    try:
        return await store.load_vip_activity(window, min_revenue)
    except DataUnavailable as e:
        logger.warning(f"VIP customer activity unavailable: {e}")
        return None


async def run_analytics(
    days: int,
    *,
    store,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    persist: bool = True,
    metrics: Iterable[str] = TRACKED_METRICS,
) -> AnalyticsResult:
    """
    Run the analytics pipeline over the last ``days`` days.

    Args:
        days: Window length in days (positive integer).
        store: AnalyticsStore (or any object with the same contract).
        settings: Thresholds; defaults to the cached application settings.
        now: Orchestration start time; defaults to the current UTC time.
        persist: When False the result is returned without being written
            (used by the stateless advice endpoint).
        metrics: Trend metrics to compute.

    Returns:
        AnalyticsResult: The complete run output.

    Raises:
        ValidationError: If days is not a positive integer.
        DataUnavailable: If the event source cannot be read.
        AttributionError: If attribution weights fail their check.
        PersistenceError: If the single write attempt fails.
    """
    settings = settings or get_settings()
    run_at = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    window = AnalyticsWindow.for_days(days, run_at)

    logger.info(f"Starting analytics run: days={days}, run_at={run_at.isoformat()}")

    events = await load_window_events(store, window)
    previous_attribution = await _previous_attribution(store)
    vip_activity = await _vip_activity(store, window, settings.vip_min_revenue)

    summary, attribution = aggregate(events, window)
    if vip_activity is not None:
        summary = summary.model_copy(update={
            'active_vip_customers': vip_activity.active,
            'lapsed_vip_customers': vip_activity.lapsed,
        })
    campaigns = campaign_performance(events, attribution)
    trends, delivery_issues = analyze(
        events,
        window,
        metrics,
        warning_rate=settings.delivery_warning_rate,
        critical_rate=settings.delivery_critical_rate,
    )
    recommendations = recommend(
        summary,
        attribution,
        trends,
        previous_attribution=previous_attribution,
        thresholds=RuleThresholds.from_settings(settings),
    )

    result = AnalyticsResult(
        run_at=run_at,
        days=days,
        summary=summary,
        attribution=attribution,
        campaigns=campaigns,
        trends=trends,
        delivery_issues=delivery_issues,
        recommendations=recommendations,
    )

    if persist:
        await store.save_result(result)

    logger.info(
        f"Analytics run complete: {summary.order_count} orders, "
        f"{len(delivery_issues)} delivery issue(s), {len(recommendations)} recommendation(s)"
    )
    return result

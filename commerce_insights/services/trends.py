"""
Trend & Delivery Analyzer Service.

Buckets one window of events into daily series per metric and flags email
delivery issues.

Bucketing:
- The window is split into exactly ``days`` daily buckets
- Bucket i starts at midnight UTC of the window start plus i days
- Windows from AnalyticsWindow.for_days() start and end at midnight UTC, so
  every bucket covers exactly one UTC day
- For a hand-built window that is not midnight aligned, events past the last
  boundary clamp into the final bucket, so no in-window event is dropped
- Empty buckets are zero-filled; a Trend always has ``days`` points

Tracked metrics (TRACKED_METRICS):
    orders, revenue, sessions, conversion_rate, spend, new_customers,
    emails_sent, emails_failed

A requested metric with no underlying source yields an all-zero Trend with
status insufficient_data instead of an error.

Delivery issues:
    failure_rate = failed / sent per email bucket (0 when nothing was sent)
    failure_rate > warning_rate  -> warning
    failure_rate > critical_rate -> critical
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from commerce_insights.models import (
    AnalyticsWindow,
    DataStatus,
    DeliveryIssue,
    EmailStatus,
    Event,
    EventType,
    Severity,
    Trend,
    TrendPoint,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

TRACKED_METRICS: Tuple[str, ...] = (
    'orders',
    'revenue',
    'sessions',
    'conversion_rate',
    'spend',
    'new_customers',
    'emails_sent',
    'emails_failed',
)

# Email statuses counted as failed deliveries
FAILED_EMAIL_STATUSES = frozenset({EmailStatus.FAILED.value, EmailStatus.BOUNCED.value})

DEFAULT_WARNING_RATE: float = 0.05
DEFAULT_CRITICAL_RATE: float = 0.15

FRAME_COLUMNS = ['bucket', 'event_type', 'amount', 'status', 'session_key', 'customer_key']


# =============================================================================
# Bucketing Helpers
# =============================================================================

def bucket_origin(window: AnalyticsWindow) -> datetime:
    """Midnight UTC of the window start."""
    return window.start.replace(hour=0, minute=0, second=0, microsecond=0)


def bucket_starts(window: AnalyticsWindow) -> List[datetime]:
    origin = bucket_origin(window)
    return [origin + timedelta(days=i) for i in range(window.days)]


def bucket_index(moment: datetime, window: AnalyticsWindow) -> int:
    """Daily bucket for a timestamp, clamped to [0, days - 1]."""
    index = (moment - bucket_origin(window)).days
    return min(max(index, 0), window.days - 1)


def build_frame(events: Iterable[Event], window: AnalyticsWindow) -> pd.DataFrame:
    """
    One row per in-window event with its bucket index.

    Missing session/customer ids get a unique placeholder so distinct counts
    treat each anonymous event as its own session or customer.
    """
    records = []
    for position, event in enumerate(events):
        if not window.contains(event.occurred_at):
            continue
        records.append({
            'bucket': bucket_index(event.occurred_at, window),
            'event_type': event.event_type.value,
            'amount': event.amount or 0.0,
            'status': (event.status or '').lower(),
            'session_key': event.session_id or f'_anonymous_{position}',
            'customer_key': event.customer_id or f'_anonymous_{position}',
        })
    return pd.DataFrame.from_records(records, columns=FRAME_COLUMNS)


def _bucketed(frame: pd.DataFrame, mask: pd.Series, days: int, how: str, column: Optional[str] = None) -> pd.Series:
    """Aggregate the masked rows per bucket and zero-fill to ``days`` buckets."""
    subset = frame.loc[mask]
    grouped = subset.groupby('bucket')
    if how == 'count':
        series = grouped.size()
    elif how == 'sum':
        series = grouped[column].sum()
    else:
        series = grouped[column].nunique()
    return series.reindex(range(days), fill_value=0).astype(float)


def metric_series(frame: pd.DataFrame, metric: str, days: int) -> Optional[pd.Series]:
    """
    Daily values for one tracked metric, or None for an unknown metric.
    """
    kind = frame['event_type']

    if metric == 'orders':
        return _bucketed(frame, kind == EventType.ORDER.value, days, 'count')
    if metric == 'revenue':
        return _bucketed(frame, kind == EventType.ORDER.value, days, 'sum', 'amount')
    if metric == 'sessions':
        return _bucketed(frame, kind == EventType.SESSION.value, days, 'nunique', 'session_key')
    if metric == 'conversion_rate':
        orders = metric_series(frame, 'orders', days)
        sessions = metric_series(frame, 'sessions', days)
        rate = np.divide(
            orders.to_numpy(),
            sessions.to_numpy(),
            out=np.zeros(days),
            where=sessions.to_numpy() > 0,
        )
        return pd.Series(rate, index=range(days))
    if metric == 'spend':
        return _bucketed(frame, kind == EventType.CAMPAIGN_SEND.value, days, 'sum', 'amount')
    if metric == 'new_customers':
        return _bucketed(frame, kind == EventType.SIGNUP.value, days, 'nunique', 'customer_key')
    if metric == 'emails_sent':
        return _bucketed(frame, kind == EventType.EMAIL.value, days, 'count')
    if metric == 'emails_failed':
        failed = (kind == EventType.EMAIL.value) & frame['status'].isin(FAILED_EMAIL_STATUSES)
        return _bucketed(frame, failed, days, 'count')
    return None


def _order_metrics(metrics: Iterable[str]) -> List[str]:
    """Tracked metrics in declared order, then unknown names alphabetically."""
    requested = set(metrics)
    known = [m for m in TRACKED_METRICS if m in requested]
    unknown = sorted(m for m in requested if m not in TRACKED_METRICS)
    return known + unknown


# =============================================================================
# Trends
# =============================================================================

def compute_trends(
    frame: pd.DataFrame,
    window: AnalyticsWindow,
    metrics: Iterable[str] = TRACKED_METRICS,
) -> List[Trend]:
    """
    Build one fixed-length Trend per requested metric.

    Returns:
        Trends in TRACKED_METRICS order followed by unknown metrics
        (all-zero, status insufficient_data).
    """
    starts = bucket_starts(window)
    trends: List[Trend] = []

    for metric in _order_metrics(metrics):
        series = metric_series(frame, metric, window.days)
        if series is None:
            logger.warning(f"No data source for metric '{metric}', reporting an empty trend")
            values = [0.0] * window.days
            status = DataStatus.INSUFFICIENT_DATA
        else:
            values = [float(v) for v in series.tolist()]
            status = DataStatus.COMPUTED

        trends.append(Trend(
            metric=metric,
            status=status,
            points=[
                TrendPoint(period_index=i, period_start=start, value=value)
                for i, (start, value) in enumerate(zip(starts, values))
            ],
        ))

    return trends


# =============================================================================
# Delivery Issues
# =============================================================================

def detect_delivery_issues(
    frame: pd.DataFrame,
    window: AnalyticsWindow,
    warning_rate: float = DEFAULT_WARNING_RATE,
    critical_rate: float = DEFAULT_CRITICAL_RATE,
) -> List[DeliveryIssue]:
    """
    Flag email buckets whose failure rate exceeds the configured thresholds.

    Args:
        frame: Event frame from build_frame().
        window: The analyzed window.
        warning_rate: failure_rate above this is a warning.
        critical_rate: failure_rate above this is critical.

    Returns:
        At most one DeliveryIssue per bucket, in bucket order.
    """
    sent = metric_series(frame, 'emails_sent', window.days)
    failed = metric_series(frame, 'emails_failed', window.days)
    starts = bucket_starts(window)
    issues: List[DeliveryIssue] = []

    for i, start in enumerate(starts):
        sent_count = int(sent.iloc[i])
        failed_count = int(failed.iloc[i])
        rate = failed_count / sent_count if sent_count else 0.0

        if rate > critical_rate:
            severity = Severity.CRITICAL
        elif rate > warning_rate:
            severity = Severity.WARNING
        else:
            continue

        issues.append(DeliveryIssue(
            channel='email',
            period=start.date(),
            period_index=i,
            sent=sent_count,
            failed=failed_count,
            failure_rate=rate,
            severity=severity,
            message=(
                f"{failed_count} of {sent_count} emails failed on {start.date().isoformat()} "
                f"({rate:.0%} failure rate)"
            ),
        ))

    if issues:
        logger.warning(f"Detected {len(issues)} email delivery issue(s)")
    return issues


def analyze(
    events: List[Event],
    window: AnalyticsWindow,
    metrics: Iterable[str] = TRACKED_METRICS,
    *,
    warning_rate: float = DEFAULT_WARNING_RATE,
    critical_rate: float = DEFAULT_CRITICAL_RATE,
) -> Tuple[List[Trend], List[DeliveryIssue]]:
    """
    Compute trends and delivery issues for one window.

    Example:
        >>> trends, issues = analyze(events, window, {'orders', 'revenue'})
        >>> [len(t.points) for t in trends]
        [7, 7]
    """
    frame = build_frame(events, window)
    trends = compute_trends(frame, window, metrics)
    issues = detect_delivery_issues(frame, window, warning_rate, critical_rate)
    return trends, issues

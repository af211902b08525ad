"""
Pydantic models for the Commerce Insights analytics pipeline.

This module defines the data model shared by every stage of a run:

Input:
- Event: immutable raw business fact read from the event store
- AnalyticsWindow: half-open [start, end) lookback window of whole UTC days
- VipActivity: active and lapsed high-value customer counts for a window

AnalyticsResult (the unit of persistence, one row per run):
- Summary, Attribution, CampaignPerformance, Trend, DeliveryIssue, Recommendation

AIAdviceResult (derived, never persisted by the pipeline):
- DailyDigest, Anomaly, AnomalyScan, BudgetSuggestion, Prediction, Correlation

All models use Pydantic v2 and serialize with model_dump(mode='json') into
the JSONB columns of analytics_runs; model_validate() reads them back.
"""

from datetime import datetime, timedelta, timezone
from datetime import date as date_type
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from commerce_insights.core import errors
from commerce_insights.models.enums import (
    AllocationDirection,
    ConfidenceLevel,
    DataStatus,
    Direction,
    EventType,
    RecommendationPriority,
    RuleKind,
    Severity,
)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Input Models
# =============================================================================

class Event(BaseModel):
    """
    An immutable business fact.

    Source of truth is the analytics_events table; the pipeline only reads
    a window of these and never mutates them.
    """
    model_config = ConfigDict(frozen=True)

    event_type: EventType
    occurred_at: datetime
    channel: Optional[str] = None
    campaign_id: Optional[str] = None
    amount: Optional[float] = None
    status: Optional[str] = None
    order_id: Optional[str] = None
    session_id: Optional[str] = None
    customer_id: Optional[str] = None

    @field_validator('occurred_at')
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class AnalyticsWindow(BaseModel):
    """
    Half-open time window [start, end) covering ``days`` whole days.

    Example:
        >>> window = AnalyticsWindow.for_days(7, now=datetime(2026, 3, 8, 12, tzinfo=timezone.utc))
        >>> window.start.isoformat(), window.end.isoformat()
        ('2026-03-01T00:00:00+00:00', '2026-03-08T00:00:00+00:00')
    """
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    days: int

    @field_validator('start', 'end')
    @classmethod
    def _normalize_bounds(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def for_days(cls, days: int, now: datetime) -> 'AnalyticsWindow':
        """
        Build the window of the ``days`` complete UTC days before ``now``.

        ``now`` is truncated to midnight UTC, so the window is
        [today - days, today) and every daily bucket spans exactly 24 hours.
        The current, still-running day is not part of any window.

        Raises:
            ValidationError: If days is not a positive integer.
        """
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise errors.ValidationError(
                'days must be a positive integer', detail=f'got {days!r}'
            )
        end = ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
        return cls(start=end - timedelta(days=days), end=end, days=days)

    def contains(self, moment: datetime) -> bool:
        return self.start <= ensure_utc(moment) < self.end


# =============================================================================
# AnalyticsResult Components
# =============================================================================

class Summary(BaseModel):
    """Aggregate metrics over one window."""
    window_start: datetime
    window_end: datetime
    order_count: int = Field(..., ge=0)
    revenue: float = 0.0
    conversion_rate: float = Field(0.0, ge=0.0, description="orders / distinct sessions")
    new_customers: int = Field(0, ge=0)
    session_count: int = Field(0, ge=0)
    total_spend: float = 0.0
    average_order_value: float = 0.0
    roas: Optional[float] = Field(None, description="revenue / spend, None without spend")
    cpa: Optional[float] = Field(None, description="spend / orders, None without spend or orders")
    active_vip_customers: Optional[int] = Field(None, ge=0, description="VIPs who ordered in the window, None when unknown")
    lapsed_vip_customers: Optional[int] = Field(None, ge=0, description="VIPs who ordered only before the window, None when unknown")


class VipActivity(BaseModel):
    """
    High-value customer counts around one window.

    A VIP is a customer whose order revenue up to the window end reaches
    the configured minimum. active ordered inside the window; lapsed
    ordered before it but not inside it.
    """
    model_config = ConfigDict(frozen=True)

    active: int = Field(0, ge=0)
    lapsed: int = Field(0, ge=0)


class ContributionMetrics(BaseModel):
    """
    Credit assigned to one channel or campaign.

    attribution_weight is this entry's share of all order credit in the
    window; weights across all channels sum to 1.0 whenever orders exist.
    spend is None when no campaign_send events exist for the entry.
    """
    orders_attributed: float = 0.0
    revenue_attributed: float = 0.0
    attribution_weight: float = 0.0
    spend: Optional[float] = None
    roas: Optional[float] = None
    cpa: Optional[float] = None


class Attribution(BaseModel):
    """Per-channel and per-campaign attribution for one window."""
    by_channel: Dict[str, ContributionMetrics] = Field(default_factory=dict)
    by_campaign: Dict[str, ContributionMetrics] = Field(default_factory=dict)
    orders_checked: int = 0
    multi_touch_orders: int = 0

    def revenue_shares(self) -> Dict[str, float]:
        """Share of attributed revenue per channel (empty when there is no revenue)."""
        total = sum(m.revenue_attributed for m in self.by_channel.values())
        if total <= 0:
            return {}
        return {name: m.revenue_attributed / total for name, m in self.by_channel.items()}


class CampaignPerformance(BaseModel):
    campaign_id: str
    channel: Optional[str] = None
    spend: float = 0.0
    orders_attributed: float = 0.0
    revenue_attributed: float = 0.0
    cpa: Optional[float] = None
    roas: Optional[float] = None


class TrendPoint(BaseModel):
    period_index: int = Field(..., ge=0)
    period_start: datetime
    value: float = 0.0


class Trend(BaseModel):
    """
    Daily series for one metric.

    Always holds exactly ``days`` points; empty buckets are zero-filled.
    status is insufficient_data when the metric has no underlying source.
    """
    metric: str
    status: DataStatus = DataStatus.COMPUTED
    points: List[TrendPoint] = Field(default_factory=list)

    @property
    def values(self) -> List[float]:
        return [p.value for p in self.points]


class DeliveryIssue(BaseModel):
    channel: str = 'email'
    period: date_type
    period_index: int = Field(..., ge=0)
    sent: int = 0
    failed: int = 0
    failure_rate: float
    severity: Severity
    message: str = ''


class Recommendation(BaseModel):
    """
    One ranked, human-readable recommendation.

    impact is the magnitude of the deviation behind the rule, expressed as a
    fraction (0.25 = 25%); the Advisory Engine re-ranks top actions by it.
    """
    id: str
    priority: RecommendationPriority
    message: str
    supporting_metric_ref: str
    rule: RuleKind
    direction: Direction = Direction.NEGATIVE
    impact: float = Field(0.0, ge=0.0)
    reason: str = ''
    channel: Optional[str] = None
    data_points: Dict[str, float] = Field(default_factory=dict)

    @field_validator('priority', mode='before')
    @classmethod
    def _parse_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            return RecommendationPriority[value.upper()]
        return value

    @field_serializer('priority')
    def _serialize_priority(self, value: RecommendationPriority) -> str:
        return value.name


class AnalyticsResult(BaseModel):
    """
    Full output of one analytics run.

    Immutable once built. run_at is the orchestration start time.
    """
    model_config = ConfigDict(frozen=True)

    run_at: datetime
    days: int = Field(..., ge=1)
    summary: Summary
    attribution: Attribution
    campaigns: List[CampaignPerformance] = Field(default_factory=list)
    trends: List[Trend] = Field(default_factory=list)
    delivery_issues: List[DeliveryIssue] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)

    @field_validator('run_at')
    @classmethod
    def _normalize_run_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def trend(self, metric: str) -> Optional[Trend]:
        for trend in self.trends:
            if trend.metric == metric:
                return trend
        return None


# =============================================================================
# AIAdviceResult Components
# =============================================================================

class Anomaly(BaseModel):
    metric: str
    observed_value: float
    expected_range: Tuple[float, float]
    deviation_score: float = Field(..., description="z-score against the trailing window")
    detected_at: datetime
    period_index: int
    severity: Severity
    direction: Direction


class AnomalyScan(BaseModel):
    """Per-metric anomaly scan metadata (insufficient_data vs computed)."""
    metric: str
    status: DataStatus
    sample_size: int
    anomaly_count: int = 0


class BudgetSuggestion(BaseModel):
    channel: str
    current_spend_share: float
    suggested_spend_share: float
    revenue_share: float
    direction: AllocationDirection
    spend_delta: float = Field(0.0, description="Suggested change in spend, same currency as spend")
    rationale: str


class Prediction(BaseModel):
    metric: str
    horizon: int
    status: DataStatus
    predicted_value: Optional[float] = None
    confidence_band: Optional[Tuple[float, float]] = None
    slope: Optional[float] = None
    sample_size: int = 0
    confidence: Optional[ConfidenceLevel] = None


class Correlation(BaseModel):
    metric_a: str
    metric_b: str
    status: DataStatus
    coefficient: Optional[float] = None
    sample_size: int = 0


class QuickStats(BaseModel):
    wins: int = 0
    warnings: int = 0
    critical: int = 0


class DailyDigest(BaseModel):
    top_actions: List[str] = Field(default_factory=list)
    health_score: float = Field(50.0, ge=0.0, le=100.0)
    quick_stats: QuickStats = Field(default_factory=QuickStats)
    generated_at: datetime


class AIAdviceResult(BaseModel):
    """
    Derived advisory layer for one AnalyticsResult.

    Reproducible: generated_at is copied from the input's run_at, so the same
    result and config always serialize to the same JSON.
    """
    daily_digest: DailyDigest
    anomalies: List[Anomaly] = Field(default_factory=list)
    anomaly_scans: List[AnomalyScan] = Field(default_factory=list)
    budget_suggestions: List[BudgetSuggestion] = Field(default_factory=list)
    predictions: List[Prediction] = Field(default_factory=list)
    correlations: List[Correlation] = Field(default_factory=list)
    generated_at: datetime

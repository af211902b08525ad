"""
Package initialization file for the analytics data models.

Re-exports the enumerations from enums.py and the Pydantic schemas from
schemas.py so callers can write ``from commerce_insights.models import Trend``.
"""

# =============================================================================
# Enums
# =============================================================================

from commerce_insights.models.enums import (
    AllocationDirection,
    ConfidenceLevel,
    DataStatus,
    Direction,
    EmailStatus,
    EventType,
    RecommendationPriority,
    RuleKind,
    RunStatus,
    Severity,
)

# =============================================================================
# Schemas
# =============================================================================

from commerce_insights.models.schemas import (
    AIAdviceResult,
    AnalyticsResult,
    AnalyticsWindow,
    Anomaly,
    AnomalyScan,
    Attribution,
    BudgetSuggestion,
    CampaignPerformance,
    ContributionMetrics,
    Correlation,
    DailyDigest,
    DeliveryIssue,
    Event,
    Prediction,
    QuickStats,
    Recommendation,
    Summary,
    Trend,
    TrendPoint,
    VipActivity,
    ensure_utc,
)

__all__ = [
    # Enums
    "AllocationDirection",
    "ConfidenceLevel",
    "DataStatus",
    "Direction",
    "EmailStatus",
    "EventType",
    "RecommendationPriority",
    "RuleKind",
    "RunStatus",
    "Severity",
    # Schemas
    "AIAdviceResult",
    "AnalyticsResult",
    "AnalyticsWindow",
    "Anomaly",
    "AnomalyScan",
    "Attribution",
    "BudgetSuggestion",
    "CampaignPerformance",
    "ContributionMetrics",
    "Correlation",
    "DailyDigest",
    "DeliveryIssue",
    "Event",
    "Prediction",
    "QuickStats",
    "Recommendation",
    "Summary",
    "Trend",
    "TrendPoint",
    "VipActivity",
    "ensure_utc",
]

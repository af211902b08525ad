"""
Commerce Insights Services Module

Business logic of the analytics pipeline. Every service except storage is
free of I/O and testable with plain Python objects.

Services:
- storage: AnalyticsStore, the asyncpg-backed persistence contract
- aggregation: Data Aggregator (Summary, Attribution, campaign performance)
- trends: Trend & Delivery Analyzer (daily series, email delivery issues)
- recommendations: Recommendation Generator (closed, ordered rule set)
- orchestrator: run_analytics(days), the single pipeline entry point
- advisory: Advisory Engine (digest, anomalies, budget, predictions, correlations)
"""

from commerce_insights.services.storage import AnalyticsStore
from commerce_insights.services.aggregation import (
    aggregate,
    attribute_order,
    campaign_performance,
    load_window_events,
)
from commerce_insights.services.trends import TRACKED_METRICS, analyze
from commerce_insights.services.recommendations import RULES, RuleThresholds, recommend
from commerce_insights.services.orchestrator import run_analytics
from commerce_insights.services.advisory import advise, fallback_advice

__all__ = [
    'AnalyticsStore',
    'aggregate',
    'attribute_order',
    'campaign_performance',
    'load_window_events',
    'TRACKED_METRICS',
    'analyze',
    'RULES',
    'RuleThresholds',
    'recommend',
    'run_analytics',
    'advise',
    'fallback_advice',
]

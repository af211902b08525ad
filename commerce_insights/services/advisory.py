"""
Advisory Engine Service.

Derives an AIAdviceResult from one AnalyticsResult:
- DailyDigest: health score, quick stats, bounded top actions
- Anomalies: trailing-window z-score scan per metric, with per-metric scan status
- BudgetSuggestions: revenue share vs spend share across channels with spend
- Predictions: least-squares projection with a prediction-interval band
- Correlations: Pearson coefficient for every declared metric pair

advise() is a pure function of (AnalyticsResult, AdvisoryConfig): it reads
no clock, no randomness and no I/O, and copies generated_at from the input's
run_at. The same input and config always serialize to identical JSON.

Failure semantics:
    Sparse input never raises. Each slice degrades to an empty list or an
    insufficient_data status on its own. advise(None) returns the fallback
    result (empty lists, health score 50, zero quick stats).

Health Score:
    100
    - critical_issue_penalty   x critical delivery issues
    - negative_trend_penalty   x core metrics trending down
    - critical_anomaly_penalty x critical anomalies
    clamped to [0, 100]
"""

import logging
import math
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from commerce_insights.core.config import AdvisoryConfig
from commerce_insights.core.errors import InsufficientSample
from commerce_insights.models import (
    AIAdviceResult,
    AllocationDirection,
    AnalyticsResult,
    Anomaly,
    AnomalyScan,
    BudgetSuggestion,
    ConfidenceLevel,
    Correlation,
    DailyDigest,
    DataStatus,
    Direction,
    Prediction,
    QuickStats,
    Recommendation,
    Severity,
    Trend,
)


logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# Constants
# =============================================================================

# Last-resort standard deviation floor; scan_trend applies std_floor() on top
MIN_STD: float = 0.001

FALLBACK_HEALTH_SCORE: float = 50.0

# Coefficient-of-variation cut-offs for prediction confidence
HIGH_CONFIDENCE_CV: float = 0.2
MEDIUM_CONFIDENCE_CV: float = 0.5


# =============================================================================
# Statistical Helpers
# =============================================================================

def baseline_stats(values: Sequence[float]) -> Tuple[float, float]:
    """
    Mean and population standard deviation (ddof=0) with a MIN_STD floor.

    Edge Cases:
        - Empty sequence: (0.0, MIN_STD)
        - Constant sequence: (value, MIN_STD)
    """
    if len(values) == 0:
        return 0.0, MIN_STD
    arr = np.asarray(values, dtype=float)
    return float(arr.mean()), max(float(arr.std(ddof=0)), MIN_STD)


def std_floor(metric: str, mean: float, config: AdvisoryConfig) -> float:
    """
    Smallest standard deviation a baseline may use for ``metric``.

    The largest of:
        - MIN_STD
        - relative_std_floor * |mean|
        - min_std_by_metric[metric], in the metric's own unit
        - sqrt(max(mean, 1)) for count metrics (Poisson noise)

    Example:
        >>> std_floor('orders', 0.0, AdvisoryConfig())
        1.0
    """
    floor = max(MIN_STD, config.relative_std_floor * abs(mean), dict(config.min_std_by_metric).get(metric, 0.0))
    if metric in config.count_metrics:
        floor = max(floor, math.sqrt(max(mean, 1.0)))
    return floor


def linear_fit(values: Sequence[float]) -> Tuple[float, float]:
    """Least-squares (slope, intercept) over x = 0..n-1."""
    y = np.asarray(values, dtype=float)
    x = np.arange(len(y), dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    return float(slope), float(intercept)


def relative_slope(trend: Trend) -> Optional[float]:
    """Daily slope divided by the series mean; None when undefined."""
    values = trend.values
    if trend.status != DataStatus.COMPUTED or len(values) < 2:
        return None
    average = float(np.mean(values))
    if average <= 0:
        return None
    slope, _ = linear_fit(values)
    return slope / average


def trend_direction(trend: Optional[Trend], tolerance: float) -> Optional[Direction]:
    """POSITIVE / NEGATIVE when the relative slope exceeds the tolerance, else None."""
    if trend is None:
        return None
    rel = relative_slope(trend)
    if rel is None:
        return None
    if rel < -tolerance:
        return Direction.NEGATIVE
    if rel > tolerance:
        return Direction.POSITIVE
    return None


def _safely(name: str, compute: Callable[[], T], default: T) -> T:
    """Run one advisory slice; log and fall back to ``default`` on error."""
    try:
        return compute()
    except Exception:
        logger.warning(f"Advisory slice '{name}' failed, returning empty result", exc_info=True)
        return default


# =============================================================================
# Anomaly Detection
# =============================================================================

def scan_trend(trend: Trend, config: AdvisoryConfig) -> Tuple[AnomalyScan, List[Anomaly]]:
    """
    Trailing-window z-score scan of one trend.

    Point i is compared against values[max(0, i - window) : i]. Points are
    only scored once that history holds anomaly_min_samples - 1 values, so a
    series shorter than anomaly_min_samples never yields anomalies and is
    reported as insufficient_data. The history's standard deviation is
    raised to std_floor() before scoring.
    """
    values = trend.values
    required = config.anomaly_min_samples

    if trend.status != DataStatus.COMPUTED or len(values) < required:
        scan = AnomalyScan(
            metric=trend.metric,
            status=DataStatus.INSUFFICIENT_DATA,
            sample_size=len(values),
        )
        return scan, []

    window = max(config.anomaly_window, required - 1)
    anomalies: List[Anomaly] = []

    for i in range(required - 1, len(values)):
        history = values[max(0, i - window):i]
        if len(history) < required - 1:
            continue

        avg, std = baseline_stats(history)
        std = max(std, std_floor(trend.metric, avg, config))
        z = (values[i] - avg) / std
        if abs(z) <= config.anomaly_k:
            continue

        point = trend.points[i]
        anomalies.append(Anomaly(
            metric=trend.metric,
            observed_value=values[i],
            expected_range=(
                max(0.0, avg - config.anomaly_k * std),
                avg + config.anomaly_k * std,
            ),
            deviation_score=z,
            detected_at=point.period_start,
            period_index=point.period_index,
            severity=Severity.CRITICAL if abs(z) >= config.anomaly_critical_k else Severity.WARNING,
            direction=Direction.POSITIVE if z > 0 else Direction.NEGATIVE,
        ))

    scan = AnomalyScan(
        metric=trend.metric,
        status=DataStatus.COMPUTED,
        sample_size=len(values),
        anomaly_count=len(anomalies),
    )
    return scan, anomalies


def detect_anomalies(
    result: AnalyticsResult,
    config: AdvisoryConfig,
) -> Tuple[List[AnomalyScan], List[Anomaly]]:
    scans: List[AnomalyScan] = []
    anomalies: List[Anomaly] = []

    for metric in config.anomaly_metrics:
        trend = result.trend(metric)
        if trend is None:
            scans.append(AnomalyScan(metric=metric, status=DataStatus.INSUFFICIENT_DATA, sample_size=0))
            continue
        scan, found = scan_trend(trend, config)
        scans.append(scan)
        anomalies.extend(found)

    return scans, anomalies


# =============================================================================
# Budget Suggestions
# =============================================================================

def suggest_budget(result: AnalyticsResult, config: AdvisoryConfig) -> List[BudgetSuggestion]:
    """
    Compare revenue share to spend share across channels with spend data.

    Channels whose revenue share exceeds their spend share by more than
    budget_margin are suggested an increase, and vice versa. The suggested
    share moves budget_rebalance_fraction of the way towards the revenue
    share. Channels without spend data never receive a suggestion.

    Example:
        A: 70% of revenue on 30% of spend -> increase to 50%
        B: 30% of revenue on 70% of spend -> decrease to 50%
    """
    paid = {
        name: metrics
        for name, metrics in result.attribution.by_channel.items()
        if metrics.spend is not None and metrics.spend > 0
    }
    total_spend = sum(m.spend for m in paid.values())
    total_revenue = sum(m.revenue_attributed for m in paid.values())
    if len(paid) < 2 or total_spend <= 0 or total_revenue <= 0:
        return []

    suggestions: List[BudgetSuggestion] = []
    for name in sorted(paid):
        metrics = paid[name]
        spend_share = metrics.spend / total_spend
        revenue_share = metrics.revenue_attributed / total_revenue
        gap = revenue_share - spend_share
        if abs(gap) <= config.budget_margin:
            continue

        suggested = spend_share + config.budget_rebalance_fraction * gap
        direction = AllocationDirection.INCREASE if gap > 0 else AllocationDirection.DECREASE
        verb = 'Increase' if gap > 0 else 'Decrease'
        suggestions.append(BudgetSuggestion(
            channel=name,
            current_spend_share=spend_share,
            suggested_spend_share=suggested,
            revenue_share=revenue_share,
            direction=direction,
            spend_delta=(suggested - spend_share) * total_spend,
            rationale=(
                f"{verb} {name}: it drives {revenue_share:.0%} of paid revenue "
                f"on {spend_share:.0%} of spend"
            ),
        ))

    return sorted(
        suggestions,
        key=lambda s: (-abs(s.revenue_share - s.current_spend_share), s.channel),
    )


# =============================================================================
# Predictions
# =============================================================================

def _confidence(values: Sequence[float]) -> ConfidenceLevel:
    arr = np.asarray(values, dtype=float)
    average = float(arr.mean())
    std = float(arr.std(ddof=0))
    if std == 0:
        return ConfidenceLevel.HIGH
    if average <= 0:
        return ConfidenceLevel.LOW
    cv = std / average
    if cv < HIGH_CONFIDENCE_CV:
        return ConfidenceLevel.HIGH
    if cv < MEDIUM_CONFIDENCE_CV:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def project(values: Sequence[float], horizon: int, z: float, min_samples: int) -> Tuple[float, Tuple[float, float], float]:
    """
    Linear projection ``horizon`` periods past the last point.

    Returns:
        (predicted_value, (band_low, band_high), slope). The band is
        +/- z x residual standard error x prediction-interval factor;
        values are floored at 0 because every tracked metric is non-negative.

    Raises:
        InsufficientSample: With fewer than min_samples points.
    """
    n = len(values)
    if n < min_samples:
        raise InsufficientSample('Series too short to project', sample_size=n, required=min_samples)

    slope, intercept = linear_fit(values)
    y = np.asarray(values, dtype=float)
    x = np.arange(n, dtype=float)
    residuals = y - (slope * x + intercept)

    dof = n - 2
    residual_se = math.sqrt(float(np.sum(residuals ** 2)) / dof) if dof > 0 else 0.0
    x_new = n - 1 + horizon
    x_mean = float(x.mean())
    sxx = float(np.sum((x - x_mean) ** 2))
    factor = math.sqrt(1.0 + 1.0 / n + (x_new - x_mean) ** 2 / sxx) if sxx > 0 else 1.0
    margin = z * residual_se * factor

    predicted = slope * x_new + intercept
    band = (max(0.0, predicted - margin), max(0.0, predicted + margin))
    return max(0.0, predicted), band, slope


def predict(result: AnalyticsResult, config: AdvisoryConfig) -> List[Prediction]:
    predictions: List[Prediction] = []

    for metric in config.core_metrics:
        trend = result.trend(metric)
        values = trend.values if trend is not None and trend.status == DataStatus.COMPUTED else []
        try:
            value, band, slope = project(
                values,
                config.prediction_horizon,
                config.prediction_z,
                config.prediction_min_samples,
            )
        except InsufficientSample:
            predictions.append(Prediction(
                metric=metric,
                horizon=config.prediction_horizon,
                status=DataStatus.INSUFFICIENT_DATA,
                sample_size=len(values),
            ))
            continue

        predictions.append(Prediction(
            metric=metric,
            horizon=config.prediction_horizon,
            status=DataStatus.COMPUTED,
            predicted_value=value,
            confidence_band=band,
            slope=slope,
            sample_size=len(values),
            confidence=_confidence(values),
        ))

    return predictions


# =============================================================================
# Correlations
# =============================================================================

def pearson(a: Sequence[float], b: Sequence[float], min_samples: int) -> Tuple[float, int]:
    """
    Pearson coefficient over the common prefix of two series.

    Raises:
        InsufficientSample: Too few points, or a constant series.
    """
    n = min(len(a), len(b))
    if n < min_samples:
        raise InsufficientSample('Series too short to correlate', sample_size=n, required=min_samples)

    x = np.asarray(a[:n], dtype=float)
    y = np.asarray(b[:n], dtype=float)
    if float(x.std()) == 0.0 or float(y.std()) == 0.0:
        raise InsufficientSample('Constant series has no correlation', sample_size=n, required=min_samples)

    coefficient = float(np.corrcoef(x, y)[0, 1])
    if math.isnan(coefficient):
        raise InsufficientSample('Correlation undefined', sample_size=n, required=min_samples)
    return coefficient, n


def correlate(result: AnalyticsResult, config: AdvisoryConfig) -> List[Correlation]:
    correlations: List[Correlation] = []

    for metric_a, metric_b in config.correlation_pairs:
        trend_a = result.trend(metric_a)
        trend_b = result.trend(metric_b)
        usable = all(t is not None and t.status == DataStatus.COMPUTED for t in (trend_a, trend_b))
        a = trend_a.values if usable else []
        b = trend_b.values if usable else []

        try:
            coefficient, n = pearson(a, b, config.correlation_min_samples)
        except InsufficientSample:
            correlations.append(Correlation(
                metric_a=metric_a,
                metric_b=metric_b,
                status=DataStatus.INSUFFICIENT_DATA,
                sample_size=min(len(a), len(b)),
            ))
            continue

        correlations.append(Correlation(
            metric_a=metric_a,
            metric_b=metric_b,
            status=DataStatus.COMPUTED,
            coefficient=coefficient,
            sample_size=n,
        ))

    return correlations


# =============================================================================
# Daily Digest
# =============================================================================

def health_score(
    result: AnalyticsResult,
    anomalies: List[Anomaly],
    config: AdvisoryConfig,
) -> float:
    critical_issues = sum(1 for i in result.delivery_issues if i.severity == Severity.CRITICAL)
    negative_trends = sum(
        1 for metric in config.core_metrics
        if trend_direction(result.trend(metric), config.trend_slope_tolerance) == Direction.NEGATIVE
    )
    critical_anomalies = sum(1 for a in anomalies if a.severity == Severity.CRITICAL)

    score = (
        100.0
        - config.critical_issue_penalty * critical_issues
        - config.negative_trend_penalty * negative_trends
        - config.critical_anomaly_penalty * critical_anomalies
    )
    return min(100.0, max(0.0, score))


def quick_stats(result: AnalyticsResult, anomalies: List[Anomaly], config: AdvisoryConfig) -> QuickStats:
    """
    wins: positive recommendations + core metrics trending up
    warnings: warning delivery issues + warning anomalies
    critical: critical delivery issues + critical anomalies
    """
    positive_trends = sum(
        1 for metric in config.core_metrics
        if trend_direction(result.trend(metric), config.trend_slope_tolerance) == Direction.POSITIVE
    )
    positive_recs = sum(1 for r in result.recommendations if r.direction == Direction.POSITIVE)

    severities = [i.severity for i in result.delivery_issues] + [a.severity for a in anomalies]
    return QuickStats(
        wins=positive_recs + positive_trends,
        warnings=sum(1 for s in severities if s == Severity.WARNING),
        critical=sum(1 for s in severities if s == Severity.CRITICAL),
    )


def _action_text(recommendation: Recommendation) -> str:
    return f"[{recommendation.priority.name}] {recommendation.message}"


def top_actions(
    recommendations: List[Recommendation],
    anomalies: List[Anomaly],
    limit: int,
) -> List[str]:
    """
    Recommendations re-ranked by impact (stable), then critical anomalies,
    truncated to ``limit``.
    """
    ranked = sorted(recommendations, key=lambda r: r.impact, reverse=True)
    actions = [_action_text(r) for r in ranked]

    for anomaly in anomalies:
        if anomaly.severity != Severity.CRITICAL:
            continue
        low, high = anomaly.expected_range
        actions.append(
            f"[INVESTIGATE] {anomaly.metric} was {anomaly.observed_value:.2f} on "
            f"{anomaly.detected_at.date().isoformat()} (expected {low:.2f}-{high:.2f})"
        )

    return actions[:limit]


# =============================================================================
# Entry Points
# =============================================================================

def fallback_advice(generated_at: Optional[datetime] = None) -> AIAdviceResult:
    """
    Contractual default when no AnalyticsResult is available.

    All lists empty, health score 50, zero quick stats.
    """
    moment = generated_at or datetime.now(timezone.utc)
    return AIAdviceResult(
        daily_digest=DailyDigest(
            top_actions=[],
            health_score=FALLBACK_HEALTH_SCORE,
            quick_stats=QuickStats(),
            generated_at=moment,
        ),
        generated_at=moment,
    )


def advise(result: Optional[AnalyticsResult], config: Optional[AdvisoryConfig] = None) -> AIAdviceResult:
    """
    Derive the advisory layer for one analytics run.

    Args:
        result: The run to advise on; None yields fallback_advice().
        config: Engine configuration; defaults to AdvisoryConfig().

    Returns:
        AIAdviceResult with generated_at equal to result.run_at.

    Example:
        >>> advice = advise(result, AdvisoryConfig(anomaly_k=2.5))
        >>> advice.daily_digest.health_score
        85.0
    """
    if result is None:
        return fallback_advice()

    config = config or AdvisoryConfig()

    scans, anomalies = _safely(
        'anomalies',
        lambda: detect_anomalies(result, config),
        ([], []),
    )
    budget = _safely('budget_suggestions', lambda: suggest_budget(result, config), [])
    predictions = _safely('predictions', lambda: predict(result, config), [])
    correlations = _safely('correlations', lambda: correlate(result, config), [])

    score = _safely('health_score', lambda: health_score(result, anomalies, config), FALLBACK_HEALTH_SCORE)
    stats = _safely('quick_stats', lambda: quick_stats(result, anomalies, config), QuickStats())
    actions = _safely(
        'top_actions',
        lambda: top_actions(result.recommendations, anomalies, config.top_actions_limit),
        [],
    )

    digest = DailyDigest(
        top_actions=actions,
        health_score=score,
        quick_stats=stats,
        generated_at=result.run_at,
    )
    logger.info(
        f"Advice for run {result.run_at.isoformat()}: health={score:.0f}, "
        f"{len(anomalies)} anomaly(ies), {len(budget)} budget suggestion(s)"
    )
    return AIAdviceResult(
        daily_digest=digest,
        anomalies=anomalies,
        anomaly_scans=scans,
        budget_suggestions=budget,
        predictions=predictions,
        correlations=correlations,
        generated_at=result.run_at,
    )

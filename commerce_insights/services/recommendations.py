"""
Recommendation Generator Service.

Applies a closed, ordered set of rules (RuleKind) to a run's Summary,
Attribution and Trends and emits ranked, human-readable Recommendations.

Rule contract:
- Each rule is a plain function (RuleContext) -> Optional[Recommendation]
- Rules run in the order declared in RULES, which mirrors RuleKind
- A rule that lacks comparison data raises InsufficientSample; the generator
  logs and skips it
- Any other exception inside a rule is logged and the rule skipped; the
  generator itself never raises

Ordering:
    Output is sorted by priority descending with a stable sort, so rules of
    equal priority keep their declaration order. The same inputs therefore
    always produce the same list.

Rules:
    negative_roas             CRITICAL  paid channel ROAS < 1.0
    attribution_share_drop    HIGH      channel share fell > share_drop_points vs previous run
    conversion_decline        HIGH      conversion rate fell N consecutive buckets
    high_cpa_campaign         HIGH      campaign CPA > target_cpa * high_cpa_multiplier
    scale_efficient_campaign  HIGH      best campaign CPA < target_cpa * scale_cpa_fraction (win)
    revenue_concentration     MEDIUM    one channel > concentration_threshold of revenue
    scale_profitable_channel  MEDIUM    paid channel ROAS >= target_roas (win)
    zero_cost_email_revenue   LOW       email revenue without spend (win)
    lapsed_vip_reactivation   HIGH      lapsed VIPs > active VIPs * lapsed_vip_ratio
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from commerce_insights.core.config import Settings
from commerce_insights.core.errors import InsufficientSample
from commerce_insights.models import (
    Attribution,
    Direction,
    Recommendation,
    RecommendationPriority,
    RuleKind,
    Summary,
    Trend,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Rule Inputs
# =============================================================================

@dataclass(frozen=True)
class RuleThresholds:
    """Tunables read by the rules; defaults match Settings."""
    target_cpa: float = 50.0
    target_roas: float = 3.0
    share_drop_points: float = 10.0
    conversion_decline_buckets: int = 3
    concentration_threshold: float = 0.8
    high_cpa_multiplier: float = 1.5
    min_campaign_spend: float = 50.0
    scale_cpa_fraction: float = 0.7
    lapsed_vip_ratio: float = 0.5
    reactivation_return_rate: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> 'RuleThresholds':
        return cls(
            target_cpa=settings.target_cpa,
            target_roas=settings.target_roas,
            share_drop_points=settings.share_drop_points,
            conversion_decline_buckets=settings.conversion_decline_buckets,
            concentration_threshold=settings.concentration_threshold,
            high_cpa_multiplier=settings.high_cpa_multiplier,
            min_campaign_spend=settings.min_campaign_spend,
            scale_cpa_fraction=settings.scale_cpa_fraction,
            lapsed_vip_ratio=settings.lapsed_vip_ratio,
            reactivation_return_rate=settings.reactivation_return_rate,
        )


@dataclass
class RuleContext:
    summary: Summary
    attribution: Attribution
    trends: Dict[str, Trend]
    previous_attribution: Optional[Attribution] = None
    thresholds: RuleThresholds = field(default_factory=RuleThresholds)


def _paid_channels(attribution: Attribution) -> Dict[str, float]:
    """ROAS per channel that has spend; raises when no channel has spend."""
    paid = {
        name: metrics.roas or 0.0
        for name, metrics in attribution.by_channel.items()
        if metrics.spend
    }
    if not paid:
        raise InsufficientSample('No channel has spend data', sample_size=0, required=1)
    return paid


# =============================================================================
# Rules
# =============================================================================

def negative_roas(ctx: RuleContext) -> Optional[Recommendation]:
    paid = _paid_channels(ctx.attribution)
    losing = {name: roas for name, roas in paid.items() if roas < 1.0}
    if not losing:
        return None

    channel = min(losing, key=lambda name: (losing[name], name))
    roas = losing[channel]
    metrics = ctx.attribution.by_channel[channel]
    return Recommendation(
        id=f"{RuleKind.NEGATIVE_ROAS.value}:{channel}",
        priority=RecommendationPriority.CRITICAL,
        message=f"Cut or restructure spend on {channel}: ROAS {roas:.2f} is below break-even",
        supporting_metric_ref=f"attribution.by_channel.{channel}.roas",
        rule=RuleKind.NEGATIVE_ROAS,
        direction=Direction.NEGATIVE,
        impact=1.0 - roas,
        reason=(
            f"{channel} spent {metrics.spend:.2f} and returned "
            f"{metrics.revenue_attributed:.2f} in attributed revenue"
        ),
        channel=channel,
        data_points={'roas': roas, 'spend': metrics.spend or 0.0},
    )


def attribution_share_drop(ctx: RuleContext) -> Optional[Recommendation]:
    previous = ctx.previous_attribution
    if previous is None or previous.orders_checked == 0:
        raise InsufficientSample('No previous run to compare attribution against')
    if ctx.attribution.orders_checked == 0:
        raise InsufficientSample('No orders in the current window')

    drops: Dict[str, Tuple[float, float]] = {}
    for name, before in previous.by_channel.items():
        now = ctx.attribution.by_channel.get(name)
        current_weight = now.attribution_weight if now else 0.0
        drops[name] = (before.attribution_weight, current_weight)

    limit = ctx.thresholds.share_drop_points / 100.0
    dropped = {
        name: before - now
        for name, (before, now) in drops.items()
        if before - now > limit
    }
    if not dropped:
        return None

    channel = max(dropped, key=lambda name: (dropped[name], name))
    before, now = drops[channel]
    return Recommendation(
        id=f"{RuleKind.ATTRIBUTION_SHARE_DROP.value}:{channel}",
        priority=RecommendationPriority.HIGH,
        message=(
            f"Review {channel}: attribution share fell from {before:.0%} to {now:.0%} "
            f"since the previous run"
        ),
        supporting_metric_ref=f"attribution.by_channel.{channel}.attribution_weight",
        rule=RuleKind.ATTRIBUTION_SHARE_DROP,
        direction=Direction.NEGATIVE,
        impact=dropped[channel],
        reason=f"Share dropped by {dropped[channel] * 100:.1f} percentage points",
        channel=channel,
        data_points={'previous_share': before, 'current_share': now},
    )


def conversion_decline(ctx: RuleContext) -> Optional[Recommendation]:
    trend = ctx.trends.get('conversion_rate')
    buckets = ctx.thresholds.conversion_decline_buckets
    if trend is None or len(trend.points) < buckets + 1:
        raise InsufficientSample(
            'Conversion trend too short',
            sample_size=len(trend.points) if trend else 0,
            required=buckets + 1,
        )

    tail = trend.values[-(buckets + 1):]
    if not all(later < earlier for earlier, later in zip(tail, tail[1:])):
        return None

    first, last = tail[0], tail[-1]
    decline = (first - last) / first if first > 0 else 0.0
    return Recommendation(
        id=f"{RuleKind.CONVERSION_DECLINE.value}:conversion_rate",
        priority=RecommendationPriority.HIGH,
        message=(
            f"Conversion rate declined {buckets} days in a row "
            f"({first:.2%} -> {last:.2%}); check checkout and landing pages"
        ),
        supporting_metric_ref='trends.conversion_rate',
        rule=RuleKind.CONVERSION_DECLINE,
        direction=Direction.NEGATIVE,
        impact=decline,
        reason=f"Conversion rate fell {decline:.0%} over the last {buckets} buckets",
        data_points={'start_rate': first, 'end_rate': last},
    )


def high_cpa_campaign(ctx: RuleContext) -> Optional[Recommendation]:
    thresholds = ctx.thresholds
    spending = {
        campaign_id: metrics
        for campaign_id, metrics in ctx.attribution.by_campaign.items()
        if metrics.spend and metrics.spend >= thresholds.min_campaign_spend
    }
    if not spending:
        raise InsufficientSample('No campaign with meaningful spend')

    limit = thresholds.target_cpa * thresholds.high_cpa_multiplier
    impacts: Dict[str, float] = {}
    for campaign_id, metrics in spending.items():
        if metrics.orders_attributed <= 0:
            impacts[campaign_id] = metrics.spend / thresholds.target_cpa
        elif metrics.cpa is not None and metrics.cpa > limit:
            impacts[campaign_id] = (metrics.cpa - thresholds.target_cpa) / thresholds.target_cpa
    if not impacts:
        return None

    campaign_id = max(impacts, key=lambda name: (impacts[name], name))
    metrics = spending[campaign_id]
    cpa_text = f"CPA {metrics.cpa:.2f}" if metrics.cpa is not None else "no attributed orders"
    return Recommendation(
        id=f"{RuleKind.HIGH_CPA_CAMPAIGN.value}:{campaign_id}",
        priority=RecommendationPriority.HIGH,
        message=f"Pause or rework campaign {campaign_id}: {cpa_text} vs target {thresholds.target_cpa:.2f}",
        supporting_metric_ref=f"attribution.by_campaign.{campaign_id}.cpa",
        rule=RuleKind.HIGH_CPA_CAMPAIGN,
        direction=Direction.NEGATIVE,
        impact=impacts[campaign_id],
        reason=f"Spent {metrics.spend:.2f} for {metrics.orders_attributed:.1f} attributed orders",
        data_points={
            'spend': metrics.spend or 0.0,
            'orders_attributed': metrics.orders_attributed,
            'target_cpa': thresholds.target_cpa,
        },
    )


def scale_efficient_campaign(ctx: RuleContext) -> Optional[Recommendation]:
    thresholds = ctx.thresholds
    converting = {
        campaign_id: metrics
        for campaign_id, metrics in ctx.attribution.by_campaign.items()
        if metrics.spend and metrics.spend >= thresholds.min_campaign_spend and metrics.cpa is not None
    }
    if not converting:
        raise InsufficientSample('No campaign with meaningful spend and attributed orders')

    campaign_id = min(converting, key=lambda name: (converting[name].cpa, name))
    metrics = converting[campaign_id]
    ceiling = thresholds.target_cpa * thresholds.scale_cpa_fraction
    if metrics.cpa >= ceiling:
        return None

    below = (thresholds.target_cpa - metrics.cpa) / thresholds.target_cpa
    return Recommendation(
        id=f"{RuleKind.SCALE_EFFICIENT_CAMPAIGN.value}:{campaign_id}",
        priority=RecommendationPriority.HIGH,
        message=(
            f"Increase the budget of campaign {campaign_id} by 25-30%: "
            f"CPA {metrics.cpa:.2f} is {below:.0%} below target"
        ),
        supporting_metric_ref=f"attribution.by_campaign.{campaign_id}.cpa",
        rule=RuleKind.SCALE_EFFICIENT_CAMPAIGN,
        direction=Direction.POSITIVE,
        impact=below,
        reason=f"Best campaign CPA is under {ceiling:.2f}, leaving room to scale",
        data_points={
            'cpa': metrics.cpa,
            'spend': metrics.spend or 0.0,
            'target_cpa': thresholds.target_cpa,
        },
    )


def revenue_concentration(ctx: RuleContext) -> Optional[Recommendation]:
    shares = ctx.attribution.revenue_shares()
    if not shares:
        raise InsufficientSample('No attributed revenue')

    channel = max(shares, key=lambda name: (shares[name], name))
    share = shares[channel]
    if share <= ctx.thresholds.concentration_threshold:
        return None

    return Recommendation(
        id=f"{RuleKind.REVENUE_CONCENTRATION.value}:{channel}",
        priority=RecommendationPriority.MEDIUM,
        message=f"Diversify acquisition: {share:.0%} of attributed revenue comes from {channel}",
        supporting_metric_ref=f"attribution.by_channel.{channel}.revenue_attributed",
        rule=RuleKind.REVENUE_CONCENTRATION,
        direction=Direction.NEGATIVE,
        impact=share - ctx.thresholds.concentration_threshold,
        reason=f"Revenue share above the {ctx.thresholds.concentration_threshold:.0%} concentration limit",
        channel=channel,
        data_points={'revenue_share': share},
    )


def scale_profitable_channel(ctx: RuleContext) -> Optional[Recommendation]:
    paid = _paid_channels(ctx.attribution)
    target = ctx.thresholds.target_roas
    winners = {name: roas for name, roas in paid.items() if roas >= target}
    if not winners:
        return None

    channel = max(winners, key=lambda name: (winners[name], name))
    roas = winners[channel]
    return Recommendation(
        id=f"{RuleKind.SCALE_PROFITABLE_CHANNEL.value}:{channel}",
        priority=RecommendationPriority.MEDIUM,
        message=f"Scale {channel}: ROAS {roas:.2f} beats the {target:.1f} target",
        supporting_metric_ref=f"attribution.by_channel.{channel}.roas",
        rule=RuleKind.SCALE_PROFITABLE_CHANNEL,
        direction=Direction.POSITIVE,
        impact=(roas - target) / target if target else roas,
        reason=f"{channel} returns {roas:.2f} per unit of spend",
        channel=channel,
        data_points={'roas': roas, 'target_roas': target},
    )


def zero_cost_email_revenue(ctx: RuleContext) -> Optional[Recommendation]:
    email = ctx.attribution.by_channel.get('email')
    if email is None or email.revenue_attributed <= 0 or email.spend:
        return None

    share = ctx.attribution.revenue_shares().get('email', 0.0)
    return Recommendation(
        id=f"{RuleKind.ZERO_COST_EMAIL_REVENUE.value}:email",
        priority=RecommendationPriority.LOW,
        message=(
            f"Email brought {email.revenue_attributed:.2f} in revenue at no media cost; "
            f"grow the list and send cadence"
        ),
        supporting_metric_ref='attribution.by_channel.email.revenue_attributed',
        rule=RuleKind.ZERO_COST_EMAIL_REVENUE,
        direction=Direction.POSITIVE,
        impact=share,
        reason=f"{email.orders_attributed:.1f} orders attributed to email",
        channel='email',
        data_points={'revenue': email.revenue_attributed, 'revenue_share': share},
    )


def lapsed_vip_reactivation(ctx: RuleContext) -> Optional[Recommendation]:
    active = ctx.summary.active_vip_customers
    lapsed = ctx.summary.lapsed_vip_customers
    if active is None or lapsed is None:
        raise InsufficientSample('No VIP customer activity for this window')

    thresholds = ctx.thresholds
    if lapsed <= active * thresholds.lapsed_vip_ratio:
        return None

    recovery = lapsed * ctx.summary.average_order_value * thresholds.reactivation_return_rate
    return Recommendation(
        id=f"{RuleKind.LAPSED_VIP_REACTIVATION.value}:customers",
        priority=RecommendationPriority.HIGH,
        message=f"Launch a VIP reactivation campaign for {lapsed} lapsed customers",
        supporting_metric_ref='summary.lapsed_vip_customers',
        rule=RuleKind.LAPSED_VIP_REACTIVATION,
        direction=Direction.NEGATIVE,
        impact=lapsed / (lapsed + active),
        reason=(
            f"{lapsed} VIPs ordered before this window but not during it, "
            f"against {active} still active; estimated recovery {recovery:.2f}"
        ),
        data_points={
            'lapsed_vips': float(lapsed),
            'active_vips': float(active),
            'potential_recovery': recovery,
        },
    )


# Evaluation order; one entry per RuleKind
RULES: Tuple[Tuple[RuleKind, Callable[[RuleContext], Optional[Recommendation]]], ...] = (
    (RuleKind.NEGATIVE_ROAS, negative_roas),
    (RuleKind.ATTRIBUTION_SHARE_DROP, attribution_share_drop),
    (RuleKind.CONVERSION_DECLINE, conversion_decline),
    (RuleKind.HIGH_CPA_CAMPAIGN, high_cpa_campaign),
    (RuleKind.SCALE_EFFICIENT_CAMPAIGN, scale_efficient_campaign),
    (RuleKind.REVENUE_CONCENTRATION, revenue_concentration),
    (RuleKind.SCALE_PROFITABLE_CHANNEL, scale_profitable_channel),
    (RuleKind.ZERO_COST_EMAIL_REVENUE, zero_cost_email_revenue),
    (RuleKind.LAPSED_VIP_REACTIVATION, lapsed_vip_reactivation),
)


# =============================================================================
# Generator
# =============================================================================

def recommend(
    summary: Summary,
    attribution: Attribution,
    trends: List[Trend],
    previous_attribution: Optional[Attribution] = None,
    thresholds: Optional[RuleThresholds] = None,
) -> List[Recommendation]:
    """
    Evaluate every rule and return the recommendations, highest priority first.

    Args:
        summary: Window summary.
        attribution: Current attribution.
        trends: Daily trends of the run.
        previous_attribution: Attribution of the previous persisted run, if any.
        thresholds: Rule tunables (defaults when omitted).

    Returns:
        Recommendations sorted by priority descending; ties keep rule order.
    """
    ctx = RuleContext(
        summary=summary,
        attribution=attribution,
        trends={trend.metric: trend for trend in trends},
        previous_attribution=previous_attribution,
        thresholds=thresholds or RuleThresholds(),
    )

    emitted: List[Recommendation] = []
    for kind, rule in RULES:
        try:
            recommendation = rule(ctx)
        except InsufficientSample as e:
            logger.info(f"Skipping rule {kind.value}: {e}")
            continue
        except Exception:
            logger.warning(f"Rule {kind.value} failed and was skipped", exc_info=True)
            continue

        if recommendation is not None:
            emitted.append(recommendation)

    ranked = sorted(emitted, key=lambda r: r.priority, reverse=True)
    logger.info(f"Generated {len(ranked)} recommendation(s)")
    return ranked

"""
Pytest test module for the Recommendation Generator.

Covers:
- Rule set and evaluation order
- Each rule's trigger condition, priority and direction
- Stable priority ordering (ties keep rule order)
- Skipping rules that raise InsufficientSample or fail unexpectedly
- Determinism for identical inputs
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from commerce_insights.core.config import Settings
from commerce_insights.core.errors import InsufficientSample
from commerce_insights.models import (
    Attribution,
    ContributionMetrics,
    Direction,
    RecommendationPriority,
    RuleKind,
    Summary,
    Trend,
    TrendPoint,
)
from commerce_insights.services.aggregation import aggregate
from commerce_insights.services.recommendations import (
    RULES,
    RuleThresholds,
    recommend,
)
from commerce_insights.services.trends import analyze

from commerce_insights.tests.conftest import BUCKET_ORIGIN, NOW


def _summary() -> Summary:
    return Summary(window_start=NOW - timedelta(days=7), window_end=NOW, order_count=10)


def _channel(orders, revenue, spend=None, total_orders=10):
    return ContributionMetrics(
        orders_attributed=orders,
        revenue_attributed=revenue,
        attribution_weight=orders / total_orders,
        spend=spend,
        roas=revenue / spend if spend else None,
        cpa=spend / orders if spend and orders else None,
    )


def _conversion_trend(values):
    return Trend(
        metric='conversion_rate',
        points=[
            TrendPoint(period_index=i, period_start=BUCKET_ORIGIN + timedelta(days=i), value=v)
            for i, v in enumerate(values)
        ],
    )


class TestRuleSet:

    def test_rules_cover_every_kind_in_order(self) -> None:
        assert [kind for kind, _ in RULES] == list(RuleKind)

    def test_thresholds_from_settings(self) -> None:
        settings = Settings(database_url='postgresql://x', target_cpa=20.0, target_roas=4.0)

        thresholds = RuleThresholds.from_settings(settings)

        assert thresholds.target_cpa == 20.0
        assert thresholds.target_roas == 4.0
        assert thresholds.share_drop_points == 10.0
        assert thresholds.scale_cpa_fraction == 0.7
        assert thresholds.lapsed_vip_ratio == 0.5


class TestSampleWeek:
    """Recommendations for the shared sample week."""

    def test_sample_week_recommendations(self, sample_events, window) -> None:
        # Arrange
        summary, attribution = aggregate(sample_events, window)
        trends, _ = analyze(sample_events, window)

        # Act
        recommendations = recommend(summary, attribution, trends)

        # Assert
        assert [r.rule for r in recommendations] == [
            RuleKind.HIGH_CPA_CAMPAIGN,
            RuleKind.SCALE_PROFITABLE_CHANNEL,
            RuleKind.ZERO_COST_EMAIL_REVENUE,
        ]
        high_cpa, scale, email = recommendations
        assert high_cpa.priority == RecommendationPriority.HIGH
        assert high_cpa.id == 'high_cpa_campaign:c-ads'
        assert high_cpa.impact == pytest.approx(3.0)
        assert scale.channel == 'social'
        assert scale.direction == Direction.POSITIVE
        assert email.priority == RecommendationPriority.LOW
        assert email.impact == pytest.approx(0.15)

    def test_same_inputs_same_output(self, sample_events, window) -> None:
        summary, attribution = aggregate(sample_events, window)
        trends, _ = analyze(sample_events, window)

        first = recommend(summary, attribution, trends)
        second = recommend(summary, attribution, trends)

        assert [r.model_dump() for r in first] == [r.model_dump() for r in second]

    def test_every_recommendation_references_a_metric(self, sample_events, window) -> None:
        summary, attribution = aggregate(sample_events, window)
        trends, _ = analyze(sample_events, window)

        for recommendation in recommend(summary, attribution, trends):
            assert recommendation.supporting_metric_ref
            assert recommendation.message


class TestRules:

    def test_negative_roas_is_critical(self) -> None:
        attribution = Attribution(
            by_channel={'ads': _channel(2, 150.0, spend=300.0), 'direct': _channel(8, 850.0)},
            orders_checked=10,
        )

        recommendations = recommend(_summary(), attribution, [])

        assert recommendations[0].rule == RuleKind.NEGATIVE_ROAS
        assert recommendations[0].priority == RecommendationPriority.CRITICAL
        assert recommendations[0].impact == pytest.approx(0.5)
        assert recommendations[0].channel == 'ads'

    def test_attribution_share_drop(self) -> None:
        previous = Attribution(
            by_channel={'ads': _channel(6, 600.0), 'direct': _channel(4, 400.0)},
            orders_checked=10,
        )
        current = Attribution(
            by_channel={'ads': _channel(4, 400.0), 'direct': _channel(6, 600.0)},
            orders_checked=10,
        )

        recommendations = recommend(_summary(), current, [], previous_attribution=previous)

        drops = [r for r in recommendations if r.rule == RuleKind.ATTRIBUTION_SHARE_DROP]
        assert len(drops) == 1
        assert drops[0].channel == 'ads'
        assert drops[0].impact == pytest.approx(0.2)

    def test_share_drop_skipped_without_previous_run(self) -> None:
        attribution = Attribution(by_channel={'ads': _channel(10, 1000.0)}, orders_checked=10)

        recommendations = recommend(_summary(), attribution, [])

        assert RuleKind.ATTRIBUTION_SHARE_DROP not in [r.rule for r in recommendations]

    def test_conversion_decline_needs_consecutive_drops(self) -> None:
        declining = _conversion_trend([0.5, 0.5, 0.5, 0.4, 0.3, 0.2, 0.1])
        flat_then_drop = _conversion_trend([0.5, 0.5, 0.5, 0.4, 0.4, 0.2, 0.1])

        fired = recommend(_summary(), Attribution(), [declining])
        not_fired = recommend(_summary(), Attribution(), [flat_then_drop])

        assert [r.rule for r in fired] == [RuleKind.CONVERSION_DECLINE]
        assert fired[0].impact == pytest.approx(0.75)
        assert not_fired == []

    def test_conversion_decline_short_trend_skipped(self) -> None:
        short = _conversion_trend([0.4, 0.3, 0.2])

        assert recommend(_summary(), Attribution(), [short]) == []

    def test_high_cpa_campaign_without_orders(self) -> None:
        attribution = Attribution(
            by_campaign={'c-1': ContributionMetrics(orders_attributed=0.0, spend=200.0)},
        )

        recommendations = recommend(_summary(), attribution, [])

        assert recommendations[0].rule == RuleKind.HIGH_CPA_CAMPAIGN
        assert recommendations[0].impact == pytest.approx(4.0)

    def test_revenue_concentration_and_scale_keep_rule_order(self) -> None:
        # Both rules are MEDIUM; the stable sort keeps declaration order
        attribution = Attribution(
            by_channel={'ads': _channel(9, 900.0, spend=100.0), 'direct': _channel(1, 100.0)},
            orders_checked=10,
        )

        recommendations = recommend(_summary(), attribution, [])

        assert [r.rule for r in recommendations] == [
            RuleKind.REVENUE_CONCENTRATION,
            RuleKind.SCALE_PROFITABLE_CHANNEL,
        ]
        assert all(r.priority == RecommendationPriority.MEDIUM for r in recommendations)

    def test_email_with_spend_is_not_a_zero_cost_win(self) -> None:
        attribution = Attribution(
            by_channel={'email': _channel(5, 500.0, spend=250.0), 'direct': _channel(5, 500.0)},
            orders_checked=10,
        )

        recommendations = recommend(_summary(), attribution, [])

        assert RuleKind.ZERO_COST_EMAIL_REVENUE not in [r.rule for r in recommendations]

    def test_scale_efficient_campaign(self) -> None:
        attribution = Attribution(
            by_campaign={
                'c-cheap': _channel(10, 1000.0, spend=200.0),
                'c-mid': _channel(5, 400.0, spend=200.0),
            },
        )

        recommendations = recommend(_summary(), attribution, [])

        assert [r.rule for r in recommendations] == [RuleKind.SCALE_EFFICIENT_CAMPAIGN]
        scale = recommendations[0]
        assert scale.id == 'scale_efficient_campaign:c-cheap'
        assert scale.priority == RecommendationPriority.HIGH
        assert scale.direction == Direction.POSITIVE
        assert scale.impact == pytest.approx(0.6)
        assert scale.data_points['cpa'] == pytest.approx(20.0)

    def test_scale_efficient_campaign_not_at_ceiling(self) -> None:
        # 50.0 * 0.7 = 35.0; a CPA exactly at the ceiling does not fire
        attribution = Attribution(by_campaign={'c-1': _channel(10, 1000.0, spend=350.0)})

        assert recommend(_summary(), attribution, []) == []

    def test_scale_efficient_campaign_custom_fraction(self) -> None:
        attribution = Attribution(by_campaign={'c-1': _channel(5, 400.0, spend=200.0)})

        default = recommend(_summary(), attribution, [])
        relaxed = recommend(_summary(), attribution, [], thresholds=RuleThresholds(scale_cpa_fraction=0.9))

        assert default == []
        assert [r.rule for r in relaxed] == [RuleKind.SCALE_EFFICIENT_CAMPAIGN]

    def test_scale_efficient_campaign_ignores_small_spend(self) -> None:
        attribution = Attribution(by_campaign={'c-tiny': _channel(2, 200.0, spend=20.0)})

        assert recommend(_summary(), attribution, []) == []

    def test_lapsed_vip_reactivation(self) -> None:
        summary = _summary().model_copy(update={
            'average_order_value': 100.0,
            'active_vip_customers': 4,
            'lapsed_vip_customers': 3,
        })

        recommendations = recommend(summary, Attribution(), [])

        assert [r.rule for r in recommendations] == [RuleKind.LAPSED_VIP_REACTIVATION]
        vip = recommendations[0]
        assert vip.priority == RecommendationPriority.HIGH
        assert vip.direction == Direction.NEGATIVE
        assert vip.impact == pytest.approx(3 / 7)
        assert vip.data_points['potential_recovery'] == pytest.approx(30.0)
        assert '3 lapsed customers' in vip.message

    @pytest.mark.parametrize('active, lapsed', [(4, 2), (10, 0), (0, 0)])
    def test_lapsed_vips_within_ratio_do_not_fire(self, active, lapsed) -> None:
        summary = _summary().model_copy(update={
            'active_vip_customers': active,
            'lapsed_vip_customers': lapsed,
        })

        assert recommend(summary, Attribution(), []) == []

    def test_lapsed_vip_custom_ratio(self) -> None:
        summary = _summary().model_copy(update={
            'active_vip_customers': 4,
            'lapsed_vip_customers': 3,
        })

        assert recommend(summary, Attribution(), [], thresholds=RuleThresholds(lapsed_vip_ratio=1.0)) == []

    def test_lapsed_vip_skipped_without_activity(self) -> None:
        assert _summary().lapsed_vip_customers is None
        assert recommend(_summary(), Attribution(), []) == []

    def test_empty_inputs_produce_nothing(self) -> None:
        assert recommend(_summary(), Attribution(), []) == []


class TestFailureIsolation:
    """A failing rule never takes the generator down."""

    def test_unexpected_error_skips_only_that_rule(self) -> None:
        def broken(ctx):
            raise ZeroDivisionError('boom')

        def insufficient(ctx):
            raise InsufficientSample('not enough')

        rules = (
            (RuleKind.NEGATIVE_ROAS, broken),
            (RuleKind.ATTRIBUTION_SHARE_DROP, insufficient),
        ) + RULES[2:]
        attribution = Attribution(
            by_channel={'ads': _channel(9, 900.0, spend=100.0), 'direct': _channel(1, 100.0)},
            orders_checked=10,
        )

        with patch('commerce_insights.services.recommendations.RULES', rules):
            recommendations = recommend(_summary(), attribution, [])

        assert [r.rule for r in recommendations] == [
            RuleKind.REVENUE_CONCENTRATION,
            RuleKind.SCALE_PROFITABLE_CHANNEL,
        ]

    def test_priorities_sorted_descending(self) -> None:
        attribution = Attribution(
            by_channel={
                'ads': _channel(2, 100.0, spend=200.0),
                'social': _channel(2, 800.0, spend=100.0),
                'email': _channel(6, 100.0),
            },
            orders_checked=10,
        )

        recommendations = recommend(_summary(), attribution, [])
        priorities = [int(r.priority) for r in recommendations]

        assert priorities == sorted(priorities, reverse=True)
        assert recommendations[0].priority == RecommendationPriority.CRITICAL

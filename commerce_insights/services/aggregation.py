"""
Data Aggregator Service for the analytics pipeline.

Reduces the raw events of one window into a Summary and an Attribution
breakdown per channel and per campaign.

Summary:
- order_count: number of order events
- revenue: numeric sum of order amounts (currency-agnostic)
- conversion_rate: orders / distinct sessions (0.0 when there are no sessions)
- new_customers: distinct customers with a signup event

Attribution (per order):
- Touches recorded for the order span more than one channel:
  credit is split evenly across the touches (2 of 3 touches -> 2/3 credit)
- Otherwise the latest touch receives all credit
- No touches: the order's own channel, else DEFAULT_CHANNEL, receives all credit
- An order placed inside the window keeps touches recorded before the window

Post-condition:
    Each order's weights sum to 1.0 within ATTRIBUTION_EPSILON. The check
    runs for every order before aggregate() returns; a violation raises
    AttributionError and aborts the run.

Usage:
    events = await load_window_events(store, window)  # window events + earlier touches
    summary, attribution = aggregate(events, window)
    campaigns = campaign_performance(events, attribution)
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from commerce_insights.core.errors import AttributionError
from commerce_insights.models import (
    AnalyticsWindow,
    Attribution,
    CampaignPerformance,
    ContributionMetrics,
    Event,
    EventType,
    Summary,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Channel credited for orders without any touch or channel
DEFAULT_CHANNEL: str = 'direct'

# Tolerance for the per-order sum-of-weights check
ATTRIBUTION_EPSILON: float = 1e-9

# (channel, campaign_id, weight) credited for one order
Credit = Tuple[str, Optional[str], float]


# =============================================================================
# Loading
# =============================================================================

async def load_window_events(store, window: AnalyticsWindow) -> List[Event]:
    """
    Load every event in the window from the store, plus the touches recorded
    before the window for orders placed inside it.

    The store raises DataUnavailable when the source is unreachable; it is
    not caught here so the run aborts before any Summary is built.
    """
    return with_order_touches(await store.load_events(window), window)


def with_order_touches(events: Iterable[Event], window: AnalyticsWindow) -> List[Event]:
    """
    In-window events followed by earlier touches of in-window orders.

    Touches after the window, and earlier touches of orders outside the
    window, are dropped.
    """
    events = list(events)
    in_window = [e for e in events if window.contains(e.occurred_at)]
    order_ids = {e.order_id for e in in_window if e.event_type == EventType.ORDER and e.order_id}
    earlier = [
        e for e in events
        if e.event_type == EventType.TOUCH
        and e.order_id in order_ids
        and e.occurred_at < window.start
    ]
    return in_window + earlier


# =============================================================================
# Attribution
# =============================================================================

def attribute_order(order: Event, touches: List[Event]) -> List[Credit]:
    """
    Split one order's credit across its touches.

    Args:
        order: The order event.
        touches: Touch events recorded for the order, in any order.

    Returns:
        List of (channel, campaign_id, weight) tuples whose weights sum to 1.0.

    Example:
        >>> attribute_order(order, [email_touch, ads_touch, ads_touch])
        [('email', None, 0.333...), ('ads', 'c1', 0.333...), ('ads', 'c1', 0.333...)]
    """
    if not touches:
        channel = order.channel or DEFAULT_CHANNEL
        return [(channel, order.campaign_id, 1.0)]

    ordered = sorted(touches, key=lambda t: t.occurred_at)
    channels = {t.channel or DEFAULT_CHANNEL for t in ordered}

    if len(channels) > 1:
        weight = 1.0 / len(ordered)
        return [(t.channel or DEFAULT_CHANNEL, t.campaign_id, weight) for t in ordered]

    last = ordered[-1]
    return [(last.channel or DEFAULT_CHANNEL, last.campaign_id, 1.0)]


def _check_weights(order: Event, credits: List[Credit]) -> None:
    total = sum(weight for _, _, weight in credits)
    if abs(total - 1.0) > ATTRIBUTION_EPSILON:
        raise AttributionError(
            'Attribution weights do not sum to 1.0',
            detail=f'order {order.order_id!r} sums to {total!r}',
        )


def _index_touches(events: Iterable[Event]) -> Dict[str, List[Event]]:
    touches: Dict[str, List[Event]] = defaultdict(list)
    for event in events:
        if event.event_type == EventType.TOUCH and event.order_id:
            touches[event.order_id].append(event)
    return touches


def _spend_by(events: Iterable[Event], key: str) -> Dict[str, float]:
    spend: Dict[str, float] = defaultdict(float)
    for event in events:
        if event.event_type != EventType.CAMPAIGN_SEND:
            continue
        name = getattr(event, key)
        if key == 'channel':
            name = name or DEFAULT_CHANNEL
        if name:
            spend[name] += event.amount or 0.0
    return dict(spend)


def _finish_metrics(
    credited: Dict[str, List[float]],
    spend: Dict[str, float],
    order_count: int,
) -> Dict[str, ContributionMetrics]:
    """Build ContributionMetrics from [orders, revenue] accumulators and spend."""
    result: Dict[str, ContributionMetrics] = {}
    for name in sorted(set(credited) | set(spend)):
        orders, revenue = credited.get(name, [0.0, 0.0])
        channel_spend = spend.get(name)
        roas = revenue / channel_spend if channel_spend else None
        cpa = channel_spend / orders if channel_spend and orders > 0 else None
        result[name] = ContributionMetrics(
            orders_attributed=orders,
            revenue_attributed=revenue,
            attribution_weight=orders / order_count if order_count else 0.0,
            spend=channel_spend,
            roas=roas,
            cpa=cpa,
        )
    return result


def attribute(events: List[Event]) -> Attribution:
    """
    Build the Attribution breakdown for a list of in-window events.

    Raises:
        AttributionError: If any order's weights fail the sum-to-one check.
    """
    orders = [e for e in events if e.event_type == EventType.ORDER]
    touches = _index_touches(events)

    by_channel: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0.0])
    by_campaign: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0.0])
    multi_touch = 0

    for order in orders:
        credits = attribute_order(order, touches.get(order.order_id, []) if order.order_id else [])
        _check_weights(order, credits)
        if len(credits) > 1:
            multi_touch += 1

        amount = order.amount or 0.0
        for channel, campaign_id, weight in credits:
            by_channel[channel][0] += weight
            by_channel[channel][1] += weight * amount
            if campaign_id:
                by_campaign[campaign_id][0] += weight
                by_campaign[campaign_id][1] += weight * amount

    order_count = len(orders)
    attribution = Attribution(
        by_channel=_finish_metrics(by_channel, _spend_by(events, 'channel'), order_count),
        by_campaign=_finish_metrics(by_campaign, _spend_by(events, 'campaign_id'), order_count),
        orders_checked=order_count,
        multi_touch_orders=multi_touch,
    )
    logger.debug(
        f"Attributed {order_count} orders ({multi_touch} multi-touch) "
        f"across {len(attribution.by_channel)} channels"
    )
    return attribution


# =============================================================================
# Summary
# =============================================================================

def _distinct(events: Iterable[Event], key: str) -> int:
    """Count distinct ids; events without an id count once each."""
    seen = set()
    anonymous = 0
    for event in events:
        value = getattr(event, key)
        if value:
            seen.add(value)
        else:
            anonymous += 1
    return len(seen) + anonymous


def summarize(events: List[Event], window: AnalyticsWindow) -> Summary:
    orders = [e for e in events if e.event_type == EventType.ORDER]
    sessions = _distinct((e for e in events if e.event_type == EventType.SESSION), 'session_id')
    signups = _distinct((e for e in events if e.event_type == EventType.SIGNUP), 'customer_id')
    spend = sum(e.amount or 0.0 for e in events if e.event_type == EventType.CAMPAIGN_SEND)

    order_count = len(orders)
    revenue = sum(e.amount or 0.0 for e in orders)

    return Summary(
        window_start=window.start,
        window_end=window.end,
        order_count=order_count,
        revenue=revenue,
        conversion_rate=order_count / sessions if sessions else 0.0,
        new_customers=signups,
        session_count=sessions,
        total_spend=spend,
        average_order_value=revenue / order_count if order_count else 0.0,
        roas=revenue / spend if spend > 0 else None,
        cpa=spend / order_count if spend > 0 and order_count else None,
    )


def aggregate(events: List[Event], window: AnalyticsWindow) -> Tuple[Summary, Attribution]:
    """
    Reduce one window of events into (Summary, Attribution).

    Args:
        events: Events read for the window. Events outside it are ignored,
            except earlier touches of in-window orders, which still earn
            attribution credit.
        window: The [start, end) window.

    Returns:
        Tuple of (Summary, Attribution).

    Raises:
        AttributionError: If the per-order weight check fails.
    """
    in_window = [e for e in events if window.contains(e.occurred_at)]
    summary = summarize(in_window, window)
    attribution = attribute(with_order_touches(events, window))
    logger.info(
        f"Aggregated window: orders={summary.order_count}, revenue={summary.revenue:.2f}, "
        f"conversion_rate={summary.conversion_rate:.4f}"
    )
    return summary, attribution


def campaign_performance(events: List[Event], attribution: Attribution) -> List[CampaignPerformance]:
    """
    Per-campaign spend and attributed results, highest spend first.

    A campaign's channel is taken from its first send or touch event.
    """
    channels: Dict[str, str] = {}
    for event in events:
        if event.campaign_id and event.channel and event.campaign_id not in channels:
            channels[event.campaign_id] = event.channel

    campaigns = [
        CampaignPerformance(
            campaign_id=campaign_id,
            channel=channels.get(campaign_id),
            spend=metrics.spend or 0.0,
            orders_attributed=metrics.orders_attributed,
            revenue_attributed=metrics.revenue_attributed,
            cpa=metrics.cpa,
            roas=metrics.roas,
        )
        for campaign_id, metrics in attribution.by_campaign.items()
    ]
    return sorted(campaigns, key=lambda c: (-c.spend, c.campaign_id))

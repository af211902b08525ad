"""
Enumeration definitions for the Commerce Insights backend.

All string enums inherit from both `str` and `Enum` so Pydantic models serialize
them as plain JSON strings in API responses and persisted run records.
RecommendationPriority is an IntEnum because priorities are ordinal and the
Recommendation Generator sorts on them.
"""

from enum import Enum, IntEnum


class EventType(str, Enum):
    """
    Kinds of raw business events read from the event store.

    - order: a placed order (amount = order total)
    - touch: a marketing touch recorded against an order (channel, campaign)
    - campaign_send: a paid or owned campaign send (amount = spend)
    - email: one email send attempt (status = sent/delivered/failed/bounced)
    - session: a site visit
    - signup: a new customer registration
    """
    ORDER = "order"
    TOUCH = "touch"
    CAMPAIGN_SEND = "campaign_send"
    EMAIL = "email"
    SESSION = "session"
    SIGNUP = "signup"


class EmailStatus(str, Enum):
    """Delivery status of an email event. failed and bounced count as failures."""
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class Severity(str, Enum):
    """Severity of delivery issues and anomalies."""
    WARNING = "warning"
    CRITICAL = "critical"


class RecommendationPriority(IntEnum):
    """
    Ordinal recommendation priority; higher sorts first.

    Serialized by name (e.g. "CRITICAL") in API payloads and digests.
    """
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class Direction(str, Enum):
    """Whether a recommendation reports a problem or a win."""
    POSITIVE = "positive"
    NEGATIVE = "negative"


class DataStatus(str, Enum):
    """
    Computation status carried by every derived entity.

    Distinguishes "computed, and the answer is zero/empty" from
    "not enough data to compute anything".
    """
    COMPUTED = "computed"
    INSUFFICIENT_DATA = "insufficient_data"


class AllocationDirection(str, Enum):
    """Direction of a budget reallocation suggestion."""
    INCREASE = "increase"
    DECREASE = "decrease"


class ConfidenceLevel(str, Enum):
    """Prediction confidence derived from the series' coefficient of variation."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RuleKind(str, Enum):
    """
    Closed set of recommendation rules, listed in evaluation order.

    - negative_roas: a paid channel returns less revenue than it costs
    - attribution_share_drop: a channel lost share vs the previous run
    - conversion_decline: conversion rate fell for N consecutive days
    - high_cpa_campaign: a campaign acquires orders far above target CPA
    - scale_efficient_campaign: the cheapest campaign is well below target CPA
    - revenue_concentration: one channel carries most attributed revenue
    - scale_profitable_channel: a paid channel beats target ROAS
    - zero_cost_email_revenue: email earns revenue without spend
    - lapsed_vip_reactivation: many high-value customers stopped ordering
    """
    NEGATIVE_ROAS = "negative_roas"
    ATTRIBUTION_SHARE_DROP = "attribution_share_drop"
    CONVERSION_DECLINE = "conversion_decline"
    HIGH_CPA_CAMPAIGN = "high_cpa_campaign"
    SCALE_EFFICIENT_CAMPAIGN = "scale_efficient_campaign"
    REVENUE_CONCENTRATION = "revenue_concentration"
    SCALE_PROFITABLE_CHANNEL = "scale_profitable_channel"
    ZERO_COST_EMAIL_REVENUE = "zero_cost_email_revenue"
    LAPSED_VIP_REACTIVATION = "lapsed_vip_reactivation"


class RunStatus(str, Enum):
    """Status of the read-only latest-run endpoints."""
    OK = "ok"
    NO_DATA = "no_data"

"""
Error taxonomy for the analytics pipeline.

Fatal errors abort a run and propagate to the trigger that started it:
- DataUnavailable: the event source could not be read
- ValidationError: the trigger supplied an invalid window (days < 1)
- AttributionError: per-order attribution weights do not sum to 1.0
- PersistenceError: the finished result could not be written

Non-fatal errors never leave the component that raises them:
- InsufficientSample: a rule, anomaly scan, prediction or correlation lacks data
- DeliveryFailure: the digest transport rejected or failed to send a message
"""

from typing import Optional


class AnalyticsError(Exception):
    """Base class for every error raised by the analytics pipeline."""

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class DataUnavailable(AnalyticsError):
    """The event source is missing or unreachable."""


class ValidationError(AnalyticsError):
    """Invalid trigger input, e.g. a non-positive ``days``."""


class AttributionError(AnalyticsError):
    """Per-order attribution weights failed the sum-to-one check."""


class PersistenceError(AnalyticsError):
    """The analytics result could not be written."""


class InsufficientSample(AnalyticsError):
    """Not enough data points to evaluate a rule or statistic."""

    def __init__(self, message: str, *, sample_size: int = 0, required: int = 0):
        detail = f"{sample_size} of {required} samples" if required else None
        super().__init__(message, detail=detail)
        self.sample_size = sample_size
        self.required = required


class DeliveryFailure(AnalyticsError):
    """A digest transport failed to deliver a message."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message, detail=detail)
        self.status_code = status_code

"""
Core infrastructure package for the Commerce Insights backend.

Provides:
- Configuration management via pydantic-settings (config)
- The asyncpg-backed Database handle (database)
- The analytics error taxonomy (errors)

FastAPI dependencies live in commerce_insights.core.dependencies and are
imported from there directly; they depend on the service layer, which in
turn depends on this package.

Usage Examples:
    from commerce_insights.core import get_settings, Database

    settings = get_settings()
    database = Database.from_settings(settings)
"""

from commerce_insights.core.config import AdvisoryConfig, Settings, get_settings
from commerce_insights.core.database import Database
from commerce_insights.core.errors import (
    AnalyticsError,
    AttributionError,
    DataUnavailable,
    DeliveryFailure,
    InsufficientSample,
    PersistenceError,
    ValidationError,
)

__all__ = [
    'AdvisoryConfig',
    'Settings',
    'get_settings',
    'Database',
    'AnalyticsError',
    'AttributionError',
    'DataUnavailable',
    'DeliveryFailure',
    'InsufficientSample',
    'PersistenceError',
    'ValidationError',
]

"""
FastAPI dependency injection module for the Commerce Insights backend.

Routers never build infrastructure themselves. The lifespan in main.py
constructs the Database handle, the AnalyticsStore and the DigestQueue once
per process and stores them on app.state; the dependencies below hand them
to endpoint handlers.

Key Dependencies Provided:
- get_store / StoreDep: the process-wide AnalyticsStore
- get_digest_queue / DigestQueueDep: the bounded digest queue
- get_settings_dependency / SettingsDep: the cached Settings
- verify_cron_secret: Bearer shared-secret check for the cron trigger

Testing:
    app.dependency_overrides[get_store] = lambda: fake_store
    app.dependency_overrides[get_settings_dependency] = lambda: test_settings
"""

import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from commerce_insights.core.config import Settings, get_settings
from commerce_insights.jobs.digest_queue import DigestQueue
from commerce_insights.services.storage import AnalyticsStore


# =============================================================================
# Application State Dependencies
# =============================================================================

def get_store(request: Request) -> AnalyticsStore:
    """Return the AnalyticsStore built in the application lifespan."""
    return request.app.state.store


def get_digest_queue(request: Request) -> DigestQueue:
    """Return the DigestQueue started in the application lifespan."""
    return request.app.state.digest_queue


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    This is a thin wrapper around get_settings() to enable FastAPI's
    dependency override mechanism for testing.
    """
    return get_settings()


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

StoreDep = Annotated[AnalyticsStore, Depends(get_store)]

DigestQueueDep = Annotated[DigestQueue, Depends(get_digest_queue)]


# =============================================================================
# Cron Authentication
# =============================================================================

def verify_cron_secret(
    settings: SettingsDep,
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Require ``Authorization: Bearer <CRON_SECRET>``.

    Raises:
        HTTPException: 401 when the secret is unset, missing or wrong.
    """
    expected = settings.cron_secret
    provided = ''
    if authorization and authorization.startswith('Bearer '):
        provided = authorization[len('Bearer '):]

    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

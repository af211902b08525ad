"""
Storage Service for the analytics pipeline.

AnalyticsStore is the narrow persistence contract the pipeline talks to. It
owns no connection state of its own: it is constructed around an explicitly
created Database handle (see core/database.py) and injected into the
orchestrator, the digest dispatcher and the API routers.

Contract:
- load_events(window): read-only scan of analytics_events for [start, end),
  plus earlier touches of the orders placed in that window
- load_vip_activity(window, min_revenue): active vs lapsed VIP customer counts
- save_result(result): single append-only INSERT into analytics_runs
- latest_result(): latest persisted run (run_at DESC, LIMIT 1) or None
- digest_already_sent(run_at) / mark_digest_sent(...): digest idempotency

Driver errors are translated at this boundary:
- read failures -> DataUnavailable
- write failures -> PersistenceError
No method retries; retries are a caller concern.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

import asyncpg

from commerce_insights.core.database import Database
from commerce_insights.core.errors import DataUnavailable, PersistenceError
from commerce_insights.models import AnalyticsResult, AnalyticsWindow, Event, EventType, VipActivity
from commerce_insights.sql import (
    DIGEST_SENT_QUERY,
    MARK_DIGEST_SENT_COMMAND,
    ORDER_TOUCHES_QUERY,
    RUN_JSON_COLUMNS,
    VIP_ACTIVITY_QUERY,
    WINDOW_EVENTS_QUERY,
    get_insert_run_query,
    get_latest_run_query,
)


logger = logging.getLogger(__name__)

# Driver-level failures treated as "data source unreachable"
DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def _decode_json(value: Any) -> Any:
    """JSONB comes back as text without a registered codec."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class AnalyticsStore:
    """asyncpg-backed store for events, runs and digest state."""

    def __init__(self, database: Database):
        self.database = database

    # =========================================================================
    # Events
    # =========================================================================

    async def load_events(self, window: AnalyticsWindow) -> List[Event]:
        """
        Read every event with start <= occurred_at < end, followed by the
        touches recorded before start for orders placed inside the window.

        Raises:
            DataUnavailable: If the event store cannot be queried.
        """
        try:
            rows = await self.database.fetch(WINDOW_EVENTS_QUERY, window.start, window.end)
            events = [Event(**dict(row)) for row in rows]

            order_ids = sorted({
                e.order_id for e in events
                if e.event_type == EventType.ORDER and e.order_id
            })
            earlier_touches: List[Event] = []
            if order_ids:
                touch_rows = await self.database.fetch(ORDER_TOUCHES_QUERY, order_ids, window.start)
                earlier_touches = [Event(**dict(row)) for row in touch_rows]
        except DRIVER_ERRORS as e:
            raise DataUnavailable('Event store unavailable', detail=str(e)) from e

        logger.info(
            f"Loaded {len(events)} events for window {window.start} -> {window.end} "
            f"(+{len(earlier_touches)} earlier touches)"
        )
        return events + earlier_touches

    async def load_vip_activity(self, window: AnalyticsWindow, min_revenue: float) -> VipActivity:
        """
        Count active and lapsed VIP customers for the window.

        Raises:
            DataUnavailable: If the event store cannot be queried.
        """
        try:
            row = await self.database.fetchrow(VIP_ACTIVITY_QUERY, window.start, window.end, min_revenue)
        except DRIVER_ERRORS as e:
            raise DataUnavailable('Customer activity unavailable', detail=str(e)) from e

        if row is None:
            return VipActivity()
        return VipActivity(active=row['active_vips'] or 0, lapsed=row['lapsed_vips'] or 0)

    # =========================================================================
    # Analytics Runs
    # =========================================================================

    async def save_result(self, result: AnalyticsResult) -> Optional[str]:
        """
        Append one run row. Exactly one INSERT per call.

        Returns:
            The generated row id as a string, when the table returns one.

        Raises:
            PersistenceError: If the INSERT fails.
        """
        payload = result.model_dump(mode='json')
        params = [json.dumps(payload[column]) for column in RUN_JSON_COLUMNS]

        try:
            row = await self.database.fetchrow(
                get_insert_run_query(),
                result.run_at,
                result.days,
                *params,
            )
        except DRIVER_ERRORS as e:
            raise PersistenceError('Failed to persist analytics run', detail=str(e)) from e

        run_id = str(row['id']) if row is not None else None
        logger.info(f"Persisted analytics run {run_id} (run_at={result.run_at.isoformat()})")
        return run_id

    async def latest_result(self) -> Optional[AnalyticsResult]:
        """
        Return the most recently persisted run, or None if there is none.

        Raises:
            DataUnavailable: If analytics_runs cannot be queried.
        """
        try:
            row = await self.database.fetchrow(get_latest_run_query())
        except DRIVER_ERRORS as e:
            raise DataUnavailable('Analytics run store unavailable', detail=str(e)) from e

        if row is None:
            return None

        record = {column: _decode_json(row[column]) for column in RUN_JSON_COLUMNS}
        record['run_at'] = row['run_at']
        record['days'] = row['days']
        return AnalyticsResult.model_validate(record)

    # =========================================================================
    # Digest State
    # =========================================================================

    async def digest_already_sent(self, run_at: datetime) -> bool:
        try:
            row = await self.database.fetchrow(DIGEST_SENT_QUERY, run_at)
        except DRIVER_ERRORS as e:
            raise DataUnavailable('Digest state unavailable', detail=str(e)) from e
        return row is not None

    async def mark_digest_sent(
        self,
        run_at: datetime,
        transport: str,
        delivery_id: Optional[str] = None,
    ) -> None:
        try:
            await self.database.execute(
                MARK_DIGEST_SENT_COMMAND,
                run_at,
                datetime.now(timezone.utc),
                transport,
                delivery_id,
            )
        except DRIVER_ERRORS as e:
            raise PersistenceError('Failed to record digest state', detail=str(e)) from e

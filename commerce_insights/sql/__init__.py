"""
SQL statements for the Commerce Insights storage layer.

Queries are kept as parameterized strings ($1, $2, ...) and executed through
the Database handle by commerce_insights.services.storage.
"""

from commerce_insights.sql.analytics_queries import (
    DIGEST_SENT_QUERY,
    MARK_DIGEST_SENT_COMMAND,
    ORDER_TOUCHES_QUERY,
    RUN_JSON_COLUMNS,
    VIP_ACTIVITY_QUERY,
    WINDOW_EVENTS_QUERY,
    get_insert_run_query,
    get_latest_run_query,
)

__all__ = [
    'DIGEST_SENT_QUERY',
    'MARK_DIGEST_SENT_COMMAND',
    'ORDER_TOUCHES_QUERY',
    'RUN_JSON_COLUMNS',
    'VIP_ACTIVITY_QUERY',
    'WINDOW_EVENTS_QUERY',
    'get_insert_run_query',
    'get_latest_run_query',
]

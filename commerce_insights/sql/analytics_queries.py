"""
Analytics Queries Module for Commerce Insights.

Provides the parameterized PostgreSQL statements used by the storage layer:
- Window event scan over analytics_events, plus earlier touches of window orders
- VIP customer activity (active vs lapsed) around a window
- Append-only insert and latest-run lookup over analytics_runs
- Digest idempotency state over analytics_digest_state

JSONB columns are written as text parameters cast with ::jsonb; asyncpg
returns them as text unless a codec is registered, so readers decode them.

Tables:
    analytics_events(event_type, occurred_at, channel, campaign_id, amount,
                     status, order_id, session_id, customer_id)
    analytics_runs(id, run_at, days, summary, attribution, campaigns, trends,
                   delivery_issues, recommendations)
    analytics_digest_state(run_at, sent_at, transport, delivery_id, send_count)
"""

from typing import Tuple


# =============================================================================
# CONSTANTS
# =============================================================================

# JSONB columns of analytics_runs, in insert order
RUN_JSON_COLUMNS: Tuple[str, ...] = (
    'summary',
    'attribution',
    'campaigns',
    'trends',
    'delivery_issues',
    'recommendations',
)


# =============================================================================
# EVENT WINDOW
# =============================================================================

# $1 = window start (inclusive), $2 = window end (exclusive)
WINDOW_EVENTS_QUERY = """
    SELECT
        event_type,
        occurred_at,
        channel,
        campaign_id,
        amount,
        status,
        order_id,
        session_id,
        customer_id
    FROM analytics_events
    WHERE occurred_at >= $1
      AND occurred_at < $2
    ORDER BY occurred_at ASC
"""

# Touches recorded before the window for orders placed inside it
# $1 = order ids (text[]), $2 = window start (exclusive upper bound)
ORDER_TOUCHES_QUERY = """
    SELECT
        event_type,
        occurred_at,
        channel,
        campaign_id,
        amount,
        status,
        order_id,
        session_id,
        customer_id
    FROM analytics_events
    WHERE event_type = 'touch'
      AND order_id = ANY($1::text[])
      AND occurred_at < $2
    ORDER BY occurred_at ASC
"""


# =============================================================================
# CUSTOMER ACTIVITY
# =============================================================================

# VIP = customer whose order revenue up to the window end reaches $3.
# Active VIPs ordered inside the window; lapsed VIPs ordered only before it.
# $1 = window start, $2 = window end, $3 = VIP minimum lifetime revenue
VIP_ACTIVITY_QUERY = """
    WITH customers AS (
        SELECT
            customer_id,
            SUM(COALESCE(amount, 0)) AS lifetime_revenue,
            COUNT(*) FILTER (WHERE occurred_at < $1) AS orders_before,
            COUNT(*) FILTER (WHERE occurred_at >= $1) AS orders_in_window
        FROM analytics_events
        WHERE event_type = 'order'
          AND customer_id IS NOT NULL
          AND occurred_at < $2
        GROUP BY customer_id
    )
    SELECT
        COUNT(*) FILTER (WHERE orders_in_window > 0) AS active_vips,
        COUNT(*) FILTER (WHERE orders_before > 0 AND orders_in_window = 0) AS lapsed_vips
    FROM customers
    WHERE lifetime_revenue >= $3
"""


# =============================================================================
# ANALYTICS RUNS
# =============================================================================

def get_insert_run_query() -> str:
    """
    Generate the append-only INSERT for one analytics run.

    Parameters: $1 = run_at, $2 = days, $3..$8 = JSON text for RUN_JSON_COLUMNS.
    Returns the generated row id.
    """
    columns = ', '.join(RUN_JSON_COLUMNS)
    placeholders = ', '.join(f'${i}::jsonb' for i in range(3, 3 + len(RUN_JSON_COLUMNS)))
    return f"""
    INSERT INTO analytics_runs (run_at, days, {columns})
    VALUES ($1, $2, {placeholders})
    RETURNING id
    """


def get_latest_run_query() -> str:
    """Latest persisted run: run_at descending, limit 1."""
    columns = ', '.join(RUN_JSON_COLUMNS)
    return f"""
    SELECT run_at, days, {columns}
    FROM analytics_runs
    ORDER BY run_at DESC
    LIMIT 1
    """


# =============================================================================
# DIGEST STATE
# =============================================================================

# $1 = run_at
DIGEST_SENT_QUERY = """
    SELECT run_at, sent_at
    FROM analytics_digest_state
    WHERE run_at = $1
"""

# $1 = run_at, $2 = sent_at, $3 = transport name, $4 = delivery id
MARK_DIGEST_SENT_COMMAND = """
    INSERT INTO analytics_digest_state (run_at, sent_at, transport, delivery_id, send_count)
    VALUES ($1, $2, $3, $4, 1)
    ON CONFLICT (run_at)
    DO UPDATE SET
        sent_at = EXCLUDED.sent_at,
        transport = EXCLUDED.transport,
        delivery_id = EXCLUDED.delivery_id,
        send_count = analytics_digest_state.send_count + 1
"""

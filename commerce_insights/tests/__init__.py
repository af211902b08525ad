'''
Commerce Insights Test Suite

Test Modules:
-------------
- test_aggregation.py: Data Aggregator
  - Summary metrics over a half-open window
  - Earlier touches of in-window orders keep their credit
  - Last-touch vs even-split attribution, weights summing to 1.0
  - Campaign performance ordering

- test_trends.py: Trend & Delivery Analyzer
  - Whole-UTC-day buckets, zero-fill, unaligned-window clamp
  - Delivery issue thresholds (strictly greater than)

- test_recommendations.py: Recommendation Generator
  - Rule order, priority ranking, failure isolation
  - Scaling efficient campaigns, lapsed VIP reactivation

- test_orchestrator.py: run_analytics(days)
  - Validation, abort on DataUnavailable, single persistence attempt
  - Run then advise on steady and empty stores

- test_advisory.py: Advisory Engine
  - Health score clamp, anomalies with per-metric std floors, budget, predictions, correlations, fallback

- test_dispatch.py: Digest formatting, transports, dispatch, DigestQueue
  - Idempotency per run_at, force re-send, failure isolation

- test_storage.py: Database handle and AnalyticsStore against a mocked pool

- test_api.py: HTTP endpoints and the cron shared secret

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v
    pytest -m scenario

Test Dependencies:
------------------
- pytest
- pytest-asyncio

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []

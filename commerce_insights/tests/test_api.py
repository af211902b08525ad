"""
Pytest test module for the HTTP surface.

Tests cover:
- POST /analytics/run: success, validation (400), source outage (503),
  persistence failure (500), digest failure isolation
- GET /analytics/summary and /analytics/recommendations: no_data and latest run
- GET /analytics/advice and /analytics/advice/latest: fallback shape on failure
- GET|POST /cron/analytics: shared-secret auth and queued digest

The app under test mounts api_router without the production lifespan;
app.state carries the in-memory store and a mock DigestQueue.
"""

import asyncio
from typing import Generator
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from commerce_insights.api import api_router
from commerce_insights.core.dependencies import get_settings_dependency
from commerce_insights.core.errors import DataUnavailable, PersistenceError
from commerce_insights.main import app as production_app
from commerce_insights.services.orchestrator import run_analytics


AUTH = {'Authorization': 'Bearer test-secret'}


@pytest.fixture
def digest_queue() -> Mock:
    queue = Mock()
    queue.submit = Mock(return_value=True)
    return queue


@pytest.fixture
def client(fake_store, test_settings, digest_queue) -> Generator[TestClient, None, None]:
    app = FastAPI()
    app.include_router(api_router)
    app.state.store = fake_store
    app.state.digest_queue = digest_queue
    app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================
# MANUAL RUN
# ============================================================

class TestManualRun:

    def test_run_succeeds_and_persists(self, client, fake_store) -> None:
        response = client.post('/analytics/run', json={'days': 7})

        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert body['summary']['order_count'] == 0
        assert body['email_sent'] is False
        assert fake_store.save_calls == 1

    def test_invalid_days_is_400(self, client, fake_store) -> None:
        response = client.post('/analytics/run', json={'days': 0})

        assert response.status_code == 400
        assert response.json()['success'] is False
        assert response.json()['error']
        assert fake_store.save_calls == 0

    def test_source_outage_is_503(self, client, fake_store) -> None:
        fake_store.fail_load = DataUnavailable('Event store unavailable')

        response = client.post('/analytics/run', json={'days': 7})

        assert response.status_code == 503
        assert response.json() == {
            'success': False,
            'run_at': None,
            'summary': None,
            'recommendations': [],
            'delivery_issues': [],
            'email_sent': False,
            'error': 'Event store unavailable',
        }

    def test_persistence_failure_is_500(self, client, fake_store) -> None:
        fake_store.fail_save = PersistenceError('write failed')

        response = client.post('/analytics/run', json={'days': 7})

        assert response.status_code == 500
        assert response.json()['success'] is False

    def test_digest_failure_keeps_run_successful(self, client, fake_store) -> None:
        # No transport is configured, so the digest is not delivered
        response = client.post('/analytics/run', json={'days': 7, 'send_email': True})

        assert response.status_code == 200
        assert response.json()['success'] is True
        assert response.json()['email_sent'] is False
        assert len(fake_store.saved) == 1


# ============================================================
# LATEST RUN
# ============================================================

class TestLatestRun:

    def test_summary_without_runs(self, client) -> None:
        response = client.get('/analytics/summary')

        assert response.status_code == 200
        assert response.json()['status'] == 'no_data'
        assert response.json()['summary'] is None

    def test_summary_returns_latest_run(self, client, fake_store, make_result) -> None:
        fake_store.latest = make_result(series={'orders': [1, 2, 3, 4, 5, 6, 7]})

        body = client.get('/analytics/summary').json()

        assert body['status'] == 'ok'
        assert body['days'] == 7
        assert body['trends'][0]['metric'] == 'orders'
        assert fake_store.save_calls == 0

    def test_summary_store_outage_is_503(self, client, fake_store) -> None:
        fake_store.fail_latest = DataUnavailable('Analytics run store unavailable')

        response = client.get('/analytics/summary')

        assert response.status_code == 503

    def test_recommendations_of_latest_run(self, client, fake_store, sample_events, test_settings, now) -> None:
        fake_store.events = sample_events
        asyncio.run(run_analytics(7, store=fake_store, settings=test_settings, now=now))

        body = client.get('/analytics/recommendations').json()

        assert body['status'] == 'ok'
        assert [r['rule'] for r in body['recommendations']] == [
            'high_cpa_campaign',
            'scale_profitable_channel',
            'zero_cost_email_revenue',
        ]
        assert body['recommendations'][0]['priority'] == 'HIGH'

    def test_recommendations_without_runs(self, client) -> None:
        body = client.get('/analytics/recommendations').json()

        assert body == {'status': 'no_data', 'run_at': None, 'recommendations': []}


# ============================================================
# ADVICE
# ============================================================

class TestAdvice:

    def test_fresh_advice_does_not_persist(self, client, fake_store) -> None:
        response = client.get('/analytics/advice', params={'days': 7})

        assert response.status_code == 200
        body = response.json()
        assert body['daily_digest']['health_score'] == 100.0
        assert fake_store.save_calls == 0

    def test_invalid_days_returns_fallback_400(self, client) -> None:
        response = client.get('/analytics/advice', params={'days': 0})

        assert response.status_code == 400
        digest = response.json()['daily_digest']
        assert digest['health_score'] == 50.0
        assert digest['top_actions'] == []

    @pytest.mark.parametrize('days', ['abc', '2.5', ''])
    def test_non_integer_days_returns_fallback_400(self, client, fake_store, days) -> None:
        response = client.get('/analytics/advice', params={'days': days})

        assert response.status_code == 400
        body = response.json()
        assert 'detail' not in body
        assert body['daily_digest']['health_score'] == 50.0
        assert body['daily_digest']['quick_stats'] == {'wins': 0, 'warnings': 0, 'critical': 0}
        assert body['anomalies'] == []
        assert fake_store.save_calls == 0

    def test_source_outage_returns_fallback_500(self, client, fake_store) -> None:
        fake_store.fail_load = DataUnavailable('Event store unavailable')

        response = client.get('/analytics/advice')

        assert response.status_code == 500
        assert response.json()['daily_digest']['health_score'] == 50.0
        assert response.json()['anomalies'] == []

    def test_latest_advice_without_runs_is_fallback(self, client) -> None:
        response = client.get('/analytics/advice/latest')

        assert response.status_code == 200
        assert response.json()['daily_digest']['health_score'] == 50.0

    def test_latest_advice_uses_run_at(self, client, fake_store, make_result) -> None:
        fake_store.latest = make_result(series={'orders': [10, 10, 10, 10, 10, 10, 50]})

        body = client.get('/analytics/advice/latest').json()

        assert body['generated_at'].startswith('2026-03-08T12:00:00')
        assert body['daily_digest']['health_score'] == 90.0
        assert len(body['anomalies']) == 1


# ============================================================
# CRON TRIGGER
# ============================================================

class TestCron:

    def test_missing_secret_is_401(self, client, fake_store) -> None:
        response = client.get('/cron/analytics')

        assert response.status_code == 401
        assert fake_store.save_calls == 0

    def test_wrong_secret_is_401(self, client) -> None:
        response = client.get('/cron/analytics', headers={'Authorization': 'Bearer nope'})

        assert response.status_code == 401

    def test_unset_secret_rejects_everything(self, client, test_settings) -> None:
        client.app.dependency_overrides[get_settings_dependency] = (
            lambda: test_settings.model_copy(update={'cron_secret': None})
        )

        response = client.get('/cron/analytics', headers=AUTH)

        assert response.status_code == 401

    @pytest.mark.parametrize('method', ['GET', 'POST'])
    def test_authorized_run_queues_digest(self, client, fake_store, digest_queue, method) -> None:
        response = client.request(method, '/cron/analytics', headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert body['digest_queued'] is True
        assert fake_store.save_calls == 1
        label, job = digest_queue.submit.call_args.args
        assert label == body['run_at']
        assert callable(job)

    def test_failed_run_is_500_and_nothing_queued(self, client, fake_store, digest_queue) -> None:
        fake_store.fail_load = DataUnavailable('Event store unavailable')

        response = client.post('/cron/analytics', headers=AUTH)

        assert response.status_code == 500
        digest_queue.submit.assert_not_called()


class TestServiceEndpoints:

    def test_health(self) -> None:
        response = TestClient(production_app).get('/health')

        assert response.status_code == 200
        assert response.json() == {'status': 'healthy'}

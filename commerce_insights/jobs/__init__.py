"""
Digest Jobs for Commerce Insights.

This package delivers the human-facing digest of each analytics run:
- digest_dispatch.py: message formatting, Resend/Slack transports, dispatch()
- digest_queue.py: bounded single-worker queue for scheduled dispatch

Idempotency Guarantees:
-----------------------
- One digest per analytics run, keyed by the run's run_at in the
  analytics_digest_state table
- force=True re-sends intentionally

Environment Requirements:
-------------------------
Email (preferred):
- RESEND_API_KEY, DIGEST_SENDER, DIGEST_RECIPIENT

Slack (fallback when no email key is configured):
- SLACK_WEBHOOK_URL: https://hooks.slack.com/services/xxx/yyy/zzz
"""

from commerce_insights.jobs.digest_dispatch import (
    DigestMessage,
    ResendEmailTransport,
    SlackWebhookTransport,
    build_transport,
    dispatch,
    format_digest_message,
)
from commerce_insights.jobs.digest_queue import DigestQueue

__all__ = [
    'DigestMessage',
    'DigestQueue',
    'ResendEmailTransport',
    'SlackWebhookTransport',
    'build_transport',
    'dispatch',
    'format_digest_message',
]

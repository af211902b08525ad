"""
Digest dispatch job for Commerce Insights.

Formats an AnalyticsResult (and its AIAdviceResult) into a transport-agnostic
DigestMessage and hands it to the configured transport.

Transports:
- ResendEmailTransport: POST to the Resend email API via httpx
  (RESEND_API_KEY, DIGEST_SENDER, DIGEST_RECIPIENT)
- SlackWebhookTransport: Slack Block Kit message via slack_sdk WebhookClient
  (SLACK_WEBHOOK_URL)
build_transport() prefers email when a Resend key is configured.

Idempotency Guarantees:
- One digest per run: the run's run_at is recorded in analytics_digest_state
  after a successful send, and dispatch() skips runs already recorded
- force=True bypasses the check for intentional re-sends

Failure Semantics:
    dispatch() never raises. A send failure is logged and returned as False
    so the caller decides what it means; it never marks the analytics run
    itself as failed. No automatic retries.

Usage:
    delivered = await dispatch(result, store=store, settings=settings)
"""

import asyncio
import html
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import httpx
from slack_sdk.errors import SlackClientError
from slack_sdk.webhook import WebhookClient

from commerce_insights.core.config import AdvisoryConfig, Settings, get_settings
from commerce_insights.core.errors import AnalyticsError, DeliveryFailure
from commerce_insights.models import AIAdviceResult, AnalyticsResult, Severity
from commerce_insights.services.advisory import advise


logger = logging.getLogger(__name__)

# Number of recommendations and warnings listed in a digest
DIGEST_ITEM_LIMIT: int = 5


# =============================================================================
# Message Model
# =============================================================================

@dataclass(frozen=True)
class DigestMessage:
    """
    Transport-agnostic digest content.

    Attributes:
        subject: One-line subject; flags urgent runs with critical delivery issues.
        text: Plain-text body.
        html: HTML body for email transports.
        blocks: Slack Block Kit blocks for the Slack transport.
    """
    subject: str
    text: str
    html: str
    blocks: List[Dict[str, Any]] = field(default_factory=list)


# =============================================================================
# Formatting
# =============================================================================

def format_currency(value: float) -> str:
    if value >= 1_000_000:
        return f"{value / 1_000_000:.2f}M"
    elif value >= 1_000:
        return f"{value / 1_000:.1f}K"
    else:
        return f"{value:.2f}"


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def format_digest_message(
    result: Optional[AnalyticsResult],
    advice: Optional[AIAdviceResult] = None,
    dashboard_url: Optional[str] = None,
) -> DigestMessage:
    """
    Build subject, plain text, HTML and Slack blocks for one digest.

    Args:
        result: The analytics run, if available.
        advice: Advisory output for the run, if available.
        dashboard_url: Link appended to every rendering.

    Returns:
        DigestMessage with all renderings filled in.

    Note:
        Either argument may be None; the message then omits the sections
        that depend on it.
    """
    generated_at = result.run_at if result is not None else advice.generated_at
    date_str = generated_at.strftime('%Y-%m-%d')

    critical = [i for i in result.delivery_issues if i.severity == Severity.CRITICAL] if result else []
    warnings = [i for i in result.delivery_issues if i.severity == Severity.WARNING] if result else []

    if critical:
        subject = f"🔴 URGENT: {len(critical)} email delivery issue(s) - Commerce Insights"
    else:
        subject = f"📊 Commerce Insights daily digest - {date_str}"

    text_lines: List[str] = [subject, ""]
    html_parts: List[str] = [f"<h1>📊 Commerce Insights - {html.escape(date_str)}</h1>"]
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"📊 Commerce Insights - {date_str}", "emoji": True},
        },
        {"type": "divider"},
    ]

    # Delivery alerts
    if critical or warnings:
        alert_lines = [f"CRITICAL: {i.message}" for i in critical]
        alert_lines += [f"WARNING: {i.message}" for i in warnings[:DIGEST_ITEM_LIMIT]]
        text_lines += ["Delivery alerts:"] + [f"- {line}" for line in alert_lines] + [""]
        html_parts.append(
            "<h2>🚨 Delivery alerts</h2><ul>"
            + "".join(f"<li>{html.escape(line)}</li>" for line in alert_lines)
            + "</ul>"
        )
        blocks.append(_section("*🚨 Delivery alerts*\n\n" + "\n".join(f"• {line}" for line in alert_lines)))

    # Summary
    if result is not None:
        summary = result.summary
        summary_lines = [
            f"Orders: {summary.order_count:,}",
            f"Revenue: {format_currency(summary.revenue)}",
            f"Conversion rate: {summary.conversion_rate:.2%}",
            f"New customers: {summary.new_customers:,}",
            f"Spend: {format_currency(summary.total_spend)}",
        ]
        if summary.cpa is not None:
            summary_lines.append(f"CPA: {format_currency(summary.cpa)}")
        text_lines += [f"Summary ({result.days} days):"] + [f"- {line}" for line in summary_lines] + [""]
        html_parts.append(
            f"<h2>📈 Summary ({result.days} days)</h2><ul>"
            + "".join(f"<li>{html.escape(line)}</li>" for line in summary_lines)
            + "</ul>"
        )
        blocks.append(_section(f"*📈 Summary ({result.days} days)*\n\n" + "\n".join(summary_lines)))

    # Advice
    if advice is not None:
        digest = advice.daily_digest
        stats = digest.quick_stats
        health_line = (
            f"Health score: {digest.health_score:.0f}/100 "
            f"(wins {stats.wins}, warnings {stats.warnings}, critical {stats.critical})"
        )
        text_lines += [health_line, ""]
        html_parts.append(f"<p><strong>{html.escape(health_line)}</strong></p>")
        blocks.append(_section(f"*🩺 {health_line}*"))

        if digest.top_actions:
            text_lines += ["Top actions:"] + [
                f"{i}. {action}" for i, action in enumerate(digest.top_actions, 1)
            ] + [""]
            html_parts.append(
                "<h2>💡 Top actions</h2><ol>"
                + "".join(f"<li>{html.escape(action)}</li>" for action in digest.top_actions)
                + "</ol>"
            )
            blocks.append(_section(
                "*💡 Top actions*\n\n"
                + "\n".join(f"{i}. {action}" for i, action in enumerate(digest.top_actions, 1))
            ))
    elif result is not None and result.recommendations:
        recs = result.recommendations[:DIGEST_ITEM_LIMIT]
        rec_lines = [f"[{r.priority.name}] {r.message}" for r in recs]
        text_lines += ["Top recommendations:"] + [f"- {line}" for line in rec_lines] + [""]
        html_parts.append(
            "<h2>💡 Top recommendations</h2><ol>"
            + "".join(f"<li>{html.escape(line)}</li>" for line in rec_lines)
            + "</ol>"
        )
        blocks.append(_section("*💡 Top recommendations*\n\n" + "\n".join(rec_lines)))

    if dashboard_url:
        text_lines.append(f"Dashboard: {dashboard_url}")
        html_parts.append(f'<p><a href="{html.escape(dashboard_url, quote=True)}">View full dashboard</a></p>')
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"<{dashboard_url}|View full dashboard>"}],
        })

    return DigestMessage(
        subject=subject,
        text="\n".join(text_lines).rstrip() + "\n",
        html="\n".join(html_parts),
        blocks=blocks,
    )


# =============================================================================
# Transports
# =============================================================================

class ResendEmailTransport:
    """Send digests through the Resend HTTP email API."""

    name = 'email'

    def __init__(
        self,
        api_key: str,
        sender: str,
        recipient: str,
        api_url: str = 'https://api.resend.com/emails',
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.sender = sender
        self.recipient = recipient
        self.api_url = api_url
        self.timeout = timeout

    async def send(self, message: DigestMessage) -> Optional[str]:
        """
        POST the message and return the provider's delivery id.

        Raises:
            DeliveryFailure: On transport errors or a non-2xx response.
        """
        payload = {
            "from": self.sender,
            "to": [self.recipient],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryFailure('Email request failed', detail=str(e)) from e

        if not 200 <= response.status_code < 300:
            raise DeliveryFailure(
                'Email API rejected the digest',
                status_code=response.status_code,
                detail=response.text[:500],
            )

        try:
            return response.json().get('id')
        except ValueError:
            return None


class SlackWebhookTransport:
    """Post digests to a Slack incoming webhook as Block Kit."""

    name = 'slack'

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url

    async def send(self, message: DigestMessage) -> Optional[str]:
        client = WebhookClient(self.webhook_url)
        try:
            response = await asyncio.to_thread(client.send, text=message.subject, blocks=message.blocks)
        except (SlackClientError, OSError) as e:
            raise DeliveryFailure('Slack webhook request failed', detail=str(e)) from e

        if response.status_code != 200:
            raise DeliveryFailure(
                'Slack webhook rejected the digest',
                status_code=response.status_code,
                detail=str(response.body),
            )
        return None


DigestTransport = Union[ResendEmailTransport, SlackWebhookTransport]


def build_transport(settings: Settings) -> Optional[DigestTransport]:
    """Email when a Resend key is set, else Slack when a webhook is set, else None."""
    if settings.resend_api_key:
        return ResendEmailTransport(
            api_key=settings.resend_api_key,
            sender=settings.digest_sender,
            recipient=settings.digest_recipient,
            api_url=settings.resend_api_url,
            timeout=settings.digest_timeout_seconds,
        )
    if settings.slack_webhook_url:
        return SlackWebhookTransport(settings.slack_webhook_url)
    return None


# =============================================================================
# Main Entry Point
# =============================================================================

async def dispatch(
    payload: Union[AnalyticsResult, AIAdviceResult],
    advice: Optional[AIAdviceResult] = None,
    *,
    store=None,
    transport: Optional[DigestTransport] = None,
    settings: Optional[Settings] = None,
    force: bool = False,
) -> bool:
    """
    Format and send the digest for one run.

    Args:
        payload: The AnalyticsResult to report on, or an AIAdviceResult alone.
        advice: Advice for the run; computed with advise() when omitted.
        store: AnalyticsStore for idempotency state (skipped when None).
        transport: Explicit transport; built from settings when omitted.
        settings: Application settings.
        force: Send even if this run's digest was already delivered.

    Returns:
        True when delivered (or already delivered earlier), False otherwise.

    Raises:
        Nothing. Settings, formatting, transport and digest-state failures
        are logged and return False.
    """
    try:
        settings = settings or get_settings()

        if isinstance(payload, AIAdviceResult):
            result, advice = None, payload
            run_at = payload.generated_at
        else:
            result = payload
            run_at = payload.run_at
            if advice is None:
                advice = advise(result, AdvisoryConfig.from_settings(settings))

        transport = transport or build_transport(settings)
    except Exception:
        logger.exception("Could not prepare digest")
        return False

    if transport is None:
        logger.warning("No digest transport configured (set RESEND_API_KEY or SLACK_WEBHOOK_URL)")
        return False

    if store is not None and not force:
        try:
            if await store.digest_already_sent(run_at):
                logger.info(f"Digest for run {run_at.isoformat()} already sent, skipping")
                return True
        except AnalyticsError as e:
            logger.warning(f"Could not check digest state, sending anyway: {e}")

    try:
        message = format_digest_message(result, advice, settings.dashboard_url)
    except Exception:
        logger.exception(f"Could not format digest for run {run_at.isoformat()}")
        return False

    try:
        delivery_id = await transport.send(message)
    except DeliveryFailure as e:
        logger.error(f"Digest delivery via {transport.name} failed: {e}")
        return False
    except Exception:
        logger.exception(f"Unexpected error delivering digest via {transport.name}")
        return False

    if store is not None:
        try:
            await store.mark_digest_sent(run_at, transport.name, delivery_id)
        except AnalyticsError as e:
            # The message went out; a later resend is the only risk
            logger.warning(f"Digest sent but state not recorded: {e}")

    logger.info(f"Digest for run {run_at.isoformat()} sent via {transport.name} (id={delivery_id})")
    return True

"""Webhook service for import lifecycle notifications."""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, get_args

import httpx
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.webhook import Webhook
from app.schemas.webhook import WebhookEvent

WEBHOOK_EVENTS = list(get_args(WebhookEvent))

settings = get_settings()
logger = logging.getLogger(__name__)


async def trigger_webhooks(
    event_type: str, payload: Dict[str, Any], db: Session
) -> None:
    """
    Send webhook to all enabled webhooks for this event type, limited to
    subscriptions for the payload's vector set (or for every vector set).
    Failures are logged, never raised.

    Args:
        event_type: Type of event (e.g., "import.completed")
        payload: Event data to send
        db: Database session
    """
    if event_type not in WEBHOOK_EVENTS:
        logger.warning(f"⚠️ Ignoring unknown webhook event {event_type}")
        return

    vector_set_name = payload.get("data", {}).get("vector_set_name")
    webhooks = (
        db.query(Webhook)
        .filter(Webhook.event_type == event_type, Webhook.enabled == True)  # noqa: E712
        .filter(or_(Webhook.vector_set_name.is_(None), Webhook.vector_set_name == vector_set_name))
        .all()
    )

    if not webhooks:
        return

    async with httpx.AsyncClient(timeout=settings.webhook_timeout) as client:
        tasks = [_send_webhook(client, webhook.url, payload) for webhook in webhooks]
        await asyncio.gather(*tasks, return_exceptions=True)


async def _send_webhook(
    client: httpx.AsyncClient, url: str, payload: Dict[str, Any]
) -> None:
    """
    Send a single webhook request.

    Args:
        client: HTTP client
        url: Webhook URL
        payload: Event data
    """
    try:
        await client.post(url, json=payload)
    except Exception as e:
        logger.warning(f"⚠️ Failed to send webhook to {url}: {e}")


def webhook_notifier(db: Session) -> Callable[[str, Dict[str, Any]], None]:
    """
    Build a synchronous event callback for the job processor.

    Args:
        db: Database session used to look up subscriptions

    Returns:
        Callable taking (event_type, payload)
    """

    def notify(event_type: str, payload: Dict[str, Any]) -> None:
        logger.info(f"🪝 Triggering {event_type} webhooks for job {payload['data'].get('job_id')}")
        asyncio.run(trigger_webhooks(event_type, payload, db))

    return notify


async def test_webhook(url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Test a webhook by sending a sample payload and measuring response.

    Args:
        url: Webhook URL to test
        payload: Test payload

    Returns:
        Dict with test results including status code and response time
    """
    start_time = time.time()

    try:
        async with httpx.AsyncClient(timeout=settings.webhook_timeout) as client:
            response = await client.post(url, json=payload)
            response_time = time.time() - start_time

            return {
                "success": True,
                "status_code": response.status_code,
                "response_time": round(response_time, 3),
            }
    except httpx.TimeoutException:
        return {
            "success": False,
            "error": f"Request timeout (> {settings.webhook_timeout:g} seconds)",
            "response_time": settings.webhook_timeout,
        }
    except Exception as e:
        response_time = time.time() - start_time
        return {
            "success": False,
            "error": str(e),
            "response_time": round(response_time, 3),
        }

"""Webhook subscription endpoints."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.webhook import Webhook
from app.schemas.webhook import (
    WebhookCreate,
    WebhookEvent,
    WebhookResponse,
    WebhookTestResponse,
    WebhookUpdate,
)
from app.services.webhook_service import test_webhook

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

logger = logging.getLogger(__name__)


def _get_webhook_or_404(db: Session, webhook_id: int) -> Webhook:
    webhook = db.get(Webhook, webhook_id)
    if webhook is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return webhook


@router.get("", response_model=List[WebhookResponse])
def list_webhooks(
    event_type: Optional[WebhookEvent] = Query(None, description="Only subscriptions to this event"),
    vector_set_name: Optional[str] = Query(None, description="Only subscriptions scoped to this vector set"),
    db: Session = Depends(get_db),
):
    """List webhook subscriptions, newest first."""
    query = db.query(Webhook)
    if event_type:
        query = query.filter(Webhook.event_type == event_type)
    if vector_set_name:
        query = query.filter(Webhook.vector_set_name == vector_set_name)
    return query.order_by(Webhook.created_at.desc(), Webhook.id.desc()).all()


@router.post("", response_model=WebhookResponse, status_code=201)
def create_webhook(webhook: WebhookCreate, db: Session = Depends(get_db)):
    """
    Subscribe a URL to an import event.

    Without a vector set name the webhook fires for imports into any vector set.
    """
    db_webhook = Webhook(**webhook.model_dump())
    db.add(db_webhook)
    db.commit()
    db.refresh(db_webhook)

    logger.info(f"🪝 Webhook {db_webhook.id} subscribed to {db_webhook.event_type}")
    return db_webhook


@router.get("/{webhook_id}", response_model=WebhookResponse)
def get_webhook(webhook_id: int, db: Session = Depends(get_db)):
    return _get_webhook_or_404(db, webhook_id)


@router.put("/{webhook_id}", response_model=WebhookResponse)
def update_webhook(
    webhook_id: int, webhook_update: WebhookUpdate, db: Session = Depends(get_db)
):
    """
    Update a webhook.

    Only fields present in the request are changed. An empty
    ``vector_set_name`` widens the subscription to every vector set.

    Args:
        webhook_id: ID of the webhook to update
        webhook_update: Fields to change
    """
    db_webhook = _get_webhook_or_404(db, webhook_id)

    for field, value in webhook_update.model_dump(exclude_unset=True).items():
        if field == "vector_set_name":
            value = value or None
        elif value is None:
            continue
        setattr(db_webhook, field, value)

    db.commit()
    db.refresh(db_webhook)
    return db_webhook


@router.delete("/{webhook_id}", status_code=204)
def delete_webhook(webhook_id: int, db: Session = Depends(get_db)):
    db.delete(_get_webhook_or_404(db, webhook_id))
    db.commit()
    logger.info(f"🗑️ Webhook {webhook_id} deleted")
    return None


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse)
async def test_webhook_endpoint(webhook_id: int, db: Session = Depends(get_db)):
    """
    Send a sample event for this subscription and report how the receiver answered.

    The payload has the same shape as a real import event, flagged with ``test``.
    """
    webhook = _get_webhook_or_404(db, webhook_id)

    sample = {
        "event": webhook.event_type,
        "test": True,
        "data": {
            "job_id": "00000000-0000-0000-0000-000000000000",
            "vector_set_name": webhook.vector_set_name or "test-vectors",
            "filename": "test.csv",
            "processed": 10,
        },
    }

    result = await test_webhook(webhook.url, sample)
    return WebhookTestResponse(**result)

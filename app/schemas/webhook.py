"""Webhook subscription schemas."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

# Import lifecycle events a webhook can subscribe to
WebhookEvent = Literal[
    "import.started",
    "import.completed",
    "import.failed",
    "import.cancelled",
]


class WebhookBase(BaseModel):
    """Fields shared by create requests and responses."""

    url: str = Field(..., min_length=1, max_length=2048)
    event_type: WebhookEvent
    vector_set_name: Optional[str] = Field(
        None, max_length=500, description="Only notify for this vector set (all when empty)"
    )
    enabled: bool = True


class WebhookCreate(WebhookBase):
    """Subscribe a URL to one import event."""


class WebhookUpdate(BaseModel):
    """Partial update; only fields present in the request are applied."""

    url: Optional[str] = Field(None, min_length=1, max_length=2048)
    event_type: Optional[WebhookEvent] = None
    vector_set_name: Optional[str] = Field(None, max_length=500)
    enabled: Optional[bool] = None


class WebhookResponse(WebhookBase):
    id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WebhookTestResponse(BaseModel):
    """Outcome of sending a sample event."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    response_time: Optional[float] = None

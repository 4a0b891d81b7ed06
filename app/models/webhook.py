"""Webhook subscriptions for import lifecycle events."""
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String
from sqlalchemy.sql import func

from app.database import Base


class Webhook(Base):
    """A URL notified when an import event fires, optionally for one vector set."""

    __tablename__ = "webhooks"
    __table_args__ = (
        # Matches the lookup made for every emitted event
        Index("ix_webhooks_event_vector_set", "event_type", "vector_set_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    url = Column(String(2048), nullable=False)
    event_type = Column(String(100), nullable=False)
    # NULL subscribes to every vector set
    vector_set_name = Column(String(500), nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

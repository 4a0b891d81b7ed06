"""Database models."""
from app.models.webhook import Webhook

__all__ = ["Webhook"]

"""Webhook schemas."""

from pydantic import BaseModel
from typing import Optional


class WebhookResponse(BaseModel):
    """Response after receiving a webhook."""
    status: str
    job_id: Optional[str] = None
    message: str

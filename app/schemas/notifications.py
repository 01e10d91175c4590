"""Notification outbox schemas."""

from typing import Any

from app.schemas.common import CamelModel


class NotificationResponse(CamelModel):
    id: str
    kind: str
    recipient: str
    subject: str
    body: str
    payload: dict[str, Any]
    status: str
    created_at: str
    sent_at: str | None

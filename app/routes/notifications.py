"""Notification outbox endpoints for the mail relay that delivers them."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.dependencies import get_api_key, get_context, get_db
from app.schemas.notifications import NotificationResponse
from royalties.context import AppContext
from royalties.services._types import NotificationDict
from royalties.services.notifications import NotificationService

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
def list_pending(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
) -> list[NotificationDict]:
    svc = NotificationService(db)
    return [svc.to_dict(n) for n in svc.pending(limit=limit)]


@router.post("/{notification_id}/sent", response_model=NotificationResponse)
def mark_sent(
    notification_id: str,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
    _key: str = Depends(get_api_key),
) -> NotificationDict:
    """Acknowledge delivery. Repeating the call is harmless."""
    svc = NotificationService(db, ctx.clock)
    note = svc.get(notification_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    svc.mark_sent(notification_id)
    return svc.to_dict(note)

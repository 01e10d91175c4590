"""Notification outbox.

Messages are written to the ``notifications`` table in the same transaction
as the state change they describe. Delivery (mail or otherwise) drains the
outbox separately.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from config import get_settings
from db.enums import NotificationKind, NotificationStatus
from db.models import Notifications
from royalties.services._helpers import ensure_utc, iso, new_id, to_money
from royalties.services._types import NotificationDict
from royalties.services.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}


def format_amount(amount: Decimal, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    value = f"{to_money(amount):,.2f}"
    return f"{symbol}{value}" if symbol else f"{value} {currency.upper()}"


class NotificationService:
    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self.session: Session = session
        self.clock: Clock = clock or SystemClock()
        settings = get_settings()
        self.admin_email = settings.notifications.admin_email
        self.site_name = settings.notifications.site_name
        self.cancel_url_template = settings.notifications.cancel_url_template
        self.currency = settings.gateway.currency

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def batch_scheduled(
        self,
        batch_id: str,
        vendor_count: int,
        total_amount: Decimal,
        scheduled_at: datetime,
    ) -> Notifications:
        cancel_url = self.cancel_url_template.format(batch_id=batch_id)
        body = (
            "Payment batch ready:\n\n"
            f"- {vendor_count} authors\n"
            f"- Total: {format_amount(total_amount, self.currency)}\n"
            f"- Scheduled: {scheduled_at.strftime('%Y-%m-%d %H:%M:%S')} UTC\n\n"
            f"Cancel if needed: {cancel_url}\n"
            f"Cancel reference: {batch_id}\n\n"
            "(Without action, automatic payment will proceed)"
        )
        return self._enqueue(
            NotificationKind.BATCH_SCHEDULED,
            recipient=self.admin_email,
            subject=f"[{self.site_name}] Payout Batch Scheduled",
            body=body,
            payload={
                "batch_id": batch_id,
                "vendor_count": vendor_count,
                "total_amount": str(to_money(total_amount)),
                "scheduled_at": scheduled_at.isoformat(),
                "cancel_reference": batch_id,
                "cancel_url": cancel_url,
            },
        )

    def batch_completed(
        self,
        batch_id: str,
        processed_count: int,
        failed_count: int,
        total_paid: Decimal,
        needs_reconciliation: list[str] | None = None,
    ) -> Notifications:
        body = (
            "Payout batch completed:\n\n"
            f"- Processed: {processed_count} payouts\n"
            f"- Failed: {failed_count} payouts\n"
            f"- Total amount: {format_amount(total_paid, self.currency)}\n"
        )
        if needs_reconciliation:
            body += (
                "\nManual reconciliation required for: "
                + ", ".join(needs_reconciliation)
                + "\n"
            )
        body += "\nView details in admin dashboard."
        return self._enqueue(
            NotificationKind.BATCH_COMPLETED,
            recipient=self.admin_email,
            subject=f"[{self.site_name}] Payout Batch Completed",
            body=body,
            payload={
                "batch_id": batch_id,
                "processed_count": processed_count,
                "failed_count": failed_count,
                "total_amount": str(to_money(total_paid)),
                "needs_reconciliation": list(needs_reconciliation or []),
            },
        )

    # ------------------------------------------------------------------
    # Payee
    # ------------------------------------------------------------------

    def payout_confirmation(
        self,
        recipient: str,
        display_name: str,
        payee_id: str,
        amount: Decimal,
        period_start: date,
        period_end: date,
        payout_ref: str,
    ) -> Notifications:
        formatted = format_amount(amount, self.currency)
        body = (
            f"Dear {display_name or payee_id},\n\n"
            f"Your royalties of {formatted} for period {period_start.isoformat()} "
            f"to {period_end.isoformat()} have been transferred.\n"
            f"Payout reference: {payout_ref}\n"
            "Expected in your bank account: 1-2 business days.\n\n"
            f"Best regards,\n{self.site_name} Team"
        )
        return self._enqueue(
            NotificationKind.PAYOUT_CONFIRMATION,
            recipient=recipient,
            subject=f"Your royalty payment of {formatted} has been processed",
            body=body,
            payload={
                "payee_id": payee_id,
                "amount": str(to_money(amount)),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "payout_ref": payout_ref,
            },
        )

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def pending(self, limit: int = 100) -> list[Notifications]:
        stmt: Select[tuple[Notifications]] = (
            select(Notifications)
            .where(Notifications.status == NotificationStatus.PENDING)
            .order_by(Notifications.created_at, Notifications.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, notification_id: str) -> Notifications | None:
        return self.session.get(Notifications, notification_id)

    def mark_sent(self, notification_id: str) -> bool:
        """Record delivery. False when unknown or already sent."""
        note = self.session.get(Notifications, notification_id)
        if note is None or note.status == NotificationStatus.SENT:
            return False
        note.status = NotificationStatus.SENT
        note.sent_at = self.clock.now()
        self.session.flush()
        return True

    def _enqueue(
        self,
        kind: NotificationKind,
        recipient: str,
        subject: str,
        body: str,
        payload: dict[str, Any],
    ) -> Notifications:
        note = Notifications(
            id=new_id(),
            kind=kind,
            recipient=recipient,
            subject=subject,
            body=body,
            payload=payload,
            status=NotificationStatus.PENDING,
            created_at=self.clock.now(),
        )
        self.session.add(note)
        self.session.flush()
        logger.info("Notification queued", kind=kind.value, recipient=recipient)
        return note

    @staticmethod
    def to_dict(note: Notifications) -> NotificationDict:
        return {
            "id": note.id,
            "kind": note.kind.value,
            "recipient": note.recipient,
            "subject": note.subject,
            "body": note.body,
            "payload": dict(note.payload or {}),
            "status": note.status.value,
            "created_at": iso(ensure_utc(note.created_at)) or "",
            "sent_at": iso(ensure_utc(note.sent_at)),
        }

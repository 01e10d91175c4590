"""Sale ingestion: completed sales become royalty ledger entries."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy.orm import Session

from royalties.services._helpers import to_money
from royalties.services.calculator import Promo, RoyaltyDraft, compute_royalty
from royalties.services.clock import Clock, SystemClock
from royalties.services.errors import ValidationError
from royalties.services.ledger import RoyaltyLedger

logger = structlog.get_logger(__name__)


@dataclass
class SaleItem:
    item_id: str
    payee_id: str
    net_price_before_tax: Decimal
    promo: Promo | None = None


@dataclass
class SaleCompleted:
    sale_id: str
    sale_date: date
    items: list[SaleItem]


@dataclass
class SaleIngestionResult:
    sale_id: str
    entry_ids: list[str] = field(default_factory=list)
    created: int = 0
    duplicates: int = 0
    total_royalty: Decimal = Decimal("0.00")


class SaleIngestionService:
    """Calculator plus ledger append, all-or-nothing per sale and idempotent per item."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self.session: Session = session
        self.clock: Clock = clock or SystemClock()
        self.ledger: RoyaltyLedger = RoyaltyLedger(session)

    def record_sale(self, event: SaleCompleted) -> SaleIngestionResult:
        self._validate(event)

        # Price every item before writing anything so a bad item rejects the whole sale.
        drafts: list[tuple[SaleItem, RoyaltyDraft]] = [
            (item, compute_royalty(item.net_price_before_tax, item.promo, event.sale_date))
            for item in event.items
        ]

        result = SaleIngestionResult(sale_id=event.sale_id)
        now = self.clock.now()
        with self.session.begin_nested():
            for item, draft in drafts:
                appended = self.ledger.append(
                    draft,
                    sale_id=event.sale_id,
                    item_id=item.item_id,
                    payee_id=item.payee_id,
                    sale_date=event.sale_date,
                    created_at=now,
                )
                result.entry_ids.append(appended.entry_id)
                if appended.created:
                    result.created += 1
                    result.total_royalty += draft.royalty_amount
                else:
                    result.duplicates += 1

        result.total_royalty = to_money(result.total_royalty)
        logger.info(
            "Sale recorded",
            sale_id=event.sale_id,
            items=len(event.items),
            created=result.created,
            duplicates=result.duplicates,
            total_royalty=str(result.total_royalty),
        )
        return result

    @staticmethod
    def _validate(event: SaleCompleted) -> None:
        if not (event.sale_id or "").strip():
            raise ValidationError("sale_id is required")
        if not event.items:
            raise ValidationError(f"Sale {event.sale_id} has no items")
        seen: set[str] = set()
        for item in event.items:
            if not (item.item_id or "").strip():
                raise ValidationError(f"Sale {event.sale_id}: item_id is required")
            if not (item.payee_id or "").strip():
                raise ValidationError(f"Sale {event.sale_id}: item {item.item_id} has no payee_id")
            if item.item_id in seen:
                raise ValidationError(f"Sale {event.sale_id}: duplicate item {item.item_id}")
            seen.add(item.item_id)

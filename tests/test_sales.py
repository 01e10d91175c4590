"""Tests for royalties.services.sales."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import RoyaltyEntries
from royalties.services.calculator import Promo
from royalties.services.clock import FixedClock
from royalties.services.errors import ValidationError
from royalties.services.sales import SaleCompleted, SaleIngestionService, SaleItem

SALE_DAY: date = date(2025, 3, 3)


def _sale(*items: SaleItem, sale_id: str = "sale-1") -> SaleCompleted:
    return SaleCompleted(sale_id=sale_id, sale_date=SALE_DAY, items=list(items))


def _item(item_id: str, payee_id: str, price: str, promo: Promo | None = None) -> SaleItem:
    return SaleItem(
        item_id=item_id, payee_id=payee_id, net_price_before_tax=Decimal(price), promo=promo
    )


def _count(session: Session) -> int:
    return session.scalar(select(func.count()).select_from(RoyaltyEntries)) or 0


class TestRecordSale:
    def test_one_entry_per_item(self, session: Session, clock: FixedClock) -> None:
        service = SaleIngestionService(session, clock)
        result = service.record_sale(
            _sale(_item("book-1", "author-a", "10.00"), _item("book-2", "author-b", "3.00"))
        )

        assert result.created == 2
        assert result.duplicates == 0
        # 10.00 at 70% plus 3.00 at 75%
        assert result.total_royalty == Decimal("9.25")
        assert _count(session) == 2

    def test_promo_recorded_on_entry(self, session: Session, clock: FixedClock) -> None:
        promo = Promo(discount_percent=Decimal(10), end_date=date(2025, 3, 31))
        result = SaleIngestionService(session, clock).record_sale(
            _sale(_item("book-1", "author-a", "5.00", promo))
        )

        entry = session.get(RoyaltyEntries, result.entry_ids[0])
        assert entry.net_price_before_promo == Decimal("5.00")
        assert entry.promo_discount_percent == Decimal(10)
        assert entry.net_price == Decimal("4.50")
        assert entry.royalty_amount == Decimal("3.38")
        assert entry.sale_date == SALE_DAY

    def test_replay_is_idempotent(self, session: Session, clock: FixedClock) -> None:
        service = SaleIngestionService(session, clock)
        event = _sale(_item("book-1", "author-a", "10.00"))

        first = service.record_sale(event)
        second = service.record_sale(event)

        assert second.created == 0
        assert second.duplicates == 1
        assert second.entry_ids == first.entry_ids
        assert second.total_royalty == Decimal("0.00")
        assert _count(session) == 1

    def test_bad_item_rejects_whole_sale(self, session: Session, clock: FixedClock) -> None:
        service = SaleIngestionService(session, clock)

        with pytest.raises(ValidationError):
            service.record_sale(
                _sale(_item("book-1", "author-a", "10.00"), _item("book-2", "author-b", "-1.00"))
            )
        assert _count(session) == 0


class TestValidation:
    @pytest.mark.parametrize(
        "event",
        [
            SaleCompleted(sale_id="", sale_date=SALE_DAY, items=[_item("b", "a", "1.00")]),
            SaleCompleted(sale_id="sale-1", sale_date=SALE_DAY, items=[]),
            _sale(_item("", "author-a", "1.00")),
            _sale(_item("book-1", " ", "1.00")),
            _sale(_item("book-1", "author-a", "1.00"), _item("book-1", "author-b", "2.00")),
        ],
        ids=["no-sale-id", "no-items", "no-item-id", "no-payee", "duplicate-item"],
    )
    def test_rejected(self, session: Session, clock: FixedClock, event: SaleCompleted) -> None:
        with pytest.raises(ValidationError):
            SaleIngestionService(session, clock).record_sale(event)
        assert _count(session) == 0

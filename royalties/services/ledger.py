"""Royalty ledger: durable per-sale royalty entries and their settlement."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Sequence

import structlog
from sqlalchemy import ColumnElement, Select, and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.enums import RoyaltyStatus
from db.models import RoyaltyEntries
from royalties.services._helpers import ensure_utc, iso, new_id, start_of_day, to_money
from royalties.services._types import EarningsSummaryDict, MonthlyEarningsDict, RoyaltyEntryDict
from royalties.services.calculator import RoyaltyDraft

logger = structlog.get_logger(__name__)


@dataclass
class AppendResult:
    entry_id: str
    created: bool


@dataclass
class PendingPayeeTotal:
    payee_id: str
    total_pending: Decimal
    entry_count: int
    oldest_entry_at: datetime


def _window_conditions(
    window_start: datetime | None, window_end: datetime
) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = [RoyaltyEntries.created_at < window_end]
    if window_start is not None:
        conditions.append(RoyaltyEntries.created_at >= window_start)
    return conditions


def _month_start(day: date, months_back: int = 0) -> date:
    index = day.year * 12 + (day.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


class RoyaltyLedger:
    """
    Data access for royalty entries.

    Every query takes explicit time bounds. Windows are closed-then-open:
    ``window_start <= created_at < window_end``.
    """

    def __init__(self, session: Session) -> None:
        self.session: Session = session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        draft: RoyaltyDraft,
        *,
        sale_id: str,
        item_id: str,
        payee_id: str,
        sale_date: date,
        created_at: datetime,
    ) -> AppendResult:
        """Store one entry; a replay of the same (sale_id, item_id) returns the existing id."""
        existing = self.get_by_sale_item(sale_id, item_id)
        if existing is not None:
            logger.debug("Royalty entry already recorded", sale_id=sale_id, item_id=item_id)
            return AppendResult(entry_id=existing.id, created=False)

        entry = RoyaltyEntries(
            id=new_id(),
            sale_id=sale_id,
            item_id=item_id,
            payee_id=payee_id,
            net_price_before_promo=draft.net_price_before_promo,
            promo_discount_percent=draft.promo_discount_percent,
            net_price=to_money(draft.net_price),
            royalty_percent=draft.royalty_percent,
            # Recomputed from the stored price and percent, never taken from the caller.
            royalty_amount=to_money(to_money(draft.net_price) * draft.royalty_percent / 100),
            status=RoyaltyStatus.PENDING,
            sale_date=sale_date,
            created_at=created_at,
            updated_at=created_at,
        )
        try:
            with self.session.begin_nested():
                self.session.add(entry)
        except IntegrityError:
            # Lost a race with a concurrent delivery of the same event.
            existing = self.get_by_sale_item(sale_id, item_id)
            if existing is None:
                raise
            return AppendResult(entry_id=existing.id, created=False)
        return AppendResult(entry_id=entry.id, created=True)

    def mark_paid(
        self,
        payee_id: str,
        payout_ref: str,
        window_start: datetime | None,
        window_end: datetime,
        settled_at: datetime,
        entry_ids: Sequence[str] | None = None,
    ) -> int:
        """
        Move pending entries in the window to paid. Returns count updated.

        With ``entry_ids`` only those entries are settled.
        """
        conditions: list[ColumnElement[bool]] = [
            RoyaltyEntries.payee_id == payee_id,
            RoyaltyEntries.status == RoyaltyStatus.PENDING,
            *_window_conditions(window_start, window_end),
        ]
        if entry_ids is not None:
            if not entry_ids:
                return 0
            conditions.append(RoyaltyEntries.id.in_(list(entry_ids)))
        stmt = (
            update(RoyaltyEntries)
            .where(and_(*conditions))
            .values(
                status=RoyaltyStatus.PAID,
                payout_ref=payout_ref,
                settled_at=settled_at,
                updated_at=settled_at,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.flush()
        self.session.expire_all()
        return result.rowcount

    def mark_failed(self, entry_ids: Sequence[str], reason: str) -> int:
        """Move pending entries to failed. Returns count updated."""
        if not entry_ids:
            return 0
        stmt = (
            update(RoyaltyEntries)
            .where(
                and_(
                    RoyaltyEntries.id.in_(list(entry_ids)),
                    RoyaltyEntries.status == RoyaltyStatus.PENDING,
                )
            )
            .values(status=RoyaltyStatus.FAILED, failure_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.flush()
        self.session.expire_all()
        return result.rowcount

    def requeue_failed(self, entry_ids: Sequence[str]) -> int:
        """Put failed entries back to pending for the next cycle."""
        if not entry_ids:
            return 0
        stmt = (
            update(RoyaltyEntries)
            .where(
                and_(
                    RoyaltyEntries.id.in_(list(entry_ids)),
                    RoyaltyEntries.status == RoyaltyStatus.FAILED,
                )
            )
            .values(status=RoyaltyStatus.PENDING, failure_reason=None)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.flush()
        self.session.expire_all()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entry_id: str) -> RoyaltyEntries | None:
        return self.session.get(RoyaltyEntries, entry_id)

    def get_by_sale_item(self, sale_id: str, item_id: str) -> RoyaltyEntries | None:
        stmt: Select[tuple[RoyaltyEntries]] = select(RoyaltyEntries).where(
            and_(RoyaltyEntries.sale_id == sale_id, RoyaltyEntries.item_id == item_id)
        )
        return self.session.scalar(stmt)

    def sum_pending(
        self,
        payee_id: str,
        as_of: datetime,
        window_start: datetime | None,
        window_end: datetime,
    ) -> Decimal:
        """Pending total for a payee inside the window, capped at ``as_of``."""
        stmt = select(func.sum(RoyaltyEntries.royalty_amount)).where(
            and_(
                RoyaltyEntries.payee_id == payee_id,
                RoyaltyEntries.status == RoyaltyStatus.PENDING,
                RoyaltyEntries.created_at <= as_of,
                *_window_conditions(window_start, window_end),
            )
        )
        return to_money(self.session.scalar(stmt))

    def pending_entries(
        self, payee_id: str, window_end: datetime, window_start: datetime | None = None
    ) -> list[tuple[str, Decimal]]:
        """(id, royalty_amount) of a payee's pending entries in the window, oldest first."""
        stmt = (
            select(RoyaltyEntries.id, RoyaltyEntries.royalty_amount)
            .where(
                and_(
                    RoyaltyEntries.payee_id == payee_id,
                    RoyaltyEntries.status == RoyaltyStatus.PENDING,
                    *_window_conditions(window_start, window_end),
                )
            )
            .order_by(RoyaltyEntries.created_at, RoyaltyEntries.id)
        )
        rows = self.session.execute(stmt).all()
        return [(entry_id, to_money(amount)) for entry_id, amount in rows]

    def still_pending(self, entry_ids: Sequence[str]) -> set[str]:
        """Subset of ``entry_ids`` whose entries are still pending."""
        if not entry_ids:
            return set()
        stmt = select(RoyaltyEntries.id).where(
            and_(
                RoyaltyEntries.id.in_(list(entry_ids)),
                RoyaltyEntries.status == RoyaltyStatus.PENDING,
            )
        )
        return set(self.session.scalars(stmt).all())

    def pending_by_payee(
        self, window_end: datetime, window_start: datetime | None = None
    ) -> list[PendingPayeeTotal]:
        """Pending totals grouped per payee, oldest-waiting payee first."""
        oldest = func.min(RoyaltyEntries.created_at)
        stmt = (
            select(
                RoyaltyEntries.payee_id,
                func.sum(RoyaltyEntries.royalty_amount),
                func.count(RoyaltyEntries.id),
                oldest,
            )
            .where(
                and_(
                    RoyaltyEntries.status == RoyaltyStatus.PENDING,
                    *_window_conditions(window_start, window_end),
                )
            )
            .group_by(RoyaltyEntries.payee_id)
            .order_by(oldest, RoyaltyEntries.payee_id)
        )
        rows: list[PendingPayeeTotal] = []
        for payee_id, total, count, oldest_at in self.session.execute(stmt).all():
            # func.min over a DateTime column can come back as text on SQLite.
            if isinstance(oldest_at, str):
                oldest_at = datetime.fromisoformat(oldest_at)
            rows.append(
                PendingPayeeTotal(
                    payee_id=payee_id,
                    total_pending=to_money(total),
                    entry_count=int(count),
                    oldest_entry_at=ensure_utc(oldest_at),
                )
            )
        return rows

    def list_entries(
        self,
        payee_id: str | None = None,
        status: RoyaltyStatus | None = None,
        sale_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[RoyaltyEntryDict]:
        conditions: list[ColumnElement[bool]] = []
        if payee_id:
            conditions.append(RoyaltyEntries.payee_id == payee_id)
        if status:
            conditions.append(RoyaltyEntries.status == status)
        if sale_id:
            conditions.append(RoyaltyEntries.sale_id == sale_id)

        stmt: Select[tuple[RoyaltyEntries]] = select(RoyaltyEntries)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(RoyaltyEntries.created_at.desc()).offset(offset).limit(limit)
        return [self._to_dict(e) for e in self.session.scalars(stmt).all()]

    def earnings_summary(
        self, payee_id: str, as_of: datetime, eligibility_cutoff: datetime
    ) -> EarningsSummaryDict:
        """Dashboard totals for one payee."""
        year_start = start_of_day(date(as_of.year, 1, 1))

        eligible = self.sum_pending(payee_id, as_of, None, eligibility_cutoff)
        maturing = self._sum(
            payee_id,
            and_(
                RoyaltyEntries.created_at >= eligibility_cutoff,
                RoyaltyEntries.created_at <= as_of,
            ),
            pending_only=True,
        )
        total_year = self._sum(
            payee_id,
            and_(RoyaltyEntries.created_at >= year_start, RoyaltyEntries.created_at <= as_of),
        )
        items_sold = self.session.scalar(
            select(func.count(func.distinct(RoyaltyEntries.item_id))).where(
                and_(
                    RoyaltyEntries.payee_id == payee_id,
                    RoyaltyEntries.created_at >= year_start,
                    RoyaltyEntries.created_at <= as_of,
                )
            )
        )
        return {
            "payee_id": payee_id,
            "eligible_pending": str(eligible),
            "maturing_pending": str(maturing),
            "total_year": str(total_year),
            "items_sold_year": int(items_sold or 0),
            "eligibility_cutoff": eligibility_cutoff.isoformat(),
            "monthly": self.monthly_earnings(payee_id, as_of.date()),
        }

    def monthly_earnings(
        self, payee_id: str, as_of: date, months: int = 12
    ) -> list[MonthlyEarningsDict]:
        """Royalty totals and item counts for the last ``months`` calendar months."""
        out: list[MonthlyEarningsDict] = []
        for back in range(months - 1, -1, -1):
            month_start = _month_start(as_of, back)
            next_start = _month_start(as_of, back - 1)
            bounds = and_(
                RoyaltyEntries.payee_id == payee_id,
                RoyaltyEntries.created_at >= start_of_day(month_start),
                RoyaltyEntries.created_at < start_of_day(next_start),
            )
            total, count = self.session.execute(
                select(func.sum(RoyaltyEntries.royalty_amount), func.count(RoyaltyEntries.id))
                .where(bounds)
            ).one()
            out.append(
                {
                    "month": month_start.strftime("%Y-%m"),
                    "royalties": str(to_money(total)),
                    "items_sold": int(count or 0),
                }
            )
        return out

    def count_by_status(self, payee_id: str | None = None) -> dict[str, int]:
        stmt = select(RoyaltyEntries.status, func.count()).group_by(RoyaltyEntries.status)
        if payee_id:
            stmt = stmt.where(RoyaltyEntries.payee_id == payee_id)
        return {status.value: count for status, count in self.session.execute(stmt).all()}

    def _sum(
        self, payee_id: str, condition: ColumnElement[bool], pending_only: bool = False
    ) -> Decimal:
        conditions = [RoyaltyEntries.payee_id == payee_id, condition]
        if pending_only:
            conditions.append(RoyaltyEntries.status == RoyaltyStatus.PENDING)
        stmt = select(func.sum(RoyaltyEntries.royalty_amount)).where(and_(*conditions))
        return to_money(self.session.scalar(stmt))

    @staticmethod
    def _to_dict(e: RoyaltyEntries) -> RoyaltyEntryDict:
        return {
            "id": e.id,
            "sale_id": e.sale_id,
            "item_id": e.item_id,
            "payee_id": e.payee_id,
            "net_price_before_promo": str(to_money(e.net_price_before_promo)),
            "promo_discount_percent": (
                str(e.promo_discount_percent) if e.promo_discount_percent is not None else None
            ),
            "net_price": str(to_money(e.net_price)),
            "royalty_percent": str(e.royalty_percent),
            "royalty_amount": str(to_money(e.royalty_amount)),
            "status": e.status.value,
            "payout_ref": e.payout_ref,
            "settled_at": iso(ensure_utc(e.settled_at)),
            "sale_date": e.sale_date.isoformat(),
            "created_at": iso(ensure_utc(e.created_at)) or "",
        }

"""Eligibility aggregation: which payees are owed a payout this cycle."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from db.models import PayeeAccounts
from royalties.services._helpers import start_of_day, to_money
from royalties.services._types import SnapshotEntryDict
from royalties.services.clock import Clock, SystemClock
from royalties.services.errors import GatewayError, ValidationError
from royalties.services.gateway import PaymentGateway
from royalties.services.ledger import RoyaltyLedger
from royalties.services.payout_calendar import next_payout_date

logger = structlog.get_logger(__name__)


@dataclass
class PayeeSummary:
    payee_id: str
    total_pending: Decimal
    entry_count: int
    oldest_entry_date: datetime
    remote_account_id: str
    window_end: datetime
    entry_ids: list[str] = field(default_factory=list)

    def to_snapshot(self) -> SnapshotEntryDict:
        return {
            "payee_id": self.payee_id,
            "total_pending": str(self.total_pending),
            "entry_count": self.entry_count,
            "oldest_entry_date": self.oldest_entry_date.isoformat(),
            "remote_account_id": self.remote_account_id,
            "window_end": self.window_end.isoformat(),
            "entry_ids": list(self.entry_ids),
        }

    @classmethod
    def from_snapshot(cls, data: SnapshotEntryDict) -> "PayeeSummary":
        return cls(
            payee_id=data["payee_id"],
            total_pending=to_money(data["total_pending"]),
            entry_count=int(data["entry_count"]),
            oldest_entry_date=datetime.fromisoformat(data["oldest_entry_date"]),
            remote_account_id=data["remote_account_id"],
            window_end=datetime.fromisoformat(data["window_end"]),
            entry_ids=list(data["entry_ids"]),
        )


@dataclass
class PayoutPreview:
    payees: list[PayeeSummary]
    vendor_count: int
    total_amount: Decimal
    next_payout_date: date
    eligibility_cutoff: datetime


def eligibility_cutoff(today: date, window_months_ago: int) -> datetime:
    """
    Exclusive upper bound for eligible entries.

    Entries created on or before the last day of the month ``window_months_ago``
    months before ``today`` qualify, so the bound is midnight on the first day
    of the month after that one.
    """
    if window_months_ago < 1:
        raise ValidationError(f"window_months_ago must be >= 1, got {window_months_ago}")
    index = today.year * 12 + (today.month - 1) - (window_months_ago - 1)
    return start_of_day(date(index // 12, index % 12 + 1, 1))


class EligibilityAggregator:
    """Read-only aggregation of pending royalties per payee."""

    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway,
        clock: Clock | None = None,
    ) -> None:
        self.session: Session = session
        self.gateway: PaymentGateway = gateway
        self.clock: Clock = clock or SystemClock()
        self.ledger: RoyaltyLedger = RoyaltyLedger(session)

    def compute_eligible_payees(
        self,
        window_months_ago: int | None = None,
        min_amount: Decimal | None = None,
    ) -> list[PayeeSummary]:
        """
        Payees whose matured pending royalties reach ``min_amount``.

        Only payees with a remote account that the processor currently reports
        as payout-enabled are kept. A failed status lookup drops that payee and
        the pass carries on. Oldest waiting payee comes first.
        """
        payout_settings = get_settings().payout
        months = (
            window_months_ago
            if window_months_ago is not None
            else payout_settings.aging_window_months
        )
        threshold = to_money(
            min_amount if min_amount is not None else payout_settings.minimum_amount
        )
        cutoff = eligibility_cutoff(self.clock.today(), months)

        totals = self.ledger.pending_by_payee(window_end=cutoff)
        if not totals:
            return []

        accounts = self._accounts([t.payee_id for t in totals])
        eligible: list[PayeeSummary] = []

        for row in totals:
            if row.total_pending < threshold:
                continue

            account = accounts.get(row.payee_id)
            remote_id = (account.remote_account_id or "").strip() if account else ""
            if not remote_id:
                logger.info("Payee has no remote account, skipping", payee_id=row.payee_id)
                continue

            try:
                status = self.gateway.get_account_status(remote_id)
            except GatewayError as e:
                logger.warning(
                    "Account status check failed, excluding payee",
                    payee_id=row.payee_id,
                    remote_account_id=remote_id,
                    error=str(e),
                )
                continue

            if not status.payouts_enabled:
                logger.info("Payouts not enabled for payee", payee_id=row.payee_id)
                continue

            # the snapshot pins the exact entries; totals are taken from them
            entries = self.ledger.pending_entries(row.payee_id, window_end=cutoff)
            total = to_money(sum((amount for _, amount in entries), Decimal("0")))
            if total < threshold:
                continue

            eligible.append(
                PayeeSummary(
                    payee_id=row.payee_id,
                    total_pending=total,
                    entry_count=len(entries),
                    oldest_entry_date=row.oldest_entry_at,
                    remote_account_id=remote_id,
                    window_end=cutoff,
                    entry_ids=[entry_id for entry_id, _ in entries],
                )
            )

        eligible.sort(key=lambda s: (s.oldest_entry_date, s.payee_id))
        logger.info(
            "Eligibility computed",
            cutoff=cutoff.isoformat(),
            candidates=len(totals),
            eligible=len(eligible),
        )
        return eligible

    def preview(
        self,
        window_months_ago: int | None = None,
        min_amount: Decimal | None = None,
    ) -> PayoutPreview:
        months = window_months_ago
        if months is None:
            months = get_settings().payout.aging_window_months
        payees = self.compute_eligible_payees(months, min_amount)
        return PayoutPreview(
            payees=payees,
            vendor_count=len(payees),
            total_amount=to_money(sum((p.total_pending for p in payees), Decimal("0"))),
            next_payout_date=next_payout_date(self.clock.today()),
            eligibility_cutoff=eligibility_cutoff(self.clock.today(), months),
        )

    def _accounts(self, payee_ids: list[str]) -> dict[str, PayeeAccounts]:
        stmt = select(PayeeAccounts).where(PayeeAccounts.payee_id.in_(payee_ids))
        return {a.payee_id: a for a in self.session.scalars(stmt).all()}

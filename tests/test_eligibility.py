"""Tests for royalties.services.eligibility."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from royalties.services.clock import FixedClock
from royalties.services.eligibility import (
    EligibilityAggregator,
    PayeeSummary,
    PayoutPreview,
    eligibility_cutoff,
)
from royalties.services.errors import ValidationError
from royalties.services.ledger import RoyaltyLedger
from tests.conftest import FakeGateway, seed_entry, seed_payee

OLD: datetime = datetime(2024, 11, 5, 10, 0, tzinfo=UTC)
DEC_END: datetime = datetime(2024, 12, 31, 23, 59, tzinfo=UTC)
JAN: datetime = datetime(2025, 1, 2, 8, 0, tzinfo=UTC)


class TestCutoff:
    def test_three_months_means_end_of_month_three_back(self) -> None:
        assert eligibility_cutoff(date(2025, 3, 3), 3) == datetime(2025, 1, 1, tzinfo=UTC)

    def test_crosses_year_boundary(self) -> None:
        assert eligibility_cutoff(date(2025, 1, 15), 3) == datetime(2024, 11, 1, tzinfo=UTC)

    def test_one_month_means_end_of_last_month(self) -> None:
        assert eligibility_cutoff(date(2025, 3, 31), 1) == datetime(2025, 3, 1, tzinfo=UTC)

    def test_window_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            eligibility_cutoff(date(2025, 3, 3), 0)


class TestComputeEligiblePayees:
    def test_threshold_and_window(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        seed_payee(session, "author-b", "acct_b", gateway=gateway)
        seed_entry(session, "author-a", "30.00", OLD)  # 15.00
        seed_entry(session, "author-b", "20.00", DEC_END)  # 10.00, below minimum
        seed_entry(session, "author-b", "30.00", JAN)  # too recent

        payees = EligibilityAggregator(session, gateway, clock).compute_eligible_payees(3, Decimal("15.00"))

        assert [p.payee_id for p in payees] == ["author-a"]
        assert payees[0].total_pending == Decimal("15.00")
        assert payees[0].remote_account_id == "acct_a"
        assert payees[0].window_end == datetime(2025, 1, 1, tzinfo=UTC)

    def test_summary_pins_matured_entry_ids(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        newer = seed_entry(session, "author-a", "30.00", DEC_END, item_id="b")
        older = seed_entry(session, "author-a", "30.00", OLD, item_id="a")
        seed_entry(session, "author-a", "30.00", JAN, item_id="c")  # too recent

        [payee] = EligibilityAggregator(session, gateway, clock).compute_eligible_payees(3, Decimal("15.00"))

        assert payee.entry_ids == [older, newer]
        assert payee.entry_count == 2
        assert payee.total_pending == Decimal("30.00")
        assert payee.to_snapshot()["entry_ids"] == [older, newer]

    def test_entry_on_last_day_of_window_counts(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        seed_entry(session, "author-a", "30.00", DEC_END)

        payees = EligibilityAggregator(session, gateway, clock).compute_eligible_payees(3, Decimal("15.00"))
        assert [p.payee_id for p in payees] == ["author-a"]

    def test_ordered_by_oldest_entry(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        for pid in ("author-a", "author-b", "author-c"):
            seed_payee(session, pid, f"acct_{pid}", gateway=gateway)
        seed_entry(session, "author-a", "30.00", DEC_END)
        seed_entry(session, "author-b", "30.00", OLD)
        seed_entry(session, "author-c", "30.00", datetime(2024, 12, 1, tzinfo=UTC))

        payees = EligibilityAggregator(session, gateway, clock).compute_eligible_payees(3, Decimal("15.00"))
        assert [p.payee_id for p in payees] == ["author-b", "author-c", "author-a"]

    def test_requires_remote_account_and_live_payouts_enabled(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        seed_payee(session, "no-account")
        seed_payee(session, "disabled", "acct_disabled")
        gateway.enable("acct_disabled", payouts_enabled=False)
        seed_payee(session, "ok", "acct_ok", gateway=gateway)
        for pid in ("no-account", "disabled", "ok", "unknown-payee"):
            seed_entry(session, pid, "30.00", OLD)

        payees = EligibilityAggregator(session, gateway, clock).compute_eligible_payees(3, Decimal("15.00"))
        assert [p.payee_id for p in payees] == ["ok"]

    def test_gateway_failure_excludes_only_that_payee(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        seed_payee(session, "author-b", "acct_b", gateway=gateway)
        seed_entry(session, "author-a", "30.00", OLD)
        seed_entry(session, "author-b", "30.00", OLD)
        gateway.failing_status.add("acct_a")

        payees = EligibilityAggregator(session, gateway, clock).compute_eligible_payees(3, Decimal("15.00"))
        assert [p.payee_id for p in payees] == ["author-b"]

    def test_paid_entries_do_not_count(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        seed_entry(session, "author-a", "30.00", OLD)
        RoyaltyLedger(session).mark_paid("author-a", "po_old", None, JAN, JAN)

        assert EligibilityAggregator(session, gateway, clock).compute_eligible_payees(3, Decimal("15.00")) == []

    def test_is_read_only(self, session: Session, gateway: FakeGateway, clock: FixedClock) -> None:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        seed_entry(session, "author-a", "30.00", OLD)
        aggregator = EligibilityAggregator(session, gateway, clock)

        first = aggregator.compute_eligible_payees(3, Decimal("15.00"))
        second = aggregator.compute_eligible_payees(3, Decimal("15.00"))
        assert first == second
        assert gateway.payouts == []


class TestPreview:
    def test_preview_totals_reconcile(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        seed_payee(session, "author-b", "acct_b", gateway=gateway)
        seed_entry(session, "author-a", "30.00", OLD)
        seed_entry(session, "author-b", "40.00", OLD)  # 20.00

        preview: PayoutPreview = EligibilityAggregator(session, gateway, clock).preview(3, Decimal("15.00"))

        assert preview.vendor_count == 2
        assert preview.total_amount == Decimal("35.00")
        assert preview.total_amount == sum(p.total_pending for p in preview.payees)
        assert preview.next_payout_date == date(2025, 3, 3)

    def test_snapshot_round_trip_keeps_window(self) -> None:
        summary = PayeeSummary(
            payee_id="author-a",
            total_pending=Decimal("15.00"),
            entry_count=2,
            oldest_entry_date=OLD,
            remote_account_id="acct_a",
            window_end=datetime(2025, 1, 1, tzinfo=UTC),
            entry_ids=["e-1", "e-2"],
        )
        assert PayeeSummary.from_snapshot(summary.to_snapshot()) == summary

"""Tests for royalties.services.jobs and the worker-facing AppContext paths."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from db.enums import BatchStatus, JobStatus, JobType, RoyaltyStatus
from db.models import PayoutBatches, RoyaltyEntries
from royalties.context import AppContext, CancelBatch, TriggerPayout
from royalties.services.clock import FixedClock
from royalties.services.jobs import JobQueue, JobRunner
from royalties.services.sales import SaleCompleted, SaleItem
from tests.conftest import PAYOUT_DAY, FakeGateway, seed_entry, seed_payee

OLD: datetime = datetime(2024, 11, 5, 10, 0, tzinfo=UTC)


def _schedule(
    factory: sessionmaker[Session], clock: FixedClock, job_type: str = "echo", **payload: Any
) -> str:
    with factory() as session:
        job = JobQueue(session, clock).schedule(job_type, payload, run_at=clock.now())
        session.commit()
        return job.id


def _job(factory: sessionmaker[Session], job_id: str):
    with factory() as session:
        return JobQueue(session).get(job_id)


class TestJobQueue:
    def test_claim_takes_lease_once(self, session: Session, clock: FixedClock) -> None:
        queue = JobQueue(session, clock)
        job = queue.schedule("echo", {"n": 1}, run_at=clock.now())

        [claimed] = queue.claim_due(lease_seconds=60)
        assert claimed.id == job.id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.attempts == 1
        assert queue.claim_due(lease_seconds=60) == []

    def test_expired_lease_is_redelivered(self, session: Session, clock: FixedClock) -> None:
        queue = JobQueue(session, clock)
        job = queue.schedule("echo", {}, run_at=clock.now())
        queue.claim_due(lease_seconds=60)

        clock.advance(seconds=61)
        [again] = queue.claim_due(lease_seconds=60)
        assert again.id == job.id
        assert again.attempts == 2

    def test_renewed_lease_is_not_redelivered(self, session: Session, clock: FixedClock) -> None:
        queue = JobQueue(session, clock)
        queue.schedule("echo", {}, run_at=clock.now(), dedupe_key="echo:1")
        assert queue.renew_lease(dedupe_key="echo:1") is False  # not running yet
        queue.claim_due(lease_seconds=60)

        clock.advance(seconds=50)
        assert queue.renew_lease(dedupe_key="echo:1", lease_seconds=60) is True
        clock.advance(seconds=50)
        assert queue.claim_due(lease_seconds=60) == []

        clock.advance(seconds=11)
        assert len(queue.claim_due(lease_seconds=60)) == 1

    def test_future_jobs_not_claimed(self, session: Session, clock: FixedClock) -> None:
        queue = JobQueue(session, clock)
        queue.schedule("echo", {}, run_at=clock.now() + timedelta(hours=6))

        assert queue.claim_due() == []
        clock.advance(hours=6)
        assert len(queue.claim_due()) == 1

    def test_dedupe_key_returns_first_job(self, session: Session, clock: FixedClock) -> None:
        queue = JobQueue(session, clock)
        first = queue.schedule("echo", {"n": 1}, run_at=clock.now(), dedupe_key="echo:1")
        second = queue.schedule("echo", {"n": 2}, run_at=clock.now(), dedupe_key="echo:1")

        assert second.id == first.id
        assert len(queue.list_jobs()) == 1

    def test_cancelled_job_never_claimed(self, session: Session, clock: FixedClock) -> None:
        queue = JobQueue(session, clock)
        queue.schedule("echo", {}, run_at=clock.now(), dedupe_key="echo:1")

        assert queue.cancel(dedupe_key="echo:1") is True
        assert queue.cancel(dedupe_key="echo:1") is False
        assert queue.claim_due() == []

    def test_fail_reschedules(self, session: Session, clock: FixedClock) -> None:
        queue = JobQueue(session, clock)
        queue.schedule("echo", {}, run_at=clock.now())
        [job] = queue.claim_due()

        queue.fail(job, "boom", retry_in=timedelta(minutes=5))
        assert job.status == JobStatus.PENDING
        assert job.last_error == "boom"
        assert queue.claim_due() == []
        assert queue.next_run_at() == clock.now() + timedelta(minutes=5)


class TestJobRunner:
    def test_runs_handler_and_marks_done(
        self, session_factory: sessionmaker[Session], clock: FixedClock
    ) -> None:
        job_id = _schedule(session_factory, clock, n=7)
        seen: list[dict[str, Any]] = []

        summary = JobRunner(session_factory, {"echo": seen.append}, clock).run_due()

        assert summary.claimed == 1
        assert summary.completed == 1
        assert seen == [{"n": 7}]
        assert _job(session_factory, job_id).status == JobStatus.DONE

    def test_failed_handler_retries_later(
        self, session_factory: sessionmaker[Session], clock: FixedClock
    ) -> None:
        job_id = _schedule(session_factory, clock)

        def explode(payload: dict[str, Any]) -> None:
            raise ValueError("processor unreachable")

        summary = JobRunner(session_factory, {"echo": explode}, clock).run_due()

        assert summary.failed == 1
        assert summary.errors == ["ValueError: processor unreachable"]
        job = _job(session_factory, job_id)
        assert job.status == JobStatus.PENDING
        assert "processor unreachable" in job.last_error

    def test_unknown_job_type_is_a_failure(
        self, session_factory: sessionmaker[Session], clock: FixedClock
    ) -> None:
        _schedule(session_factory, clock, job_type="mystery")
        summary = JobRunner(session_factory, {}, clock).run_due()
        assert summary.failed == 1


class TestAppContext:
    def _context(
        self, session_factory: sessionmaker[Session], gateway: FakeGateway, clock: FixedClock
    ) -> AppContext:
        return AppContext(
            settings=get_settings(),
            session_factory=session_factory,
            gateway=gateway,
            clock=clock,
            sleep=lambda seconds: None,
        )

    def test_tick_then_jobs_pay_out_after_review_window(
        self, session_factory: sessionmaker[Session], gateway: FakeGateway, clock: FixedClock
    ) -> None:
        with session_factory() as session:
            seed_payee(session, "author-a", "acct_a", gateway=gateway)
            seed_entry(session, "author-a", "40.00", OLD)
            session.commit()
        ctx = self._context(session_factory, gateway, clock)

        triggered = ctx.daily_tick()
        assert triggered is not None and triggered.created is True

        assert ctx.run_due_jobs().claimed == 0
        clock.advance(hours=6)
        summary = ctx.run_due_jobs()
        assert summary.completed == 1

        with session_factory() as session:
            batch = session.get(PayoutBatches, triggered.batch_id)
            assert batch.status == BatchStatus.COMPLETED
            statuses = session.scalars(select(RoyaltyEntries.status)).all()
            assert statuses == [RoyaltyStatus.PAID]
        assert len(gateway.payouts) == 1

    def test_cancel_before_deadline_stops_job(
        self, session_factory: sessionmaker[Session], gateway: FakeGateway, clock: FixedClock
    ) -> None:
        with session_factory() as session:
            seed_payee(session, "author-a", "acct_a", gateway=gateway)
            seed_entry(session, "author-a", "40.00", OLD)
            session.commit()
        ctx = self._context(session_factory, gateway, clock)

        triggered = ctx.dispatch(TriggerPayout(min_amount=Decimal("5.00")))
        ctx.dispatch(CancelBatch(triggered.batch_id))
        clock.advance(hours=6)

        assert ctx.run_due_jobs().claimed == 0
        assert gateway.payouts == []

    def test_process_job_for_unknown_batch_is_dropped(
        self, session_factory: sessionmaker[Session], gateway: FakeGateway, clock: FixedClock
    ) -> None:
        ctx = self._context(session_factory, gateway, clock)
        job_id = _schedule(
            session_factory, clock, job_type=JobType.PROCESS_PAYOUT_BATCH.value, batch_id="gone"
        )

        summary = ctx.run_due_jobs()

        assert summary.completed == 1
        assert _job(session_factory, job_id).status == JobStatus.DONE

    def test_dispatch_sale(
        self, session_factory: sessionmaker[Session], gateway: FakeGateway, clock: FixedClock
    ) -> None:
        ctx = self._context(session_factory, gateway, clock)
        event = SaleCompleted(
            sale_id="sale-1",
            sale_date=date(2025, 3, 3),
            items=[SaleItem(item_id="book-1", payee_id="author-a", net_price_before_tax=Decimal("10.00"))],
        )

        result = ctx.dispatch(event)

        assert result.created == 1
        assert result.total_royalty == Decimal("7.00")
        with session_factory() as session:
            entry = session.scalars(select(RoyaltyEntries)).one()
            assert entry.created_at.replace(tzinfo=UTC) == PAYOUT_DAY

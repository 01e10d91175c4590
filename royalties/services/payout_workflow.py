"""Payout batch workflow: trigger, review window, sequential execution, reconciliation."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal

import structlog
from sqlalchemy import Select, and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from db.enums import BatchStatus, BatchTrigger, JobType, PayoutStatus
from db.models import INFLIGHT_BATCH_KEY, PayeeAccounts, PayoutBatches, PayoutRecords
from royalties.services._helpers import ensure_utc, iso, months_before, new_id, to_money
from royalties.services._types import BatchDict, PayoutRecordDict, PayoutResultDict
from royalties.services.clock import Clock, SystemClock
from royalties.services.eligibility import EligibilityAggregator, PayeeSummary
from royalties.services.errors import (
    ConflictError,
    DataIntegrityError,
    GatewayError,
    InvalidTransitionError,
    NoEligiblePayeesError,
)
from royalties.services.gateway import PaymentGateway, PayoutReceipt
from royalties.services.jobs import JobQueue
from royalties.services.ledger import RoyaltyLedger
from royalties.services.notifications import NotificationService
from royalties.services.payout_calendar import is_payout_day

logger = structlog.get_logger(__name__)

BATCH_TRANSITIONS: dict[BatchStatus, set[BatchStatus]] = {
    BatchStatus.SCHEDULED: {BatchStatus.PROCESSING, BatchStatus.CANCELLED},
    BatchStatus.PROCESSING: {BatchStatus.COMPLETED},
    BatchStatus.COMPLETED: set(),
    BatchStatus.CANCELLED: set(),
}


def assert_batch_transition(old: BatchStatus, new: BatchStatus) -> None:
    if new not in BATCH_TRANSITIONS.get(old, set()):
        raise InvalidTransitionError(f"Illegal batch transition: {old.value} -> {new.value}")


def process_job_key(batch_id: str) -> str:
    return f"{JobType.PROCESS_PAYOUT_BATCH.value}:{batch_id}"


@dataclass
class TriggerResult:
    batch_id: str
    status: BatchStatus
    vendor_count: int
    total_amount: Decimal
    scheduled_at: datetime
    created: bool


@dataclass
class ProcessResult:
    batch_id: str
    status: BatchStatus
    processed_count: int = 0
    failed_count: int = 0
    results: list[PayoutResultDict] = field(default_factory=list)
    ran: bool = True


class PayoutWorkflow:
    """
    Drives one payout batch at a time through its lifecycle.

    ``process_batch`` commits after every payee so a crash mid-batch resumes
    where it stopped; payees already present in ``results`` are skipped and a
    payee whose payout record already exists is reconciled without calling the
    processor again.
    """

    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session: Session = session
        self.gateway: PaymentGateway = gateway
        self.clock: Clock = clock or SystemClock()
        self.sleep = sleep
        self.settings = get_settings()
        self.ledger: RoyaltyLedger = RoyaltyLedger(session)
        self.aggregator: EligibilityAggregator = EligibilityAggregator(session, gateway, self.clock)
        self.jobs: JobQueue = JobQueue(session, self.clock)
        self.notifier: NotificationService = NotificationService(session, self.clock)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_batch(self) -> PayoutBatches | None:
        """The single scheduled or processing batch, if any."""
        return self.session.scalar(
            select(PayoutBatches).where(PayoutBatches.inflight_key == INFLIGHT_BATCH_KEY)
        )

    def get_batch(self, batch_id: str) -> PayoutBatches | None:
        return self.session.get(PayoutBatches, batch_id)

    def list_batches(
        self, status: BatchStatus | None = None, limit: int = 20, offset: int = 0
    ) -> list[PayoutBatches]:
        stmt: Select[tuple[PayoutBatches]] = select(PayoutBatches)
        if status:
            stmt = stmt.where(PayoutBatches.status == status)
        stmt = stmt.order_by(PayoutBatches.created_at.desc()).offset(offset).limit(limit)
        return list(self.session.scalars(stmt).all())

    def list_records(
        self,
        payee_id: str | None = None,
        batch_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[PayoutRecords]:
        stmt: Select[tuple[PayoutRecords]] = select(PayoutRecords)
        if payee_id:
            stmt = stmt.where(PayoutRecords.payee_id == payee_id)
        if batch_id:
            stmt = stmt.where(PayoutRecords.batch_id == batch_id)
        stmt = stmt.order_by(PayoutRecords.created_at.desc()).offset(offset).limit(limit)
        return list(self.session.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Trigger / cancel
    # ------------------------------------------------------------------

    def run_daily_check(self) -> TriggerResult | None:
        """Periodic tick. Schedules a batch only on payout days, once per day."""
        today = self.clock.today()
        if not is_payout_day(today):
            logger.debug("Not a payout day", today=today.isoformat())
            return None

        already = self.session.scalar(
            select(PayoutBatches).where(
                and_(
                    PayoutBatches.trigger == BatchTrigger.PERIODIC,
                    PayoutBatches.trigger_date == today,
                )
            )
        )
        if already is not None:
            logger.info("Periodic batch already created today", batch_id=already.batch_id)
            return None

        try:
            return self.trigger(BatchTrigger.PERIODIC)
        except NoEligiblePayeesError:
            logger.info("Payout day with no eligible payees", today=today.isoformat())
            return None

    def trigger(
        self,
        trigger: BatchTrigger = BatchTrigger.MANUAL,
        window_months_ago: int | None = None,
        min_amount: Decimal | None = None,
    ) -> TriggerResult:
        """
        Snapshot eligible payees into a new scheduled batch.

        An existing in-flight batch is returned unchanged with ``created=False``.
        Raises NoEligiblePayeesError when the snapshot would be empty.
        """
        existing = self.current_batch()
        if existing is not None:
            logger.info("Batch already in flight", batch_id=existing.batch_id, status=existing.status.value)
            return self._trigger_result(existing, created=False)

        payees = self.aggregator.compute_eligible_payees(window_months_ago, min_amount)
        if not payees:
            raise NoEligiblePayeesError()

        now = self.clock.now()
        scheduled_at = now + timedelta(hours=self.settings.payout.admin_review_delay_hours)
        total = to_money(sum((p.total_pending for p in payees), Decimal("0")))

        batch = PayoutBatches(
            batch_id=new_id(),
            status=BatchStatus.SCHEDULED,
            trigger=trigger,
            trigger_date=self.clock.today(),
            scheduled_at=scheduled_at,
            snapshot=[p.to_snapshot() for p in payees],
            payee_count=len(payees),
            total_amount=total,
            results=[],
            processed_count=0,
            failed_count=0,
            inflight_key=INFLIGHT_BATCH_KEY,
            created_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(batch)
        except IntegrityError:
            existing = self.current_batch()
            if existing is None:
                raise ConflictError("Could not create payout batch: another batch is in flight")
            return self._trigger_result(existing, created=False)

        self.jobs.schedule(
            JobType.PROCESS_PAYOUT_BATCH.value,
            {"batch_id": batch.batch_id},
            run_at=scheduled_at,
            dedupe_key=process_job_key(batch.batch_id),
        )
        self.notifier.batch_scheduled(batch.batch_id, len(payees), total, scheduled_at)

        logger.info(
            "Payout batch scheduled",
            batch_id=batch.batch_id,
            trigger=trigger.value,
            payees=len(payees),
            total=str(total),
            scheduled_at=scheduled_at.isoformat(),
        )
        return self._trigger_result(batch, created=True)

    def cancel(self, batch_id: str | None = None) -> PayoutBatches:
        """Cancel a scheduled batch. Anything else raises ConflictError."""
        batch = self.get_batch(batch_id) if batch_id else self.current_batch()
        if batch is None:
            raise ConflictError(
                f"Payout batch {batch_id} not found" if batch_id else "No payout batch to cancel"
            )
        if batch.status != BatchStatus.SCHEDULED:
            raise ConflictError(
                f"Batch {batch.batch_id} is {batch.status.value}; only scheduled batches can be cancelled"
            )

        cancelled = self._claim_transition(
            batch, BatchStatus.CANCELLED, cancelled_at=self.clock.now(), inflight_key=None
        )
        if not cancelled:
            raise ConflictError(
                f"Batch {batch.batch_id} is {batch.status.value}; only scheduled batches can be cancelled"
            )
        self.jobs.cancel(dedupe_key=process_job_key(batch.batch_id))
        self.session.flush()
        logger.info("Payout batch cancelled", batch_id=batch.batch_id)
        return batch

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_batch(self, batch_id: str) -> ProcessResult:
        """Execute a due batch. Safe to call again after a crash or on re-delivery."""
        batch = self.get_batch(batch_id)
        if batch is None:
            logger.warning("Batch to process not found", batch_id=batch_id)
            raise ConflictError(f"Payout batch {batch_id} not found")

        if batch.status.is_terminal:
            logger.info("Batch already finished, nothing to do", batch_id=batch_id, status=batch.status.value)
            return self._process_result(batch, ran=False)

        if batch.status == BatchStatus.SCHEDULED:
            if ensure_utc(batch.scheduled_at) > self.clock.now():
                raise ConflictError(
                    f"Batch {batch_id} is not due until {ensure_utc(batch.scheduled_at).isoformat()}"
                )
            started = self._claim_transition(
                batch, BatchStatus.PROCESSING, started_at=self.clock.now()
            )
            if not started:
                logger.warning(
                    "Batch changed state before processing started",
                    batch_id=batch_id,
                    status=batch.status.value,
                )
                if batch.status.is_terminal:
                    return self._process_result(batch, ran=False)
                raise ConflictError(f"Batch {batch_id} is already {batch.status.value}")
            self.session.commit()
            logger.info("Payout batch processing", batch_id=batch_id, payees=batch.payee_count)
        else:
            logger.info("Resuming payout batch", batch_id=batch_id, done=len(batch.results))

        done = {r["payee_id"] for r in batch.results}
        pause = self.settings.payout.inter_payee_pause_seconds
        first = True

        for entry in batch.snapshot:
            payee = PayeeSummary.from_snapshot(entry)
            if payee.payee_id in done:
                continue
            if not first and pause > 0:
                self.sleep(pause)
            first = False

            result = self._process_payee(batch, payee)
            batch.results = [*batch.results, result]
            if result["success"]:
                batch.processed_count += 1
            else:
                batch.failed_count += 1
            self.jobs.renew_lease(dedupe_key=process_job_key(batch.batch_id))
            self.session.commit()

        self._transition(batch, BatchStatus.COMPLETED)
        batch.completed_at = self.clock.now()
        batch.inflight_key = None

        total_paid = to_money(
            sum((Decimal(r["amount"]) for r in batch.results if r["success"]), Decimal("0"))
        )
        flagged = [r["payee_id"] for r in batch.results if r.get("needs_reconciliation")]
        self.notifier.batch_completed(
            batch.batch_id, batch.processed_count, batch.failed_count, total_paid, flagged
        )
        self.session.commit()

        logger.info(
            "Payout batch completed",
            batch_id=batch_id,
            processed=batch.processed_count,
            failed=batch.failed_count,
            total_paid=str(total_paid),
        )
        return self._process_result(batch)

    def _process_payee(self, batch: PayoutBatches, payee: PayeeSummary) -> PayoutResultDict:
        log = logger.bind(batch_id=batch.batch_id, payee_id=payee.payee_id)
        now = self.clock.now()
        period_start = months_before(now.date(), self.settings.payout.settlement_period_months)
        period_end = now.date()

        existing = self.session.scalar(
            select(PayoutRecords).where(
                and_(
                    PayoutRecords.batch_id == batch.batch_id,
                    PayoutRecords.payee_id == payee.payee_id,
                )
            )
        )
        if existing is not None:
            log.info("Payout record exists, reconciling without remote call")
            receipt = PayoutReceipt(
                remote_payout_id=existing.remote_payout_id,
                status=existing.status,
                amount=to_money(existing.amount),
                arrival_estimate=existing.arrival_estimate,
            )
            try:
                settled = self._settle(batch, payee, receipt, period_start, period_end, existing)
            except DataIntegrityError as e:
                return self._integrity_failure(batch, payee, receipt, e)
            return {
                "payee_id": payee.payee_id,
                "success": True,
                "amount": str(receipt.amount),
                "remote_payout_id": receipt.remote_payout_id,
                "error": None,
                "needs_reconciliation": False,
                "entries_settled": settled,
                "reconciled": True,
            }

        stale = set(payee.entry_ids) - self.ledger.still_pending(payee.entry_ids)
        if stale:
            log.warning("Snapshot entries no longer pending, payout skipped", stale=len(stale))
            return self._failure(payee, f"{len(stale)} snapshot entries are no longer pending")

        try:
            receipt = self.gateway.create_payout(
                payee.remote_account_id,
                payee.total_pending,
                {
                    "batch_id": batch.batch_id,
                    "payee_id": payee.payee_id,
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                },
                idempotency_key=f"payout:{batch.batch_id}:{payee.payee_id}",
            )
        except GatewayError as e:
            log.warning("Payout failed at processor", error=str(e))
            return self._failure(payee, str(e))
        except Exception as e:
            log.exception("Unexpected error creating payout")
            return self._failure(payee, f"{type(e).__name__}: {e}")

        try:
            settled = self._settle(batch, payee, receipt, period_start, period_end)
        except DataIntegrityError as e:
            return self._integrity_failure(batch, payee, receipt, e)

        self._notify_payee(payee, receipt, period_start, period_end)
        log.info("Payout succeeded", amount=str(receipt.amount), remote_payout_id=receipt.remote_payout_id)
        return {
            "payee_id": payee.payee_id,
            "success": True,
            "amount": str(payee.total_pending),
            "remote_payout_id": receipt.remote_payout_id,
            "error": None,
            "needs_reconciliation": False,
            "entries_settled": settled,
            "reconciled": False,
        }

    def _settle(
        self,
        batch: PayoutBatches,
        payee: PayeeSummary,
        receipt: PayoutReceipt,
        period_start: date,
        period_end: date,
        record: PayoutRecords | None = None,
    ) -> int:
        """Persist the payout record, then mark the snapshot's entries paid."""
        now = self.clock.now()
        try:
            if record is None:
                with self.session.begin_nested():
                    self.session.add(
                        PayoutRecords(
                            id=new_id(),
                            batch_id=batch.batch_id,
                            payee_id=payee.payee_id,
                            amount=payee.total_pending,
                            currency=self.settings.gateway.currency,
                            remote_payout_id=receipt.remote_payout_id,
                            remote_account_id=payee.remote_account_id,
                            status=receipt.status or PayoutStatus.PENDING.value,
                            period_start=period_start,
                            period_end=period_end,
                            arrival_estimate=receipt.arrival_estimate,
                            created_at=now,
                            updated_at=now,
                        )
                    )
            with self.session.begin_nested():
                settled = self.ledger.mark_paid(
                    payee.payee_id,
                    receipt.remote_payout_id,
                    window_start=None,
                    window_end=payee.window_end,
                    settled_at=now,
                    entry_ids=payee.entry_ids,
                )
        except SQLAlchemyError as e:
            raise DataIntegrityError(
                f"Payout {receipt.remote_payout_id} confirmed but ledger write failed: {e}"
            ) from e
        if settled != len(payee.entry_ids):
            raise DataIntegrityError(
                f"Payout {receipt.remote_payout_id} covers {len(payee.entry_ids)} entries "
                f"but only {settled} were still pending",
                entries_settled=settled,
            )
        return settled

    def _integrity_failure(
        self, batch: PayoutBatches, payee: PayeeSummary, receipt: PayoutReceipt, error: DataIntegrityError
    ) -> PayoutResultDict:
        logger.error(
            "Payout confirmed remotely but not settled locally; manual reconciliation required",
            batch_id=batch.batch_id,
            payee_id=payee.payee_id,
            remote_payout_id=receipt.remote_payout_id,
            amount=str(payee.total_pending),
            error=str(error),
        )
        return {
            "payee_id": payee.payee_id,
            "success": False,
            "amount": str(payee.total_pending),
            "remote_payout_id": receipt.remote_payout_id,
            "error": str(error),
            "needs_reconciliation": True,
            "entries_settled": error.entries_settled,
            "reconciled": False,
        }

    @staticmethod
    def _failure(payee: PayeeSummary, error: str) -> PayoutResultDict:
        return {
            "payee_id": payee.payee_id,
            "success": False,
            "amount": str(payee.total_pending),
            "remote_payout_id": None,
            "error": error,
            "needs_reconciliation": False,
            "entries_settled": 0,
            "reconciled": False,
        }

    def _notify_payee(
        self, payee: PayeeSummary, receipt: PayoutReceipt, period_start: date, period_end: date
    ) -> None:
        account = self.session.get(PayeeAccounts, payee.payee_id)
        if account is None or not account.email:
            logger.info("No email on file, payout confirmation skipped", payee_id=payee.payee_id)
            return
        self.notifier.payout_confirmation(
            recipient=account.email,
            display_name=account.display_name,
            payee_id=payee.payee_id,
            amount=payee.total_pending,
            period_start=period_start,
            period_end=period_end,
            payout_ref=receipt.remote_payout_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, batch: PayoutBatches, new: BatchStatus) -> None:
        assert_batch_transition(batch.status, new)
        batch.status = new

    def _claim_transition(self, batch: PayoutBatches, new: BatchStatus, **values: object) -> bool:
        """
        Move the batch with a conditional UPDATE on its current status.

        Returns False when another writer changed the row first; ``batch`` is
        refreshed either way.
        """
        old = batch.status
        assert_batch_transition(old, new)
        self.session.flush()
        result = self.session.execute(
            update(PayoutBatches)
            .where(and_(PayoutBatches.batch_id == batch.batch_id, PayoutBatches.status == old))
            .values(status=new, **values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(batch)
        return result.rowcount == 1

    @staticmethod
    def _trigger_result(batch: PayoutBatches, created: bool) -> TriggerResult:
        return TriggerResult(
            batch_id=batch.batch_id,
            status=batch.status,
            vendor_count=batch.payee_count,
            total_amount=to_money(batch.total_amount),
            scheduled_at=ensure_utc(batch.scheduled_at),
            created=created,
        )

    @staticmethod
    def _process_result(batch: PayoutBatches, ran: bool = True) -> ProcessResult:
        return ProcessResult(
            batch_id=batch.batch_id,
            status=batch.status,
            processed_count=batch.processed_count,
            failed_count=batch.failed_count,
            results=list(batch.results),
            ran=ran,
        )

    @staticmethod
    def batch_to_dict(batch: PayoutBatches) -> BatchDict:
        return {
            "batch_id": batch.batch_id,
            "status": batch.status.value,
            "trigger": batch.trigger.value,
            "trigger_date": batch.trigger_date.isoformat(),
            "scheduled_at": iso(ensure_utc(batch.scheduled_at)) or "",
            "payee_count": batch.payee_count,
            "total_amount": str(to_money(batch.total_amount)),
            "processed_count": batch.processed_count,
            "failed_count": batch.failed_count,
            "snapshot": list(batch.snapshot),
            "results": list(batch.results),
            "created_at": iso(ensure_utc(batch.created_at)) or "",
            "started_at": iso(ensure_utc(batch.started_at)),
            "completed_at": iso(ensure_utc(batch.completed_at)),
            "cancelled_at": iso(ensure_utc(batch.cancelled_at)),
        }

    @staticmethod
    def record_to_dict(record: PayoutRecords) -> PayoutRecordDict:
        return {
            "id": record.id,
            "batch_id": record.batch_id,
            "payee_id": record.payee_id,
            "amount": str(to_money(record.amount)),
            "currency": record.currency,
            "remote_payout_id": record.remote_payout_id,
            "remote_account_id": record.remote_account_id,
            "status": record.status,
            "period_start": record.period_start.isoformat(),
            "period_end": record.period_end.isoformat(),
            "arrival_estimate": iso(record.arrival_estimate),
            "created_at": iso(ensure_utc(record.created_at)) or "",
        }

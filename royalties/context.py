"""Application context: collaborators built once per process, plus command dispatch."""

import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy.orm import Session

from config import Settings, get_settings
from db.enums import BatchTrigger, JobType
from royalties.services.clock import Clock, SystemClock
from royalties.services.gateway import PaymentGateway, StripeGateway
from royalties.services.jobs import JobRunner, RunSummary
from royalties.services.payout_workflow import PayoutWorkflow, ProcessResult, TriggerResult
from royalties.services.sales import SaleCompleted, SaleIngestionResult, SaleIngestionService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TriggerPayout:
    trigger: BatchTrigger = BatchTrigger.MANUAL
    window_months_ago: int | None = None
    min_amount: Decimal | None = None


@dataclass(frozen=True)
class CancelBatch:
    batch_id: str | None = None


Command = SaleCompleted | TriggerPayout | CancelBatch


@dataclass
class AppContext:
    """
    Everything a request, CLI command or worker tick needs.

    Built once at process start and passed down explicitly.
    """

    settings: Settings
    session_factory: Callable[[], Session]
    gateway: PaymentGateway
    clock: Clock
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        session_factory: Callable[[], Session] | None = None,
        gateway: PaymentGateway | None = None,
        clock: Clock | None = None,
    ) -> "AppContext":
        if session_factory is None:
            from db.connection import get_session_factory

            session_factory = get_session_factory()
        return cls(
            settings=settings or get_settings(),
            session_factory=session_factory,
            gateway=gateway or StripeGateway(),
            clock=clock or SystemClock(),
        )

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session with commit/rollback."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def workflow(self, session: Session) -> PayoutWorkflow:
        return PayoutWorkflow(session, self.gateway, self.clock, self.sleep)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def dispatch(self, command: Command, session: Session | None = None) -> Any:
        """Route a typed command to its handler. Uses ``session`` when given, else its own."""
        if session is None:
            with self.session_scope() as own:
                return self.dispatch(command, own)

        if isinstance(command, SaleCompleted):
            return self._record_sale(session, command)
        if isinstance(command, TriggerPayout):
            return self._trigger(session, command)
        if isinstance(command, CancelBatch):
            return self.workflow(session).cancel(command.batch_id)
        raise TypeError(f"Unsupported command: {type(command).__name__}")

    def _record_sale(self, session: Session, event: SaleCompleted) -> SaleIngestionResult:
        return SaleIngestionService(session, self.clock).record_sale(event)

    def _trigger(self, session: Session, command: TriggerPayout) -> TriggerResult:
        return self.workflow(session).trigger(
            command.trigger, command.window_months_ago, command.min_amount
        )

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def daily_tick(self) -> TriggerResult | None:
        with self.session_scope() as session:
            return self.workflow(session).run_daily_check()

    def job_handlers(self) -> dict[str, Callable[[dict[str, Any]], None]]:
        return {JobType.PROCESS_PAYOUT_BATCH.value: self.handle_process_batch}

    def handle_process_batch(self, payload: dict[str, Any]) -> None:
        self.process_batch(str(payload.get("batch_id") or ""))

    def process_batch(self, batch_id: str) -> ProcessResult | None:
        with self.session_scope() as session:
            workflow = self.workflow(session)
            if not batch_id or workflow.get_batch(batch_id) is None:
                logger.error("Process job references unknown batch", batch_id=batch_id)
                return None
            return workflow.process_batch(batch_id)

    def run_due_jobs(self, limit: int = 10) -> RunSummary:
        runner = JobRunner(self.session_factory, self.job_handlers(), self.clock)
        return runner.run_due(limit=limit)

"""Durable delayed jobs polled by the worker.

A job is claimed by taking a lease (``locked_until``). A worker that dies
mid-job leaves the lease to expire, after which the job is handed out again,
so handlers must tolerate running more than once.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import Select, and_, or_, select
from sqlalchemy.orm import Session

from config import get_settings
from db.enums import JobStatus
from db.models import ScheduledJobs
from royalties.services._helpers import ensure_utc, new_id
from royalties.services.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)

JobHandler = Callable[[dict[str, Any]], None]


@dataclass
class RunSummary:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class JobQueue:
    """Persisted ``{job_type, payload, run_at}`` records."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self.session: Session = session
        self.clock: Clock = clock or SystemClock()

    def schedule(
        self,
        job_type: str,
        payload: dict[str, Any],
        run_at: datetime,
        dedupe_key: str | None = None,
    ) -> ScheduledJobs:
        """Persist a job. With ``dedupe_key`` a second schedule returns the first job."""
        if dedupe_key:
            existing = self.session.scalar(
                select(ScheduledJobs).where(ScheduledJobs.dedupe_key == dedupe_key)
            )
            if existing is not None:
                return existing

        now = self.clock.now()
        job = ScheduledJobs(
            id=new_id(),
            job_type=job_type,
            payload=dict(payload),
            run_at=run_at,
            status=JobStatus.PENDING,
            attempts=0,
            dedupe_key=dedupe_key,
            created_at=now,
            updated_at=now,
        )
        self.session.add(job)
        self.session.flush()
        logger.info("Job scheduled", job_id=job.id, job_type=job_type, run_at=run_at.isoformat())
        return job

    def cancel(self, job_id: str | None = None, dedupe_key: str | None = None) -> bool:
        job = self._find(job_id, dedupe_key)
        if job is None or job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
            return False
        job.status = JobStatus.CANCELLED
        job.locked_until = None
        job.updated_at = self.clock.now()
        self.session.flush()
        logger.info("Job cancelled", job_id=job.id, job_type=job.job_type)
        return True

    def claim_due(self, limit: int = 10, lease_seconds: int | None = None) -> list[ScheduledJobs]:
        """Lease due jobs: pending ones whose time has come and running ones whose lease lapsed."""
        now = self.clock.now()
        lease = timedelta(seconds=lease_seconds or get_settings().payout.job_lease_seconds)

        stmt: Select[tuple[ScheduledJobs]] = (
            select(ScheduledJobs)
            .where(
                or_(
                    and_(ScheduledJobs.status == JobStatus.PENDING, ScheduledJobs.run_at <= now),
                    and_(
                        ScheduledJobs.status == JobStatus.RUNNING,
                        ScheduledJobs.locked_until.is_not(None),
                        ScheduledJobs.locked_until <= now,
                    ),
                )
            )
            .order_by(ScheduledJobs.run_at, ScheduledJobs.id)
            .limit(limit)
        )
        jobs = list(self.session.scalars(stmt).all())
        for job in jobs:
            if job.status == JobStatus.RUNNING:
                logger.warning("Re-delivering job with expired lease", job_id=job.id, attempts=job.attempts)
            job.status = JobStatus.RUNNING
            job.attempts += 1
            job.locked_until = now + lease
            job.updated_at = now
        self.session.flush()
        return jobs

    def renew_lease(
        self,
        job_id: str | None = None,
        dedupe_key: str | None = None,
        lease_seconds: int | None = None,
    ) -> bool:
        """Push a running job's lease forward. Long handlers call this as they make progress."""
        job = self._find(job_id, dedupe_key)
        if job is None or job.status != JobStatus.RUNNING:
            return False
        now = self.clock.now()
        job.locked_until = now + timedelta(
            seconds=lease_seconds or get_settings().payout.job_lease_seconds
        )
        job.updated_at = now
        self.session.flush()
        return True

    def complete(self, job: ScheduledJobs) -> None:
        now = self.clock.now()
        job.status = JobStatus.DONE
        job.locked_until = None
        job.completed_at = now
        job.updated_at = now
        self.session.flush()

    def fail(self, job: ScheduledJobs, error: str, retry_in: timedelta | None = None) -> None:
        """Record the error; the job goes back to pending for another attempt."""
        now = self.clock.now()
        job.status = JobStatus.PENDING
        job.locked_until = None
        job.last_error = error
        job.run_at = now + (retry_in or timedelta(0))
        job.updated_at = now
        self.session.flush()

    def get(self, job_id: str) -> ScheduledJobs | None:
        return self.session.get(ScheduledJobs, job_id)

    def list_jobs(self, status: JobStatus | None = None, limit: int = 50) -> list[ScheduledJobs]:
        stmt: Select[tuple[ScheduledJobs]] = select(ScheduledJobs)
        if status:
            stmt = stmt.where(ScheduledJobs.status == status)
        stmt = stmt.order_by(ScheduledJobs.run_at.desc()).limit(limit)
        return list(self.session.scalars(stmt).all())

    def next_run_at(self) -> datetime | None:
        stmt = (
            select(ScheduledJobs.run_at)
            .where(ScheduledJobs.status == JobStatus.PENDING)
            .order_by(ScheduledJobs.run_at)
            .limit(1)
        )
        return ensure_utc(self.session.scalar(stmt))

    def _find(self, job_id: str | None, dedupe_key: str | None) -> ScheduledJobs | None:
        if job_id:
            return self.session.get(ScheduledJobs, job_id)
        if dedupe_key:
            return self.session.scalar(
                select(ScheduledJobs).where(ScheduledJobs.dedupe_key == dedupe_key)
            )
        return None


class JobRunner:
    """
    Dispatch leased jobs to handlers registered by job type.

    Each job runs in its own transaction: the lease is committed first, then
    the handler runs, then completion is committed. ``session_factory`` must
    yield a fresh session per call.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        handlers: dict[str, JobHandler],
        clock: Clock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.handlers = handlers
        self.clock: Clock = clock or SystemClock()

    def run_due(self, limit: int = 10) -> RunSummary:
        summary = RunSummary()

        session = self.session_factory()
        try:
            claimed = JobQueue(session, self.clock).claim_due(limit=limit)
            leased = [(job.id, job.job_type, dict(job.payload)) for job in claimed]
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        summary.claimed = len(leased)
        for job_id, job_type, payload in leased:
            handler = self.handlers.get(job_type)
            error: str | None = None
            if handler is None:
                error = f"No handler registered for job type {job_type!r}"
                logger.error("Unknown job type", job_id=job_id, job_type=job_type)
            else:
                try:
                    handler(payload)
                except Exception as e:
                    error = f"{type(e).__name__}: {e}"
                    logger.exception("Job handler failed", job_id=job_id, job_type=job_type)

            self._finish(job_id, error)
            if error is None:
                summary.completed += 1
            else:
                summary.failed += 1
                summary.errors.append(error)

        return summary

    def _finish(self, job_id: str, error: str | None) -> None:
        session = self.session_factory()
        try:
            queue = JobQueue(session, self.clock)
            job = queue.get(job_id)
            if job is not None and job.status == JobStatus.RUNNING:
                if error is None:
                    queue.complete(job)
                else:
                    queue.fail(job, error, retry_in=timedelta(minutes=5))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

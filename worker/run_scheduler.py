"""Worker: payout-day check plus due-job polling.

Usage:
    python -m worker.run_scheduler            # poll forever
    python -m worker.run_scheduler --once     # one cycle, then exit
    python -m worker.run_scheduler --interval 30
"""

import argparse
import time

import structlog

from db.connection import init_database
from royalties.context import AppContext
from royalties.logging_setup import configure_logging

logger = structlog.get_logger(__name__)


def run_cycle(ctx: AppContext, job_limit: int = 10) -> None:
    """One scheduler pass: maybe create today's batch, then run whatever jobs are due."""
    created = ctx.daily_tick()
    if created is not None:
        logger.info(
            "Periodic batch scheduled",
            batch_id=created.batch_id,
            payees=created.vendor_count,
            total=str(created.total_amount),
            scheduled_at=created.scheduled_at.isoformat(),
        )

    summary = ctx.run_due_jobs(limit=job_limit)
    if summary.claimed:
        logger.info(
            "Jobs processed",
            claimed=summary.claimed,
            completed=summary.completed,
            failed=summary.failed,
        )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the payout scheduler")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument(
        "--interval", "-i", type=float, default=None,
        help="Seconds between cycles (default: PAYOUT_POLL_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--job-limit", type=int, default=10, help="Max jobs claimed per cycle",
    )
    args = parser.parse_args(argv)

    configure_logging()
    init_database()
    ctx = AppContext.create()
    interval = args.interval or ctx.settings.payout.poll_interval_seconds

    if args.once:
        run_cycle(ctx, args.job_limit)
        return

    logger.info("Scheduler started", interval=interval)
    try:
        while True:
            try:
                run_cycle(ctx, args.job_limit)
            except Exception:
                # Keep polling; the failed cycle's work is retried on the next pass.
                logger.exception("Scheduler cycle failed")
            time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()

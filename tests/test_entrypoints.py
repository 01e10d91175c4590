"""Tests for the Typer CLI and the scheduler worker cycle."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from typer.testing import CliRunner

from config import get_settings
from db.enums import BatchStatus
from db.models import PayoutBatches
from royalties.cli import main as cli
from royalties.context import AppContext
from royalties.services.clock import FixedClock
from tests.conftest import FakeGateway, seed_entry, seed_payee
from worker.run_scheduler import run_cycle

OLD: datetime = datetime(2024, 11, 5, 10, 0, tzinfo=UTC)

runner = CliRunner()


@pytest.fixture()
def ctx(
    session_factory: sessionmaker[Session], gateway: FakeGateway, clock: FixedClock
) -> AppContext:
    return AppContext(
        settings=get_settings(),
        session_factory=session_factory,
        gateway=gateway,
        clock=clock,
        sleep=lambda seconds: None,
    )


@pytest.fixture()
def seeded(session_factory: sessionmaker[Session], gateway: FakeGateway) -> None:
    with session_factory() as session:
        seed_payee(session, "author-a", "acct_a", gateway=gateway)
        seed_entry(session, "author-a", "40.00", OLD)
        session.commit()


@pytest.fixture()
def cli_ctx(ctx: AppContext, monkeypatch: pytest.MonkeyPatch) -> AppContext:
    monkeypatch.setattr(cli, "_context", lambda: ctx)
    return ctx


class TestCli:
    def test_trigger_without_payees_exits_nonzero(self, cli_ctx: AppContext) -> None:
        result = runner.invoke(cli.app, ["trigger"])
        assert result.exit_code == 1
        assert "No eligible payees" in result.output

    def test_trigger_then_cancel(self, cli_ctx: AppContext, seeded: None) -> None:
        result = runner.invoke(cli.app, ["trigger"])
        assert result.exit_code == 0
        assert "Payout batch scheduled" in result.output

        result = runner.invoke(cli.app, ["cancel"])
        assert result.exit_code == 0
        assert "Cancelled batch" in result.output

        result = runner.invoke(cli.app, ["cancel"])
        assert result.exit_code == 1

    def test_ingest_sale(self, cli_ctx: AppContext, tmp_path: Path) -> None:
        payload = {
            "saleId": "sale-9",
            "saleDate": "2025-03-03",
            "items": [{"itemId": "book-1", "payeeId": "author-a", "netPriceBeforeTax": "10.00"}],
        }
        path = tmp_path / "sale.json"
        path.write_text(json.dumps(payload), encoding="utf-8")

        result = runner.invoke(cli.app, ["ingest-sale", str(path)])
        assert result.exit_code == 0
        assert "1 new entries" in result.output
        assert "royalty 7.00" in result.output

    def test_preview_lists_payees(self, cli_ctx: AppContext, seeded: None) -> None:
        result = runner.invoke(cli.app, ["preview"])
        assert result.exit_code == 0
        assert "author-a" in result.output
        assert "Eligible payees: 1" in result.output


class TestSchedulerCycle:
    def test_cycle_schedules_then_pays(
        self,
        ctx: AppContext,
        seeded: None,
        session_factory: sessionmaker[Session],
        gateway: FakeGateway,
        clock: FixedClock,
    ) -> None:
        run_cycle(ctx)
        assert gateway.payouts == []

        clock.advance(hours=6)
        run_cycle(ctx)

        with session_factory() as session:
            [batch] = session.scalars(select(PayoutBatches)).all()
            assert batch.status == BatchStatus.COMPLETED
        assert len(gateway.payouts) == 1

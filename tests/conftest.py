"""Shared fixtures: in-memory SQLite DB with all tables, fixed clock, fake processor."""

from collections.abc import Generator
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.connection import enable_sqlite_savepoints
from db.models import Base, PayeeAccounts
from royalties.services._helpers import to_money
from royalties.services.calculator import compute_royalty
from royalties.services.clock import FixedClock
from royalties.services.errors import BelowMinimumError, RemoteError
from royalties.services.gateway import (
    Balance,
    PaymentGateway,
    PayoutReceipt,
    RemoteAccountStatus,
)
from royalties.services.ledger import RoyaltyLedger

# Monday 2025-03-03 is the March 2025 payout day (the 1st was a Saturday).
PAYOUT_DAY: datetime = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)


class FakeGateway(PaymentGateway):
    """In-memory processor. Accounts must be registered to report payouts enabled."""

    def __init__(self, minimum_payout: Decimal = Decimal("0")) -> None:
        self.minimum_payout = minimum_payout
        self.accounts: dict[str, RemoteAccountStatus] = {}
        self.failing_payouts: set[str] = set()
        self.failing_status: set[str] = set()
        self.payouts: list[dict[str, object]] = []
        self.status_calls: list[str] = []

    def enable(self, remote_account_id: str, payouts_enabled: bool = True) -> None:
        self.accounts[remote_account_id] = RemoteAccountStatus(
            charges_enabled=payouts_enabled,
            payouts_enabled=payouts_enabled,
            details_submitted=True,
        )

    def get_account_status(self, remote_account_id: str) -> RemoteAccountStatus:
        self.status_calls.append(remote_account_id)
        if remote_account_id in self.failing_status:
            raise RemoteError(f"status lookup failed for {remote_account_id}")
        return self.accounts.get(
            remote_account_id,
            RemoteAccountStatus(charges_enabled=False, payouts_enabled=False, details_submitted=False),
        )

    def get_balance(self, remote_account_id: str) -> Balance:
        paid = sum(
            (p["amount"] for p in self.payouts if p["account"] == remote_account_id),
            Decimal("0"),
        )
        return Balance(available=to_money(paid), pending=Decimal("0.00"), currency="EUR")

    def create_payout(
        self,
        remote_account_id: str,
        amount: Decimal,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PayoutReceipt:
        if remote_account_id in self.failing_payouts:
            raise RemoteError("Insufficient funds in Stripe account")
        if amount < self.minimum_payout:
            raise BelowMinimumError(f"{amount} is below {self.minimum_payout}")
        payout_id = f"po_test_{len(self.payouts) + 1}"
        self.payouts.append(
            {
                "id": payout_id,
                "account": remote_account_id,
                "amount": amount,
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
            }
        )
        return PayoutReceipt(
            remote_payout_id=payout_id,
            status="pending",
            amount=to_money(amount),
            arrival_estimate=date(2025, 3, 5),
        )


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng: Engine = enable_sqlite_savepoints(create_engine("sqlite:///:memory:", echo=False))
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    sess: Session = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(PAYOUT_DAY)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


# ---------- seed helpers ----------


def seed_payee(
    session: Session,
    payee_id: str,
    remote_account_id: str | None = None,
    email: str | None = None,
    gateway: FakeGateway | None = None,
) -> PayeeAccounts:
    account = PayeeAccounts(
        payee_id=payee_id,
        display_name=payee_id.title(),
        email=email if email is not None else f"{payee_id}@example.com",
        remote_account_id=remote_account_id,
    )
    session.add(account)
    session.flush()
    if gateway is not None and remote_account_id:
        gateway.enable(remote_account_id)
    return account


def seed_entry(
    session: Session,
    payee_id: str,
    price: str,
    created_at: datetime,
    sale_id: str | None = None,
    item_id: str = "item-1",
) -> str:
    draft = compute_royalty(price, None, created_at.date())
    result = RoyaltyLedger(session).append(
        draft,
        sale_id=sale_id or f"sale-{payee_id}-{created_at.isoformat()}-{item_id}",
        item_id=item_id,
        payee_id=payee_id,
        sale_date=created_at.date(),
        created_at=created_at,
    )
    return result.entry_id

"""SQLAlchemy ORM models for the royalty payout engine."""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Index,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from db.enums import (
    AccountStatus,
    BatchStatus,
    BatchTrigger,
    JobStatus,
    NotificationKind,
    NotificationStatus,
    RoyaltyStatus,
)

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

MONEY = Numeric(10, 2)
PERCENT = Numeric(5, 2)

# Sentinel stored in PayoutBatches.inflight_key while a batch is scheduled or processing.
INFLIGHT_BATCH_KEY = "payout-batch"


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)

    def to_dict(self) -> dict[str, Any]:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


def generate_uuid() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


def _enum(enum_cls: type, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class RoyaltyEntries(Base):
    """
    Royalty owed for one sold line item.

    One row per (sale_id, item_id). Rows are never deleted; settlement only
    moves the status forward and stamps the payout reference.
    """

    __tablename__ = "royalty_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    sale_id: Mapped[str] = mapped_column(String(64), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False)

    net_price_before_promo: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    promo_discount_percent: Mapped[Decimal | None] = mapped_column(PERCENT, nullable=True)
    net_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    royalty_percent: Mapped[Decimal] = mapped_column(PERCENT, nullable=False)
    royalty_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    status: Mapped[RoyaltyStatus] = mapped_column(
        _enum(RoyaltyStatus, "royalty_status_enum"),
        nullable=False,
        default=RoyaltyStatus.PENDING,
    )
    payout_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("sale_id", "item_id", name="uq_royalty_entries_sale_item"),
        Index("ix_royalty_entries_payee_status", "payee_id", "status"),
        Index("ix_royalty_entries_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RoyaltyEntries(sale={self.sale_id}, item={self.item_id}, "
            f"payee={self.payee_id}, amount={self.royalty_amount}, status={self.status.value})>"
        )


class PayeeAccounts(Base):
    """Mapping from a payee to its remote payment account."""

    __tablename__ = "payee_accounts"

    payee_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remote_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_status: Mapped[AccountStatus] = mapped_column(
        _enum(AccountStatus, "account_status_enum"),
        nullable=False,
        default=AccountStatus.NONE,
    )
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_payee_accounts_remote", "remote_account_id"),)


class PayoutBatches(Base):
    """
    One scheduled, in-flight or historical payout batch.

    The snapshot is written once when the batch is created. ``inflight_key``
    holds INFLIGHT_BATCH_KEY while the batch is scheduled or processing and is
    cleared on reaching a terminal state, so the unique constraint admits at
    most one in-flight batch.
    """

    __tablename__ = "payout_batches"

    batch_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    status: Mapped[BatchStatus] = mapped_column(
        _enum(BatchStatus, "batch_status_enum"),
        nullable=False,
        default=BatchStatus.SCHEDULED,
    )
    trigger: Mapped[BatchTrigger] = mapped_column(
        _enum(BatchTrigger, "batch_trigger_enum"), nullable=False
    )
    trigger_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    snapshot: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    payee_count: Mapped[int] = mapped_column(nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    results: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    processed_count: Mapped[int] = mapped_column(nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(nullable=False, default=0)

    inflight_key: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("inflight_key", name="uq_payout_batches_inflight_key"),
        Index("ix_payout_batches_status", "status"),
        Index("ix_payout_batches_trigger_date", "trigger", "trigger_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<PayoutBatches(id={self.batch_id[:8]}..., status={self.status.value}, "
            f"payees={self.payee_count}, total={self.total_amount})>"
        )


class PayoutRecords(Base):
    """Durable receipt of a payout the processor confirmed."""

    __tablename__ = "payout_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False)
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    remote_payout_id: Mapped[str] = mapped_column(String(255), nullable=False)
    remote_account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    arrival_estimate: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "payee_id", name="uq_payout_records_batch_payee"),
        UniqueConstraint("remote_payout_id", name="uq_payout_records_remote_payout_id"),
        Index("ix_payout_records_payee", "payee_id"),
        Index("ix_payout_records_created_at", "created_at"),
    )


class ScheduledJobs(Base):
    """Durable delayed-execution record polled by the worker."""

    __tablename__ = "scheduled_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    job_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        _enum(JobStatus, "job_status_enum"), nullable=False, default=JobStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    dedupe_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_scheduled_jobs_dedupe_key"),
        Index("ix_scheduled_jobs_due", "status", "run_at"),
    )


class Notifications(Base):
    """Outbox of notifications waiting for the mail transport."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    kind: Mapped[NotificationKind] = mapped_column(
        _enum(NotificationKind, "notification_kind_enum"), nullable=False
    )
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[NotificationStatus] = mapped_column(
        _enum(NotificationStatus, "notification_status_enum"),
        nullable=False,
        default=NotificationStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_notifications_status", "status", "created_at"),)

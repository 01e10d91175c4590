"""Payout preview, batch and record schemas."""

from decimal import Decimal

from pydantic import Field

from app.schemas.common import CamelModel


class PayeeSummaryResponse(CamelModel):
    payee_id: str
    total_pending: str
    entry_count: int
    oldest_entry_date: str
    remote_account_id: str
    window_end: str
    entry_ids: list[str] = []


class PayoutPreviewResponse(CamelModel):
    payees: list[PayeeSummaryResponse]
    vendor_count: int
    total_amount: str
    next_payout_date: str
    eligibility_cutoff: str


class TriggerRequest(CamelModel):
    window_months_ago: int | None = Field(None, ge=1, le=24)
    min_amount: Decimal | None = Field(None, ge=0)


class TriggerResponse(CamelModel):
    batch_id: str
    status: str
    vendor_count: int
    total_amount: str
    scheduled_at: str
    created: bool


class CancelRequest(CamelModel):
    batch_id: str | None = None


class PayoutResultResponse(CamelModel):
    payee_id: str
    success: bool
    amount: str
    remote_payout_id: str | None = None
    error: str | None = None
    needs_reconciliation: bool = False
    entries_settled: int = 0
    reconciled: bool = False


class BatchResponse(CamelModel):
    batch_id: str
    status: str
    trigger: str
    trigger_date: str
    scheduled_at: str
    payee_count: int
    total_amount: str
    processed_count: int
    failed_count: int
    snapshot: list[PayeeSummaryResponse]
    results: list[PayoutResultResponse]
    created_at: str
    started_at: str | None
    completed_at: str | None
    cancelled_at: str | None


class PayoutRecordResponse(CamelModel):
    id: str
    batch_id: str
    payee_id: str
    amount: str
    currency: str
    remote_payout_id: str
    remote_account_id: str
    status: str
    period_start: str
    period_end: str
    arrival_estimate: str | None
    created_at: str

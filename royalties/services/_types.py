"""Typed dicts for service-layer return values.

Keeps route-facing methods explicit about their shape instead of returning bare dicts.
"""

import sys
from typing import Any

if sys.version_info >= (3, 12):
    from typing import TypedDict
else:
    from typing_extensions import TypedDict

# -- Ledger ----------------------------------------------------------------


class RoyaltyEntryDict(TypedDict):
    id: str
    sale_id: str
    item_id: str
    payee_id: str
    net_price_before_promo: str
    promo_discount_percent: str | None
    net_price: str
    royalty_percent: str
    royalty_amount: str
    status: str
    payout_ref: str | None
    settled_at: str | None
    sale_date: str
    created_at: str


class MonthlyEarningsDict(TypedDict):
    month: str
    royalties: str
    items_sold: int


class EarningsSummaryDict(TypedDict):
    payee_id: str
    eligible_pending: str
    maturing_pending: str
    total_year: str
    items_sold_year: int
    eligibility_cutoff: str
    monthly: list[MonthlyEarningsDict]


# -- Eligibility / Workflow ------------------------------------------------


class SnapshotEntryDict(TypedDict):
    payee_id: str
    total_pending: str
    entry_count: int
    oldest_entry_date: str
    remote_account_id: str
    window_end: str
    entry_ids: list[str]


class PayoutResultDict(TypedDict, total=False):
    payee_id: str
    success: bool
    amount: str
    remote_payout_id: str | None
    error: str | None
    needs_reconciliation: bool
    entries_settled: int
    reconciled: bool


class BatchDict(TypedDict):
    batch_id: str
    status: str
    trigger: str
    trigger_date: str
    scheduled_at: str
    payee_count: int
    total_amount: str
    processed_count: int
    failed_count: int
    snapshot: list[SnapshotEntryDict]
    results: list[PayoutResultDict]
    created_at: str
    started_at: str | None
    completed_at: str | None
    cancelled_at: str | None


class PayoutRecordDict(TypedDict):
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


# -- Payees ----------------------------------------------------------------


class PayeeAccountDict(TypedDict):
    payee_id: str
    display_name: str
    email: str | None
    remote_account_id: str | None
    account_status: str
    payouts_enabled: bool
    status_checked_at: str | None


# -- Notifications -------------------------------------------------------


class NotificationDict(TypedDict):
    id: str
    kind: str
    recipient: str
    subject: str
    body: str
    payload: dict[str, Any]
    status: str
    created_at: str
    sent_at: str | None


# -- Health ----------------------------------------------------------------


class DbInfoDict(TypedDict, total=False):
    backend_type: str
    database_url_or_path: str | None
    tables_present: list[str]
    tables_missing: list[str]
    schema_initialized: bool
    pid: int
    error: str

"""Sale ingestion, royalty ledger and payee schemas."""

from datetime import date
from decimal import Decimal

from pydantic import Field

from app.schemas.common import CamelModel
from royalties.services.calculator import Promo
from royalties.services.sales import SaleCompleted, SaleItem


class PromoIn(CamelModel):
    discount_percent: Decimal = Field(..., ge=0, le=100)
    end_date: date | None = None


class SaleItemIn(CamelModel):
    item_id: str = Field(..., min_length=1, max_length=64)
    payee_id: str = Field(..., min_length=1, max_length=64)
    net_price_before_tax: Decimal = Field(..., ge=0)
    promo: PromoIn | None = None


class SaleCompletedRequest(CamelModel):
    sale_id: str = Field(..., min_length=1, max_length=64)
    sale_date: date
    items: list[SaleItemIn] = Field(..., min_length=1)

    def to_command(self) -> SaleCompleted:
        return SaleCompleted(
            sale_id=self.sale_id,
            sale_date=self.sale_date,
            items=[
                SaleItem(
                    item_id=i.item_id,
                    payee_id=i.payee_id,
                    net_price_before_tax=i.net_price_before_tax,
                    promo=(
                        Promo(discount_percent=i.promo.discount_percent, end_date=i.promo.end_date)
                        if i.promo
                        else None
                    ),
                )
                for i in self.items
            ],
        )


class SaleIngestionResponse(CamelModel):
    sale_id: str
    entry_ids: list[str]
    created: int
    duplicates: int
    total_royalty: str


class RoyaltyEntryResponse(CamelModel):
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


class MonthlyEarningsResponse(CamelModel):
    month: str
    royalties: str
    items_sold: int


class EarningsSummaryResponse(CamelModel):
    payee_id: str
    eligible_pending: str
    maturing_pending: str
    total_year: str
    items_sold_year: int
    eligibility_cutoff: str
    monthly: list[MonthlyEarningsResponse]


class PayeeUpdate(CamelModel):
    display_name: str | None = Field(None, max_length=128)
    email: str | None = Field(None, max_length=255)
    remote_account_id: str | None = Field(None, max_length=255)


class PayeeAccountResponse(CamelModel):
    payee_id: str
    display_name: str
    email: str | None
    remote_account_id: str | None
    account_status: str
    payouts_enabled: bool
    status_checked_at: str | None


class PayeeBalanceResponse(CamelModel):
    payee_id: str
    available: str
    pending: str
    currency: str

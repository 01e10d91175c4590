"""Royalty calculation for a single sold line item.

Pure functions only: no session, no clock. The promo terms arrive already
resolved by the catalog.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from royalties.services._helpers import to_money
from royalties.services.errors import ValidationError

HUNDRED = Decimal(100)

# (exclusive upper bound, percent); a price equal to a bound falls in the next tier.
ROYALTY_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("2.83"), Decimal(50)),
    (Decimal("4.73"), Decimal(75)),
    (Decimal("9.47"), Decimal(80)),
    (Decimal("14.21"), Decimal(70)),
)
TOP_TIER_PERCENT = Decimal(50)


@dataclass(frozen=True)
class Promo:
    discount_percent: Decimal
    end_date: date | None

    def is_active(self, sale_date: date) -> bool:
        if self.discount_percent <= 0 or self.end_date is None:
            return False
        return sale_date <= self.end_date


@dataclass(frozen=True)
class RoyaltyDraft:
    net_price_before_promo: Decimal
    promo_discount_percent: Decimal | None
    net_price: Decimal
    royalty_percent: Decimal
    royalty_amount: Decimal


def _as_decimal(value: Decimal | int | float | str, field: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} is not a number: {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}")
    return result


def royalty_percent_for(net_price: Decimal) -> Decimal:
    """Tier percentage for a post-promo net price."""
    for upper, percent in ROYALTY_TIERS:
        if net_price < upper:
            return percent
    return TOP_TIER_PERCENT


def apply_promo(net_price: Decimal, promo: Promo | None, sale_date: date) -> Decimal:
    if promo is None or not promo.is_active(sale_date):
        return to_money(net_price)
    return to_money(net_price * (HUNDRED - promo.discount_percent) / HUNDRED)


def compute_royalty(
    net_price_before_promo: Decimal | int | float | str,
    promo: Promo | None,
    sale_date: date,
) -> RoyaltyDraft:
    """Turn a line item's pre-promo net price into a royalty draft."""
    before = _as_decimal(net_price_before_promo, "net_price_before_promo")
    if before < 0:
        raise ValidationError(f"net_price_before_promo must be >= 0, got {before}")

    if promo is not None:
        discount = _as_decimal(promo.discount_percent, "discount_percent")
        if discount < 0 or discount > HUNDRED:
            raise ValidationError(f"discount_percent must be within 0-100, got {discount}")
        promo = Promo(discount_percent=discount, end_date=promo.end_date)

    net_price = apply_promo(before, promo, sale_date)
    percent = royalty_percent_for(net_price)
    active = promo is not None and promo.is_active(sale_date)

    return RoyaltyDraft(
        net_price_before_promo=to_money(before),
        promo_discount_percent=promo.discount_percent if active else None,
        net_price=net_price,
        royalty_percent=percent,
        royalty_amount=to_money(net_price * percent / HUNDRED),
    )

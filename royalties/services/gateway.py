"""Payment processor boundary: account status, balance and payout creation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import stripe
import structlog

from config import get_settings
from db.enums import AccountStatus
from royalties.services._helpers import CENT, to_money
from royalties.services.errors import BelowMinimumError, RemoteError

logger = structlog.get_logger(__name__)


@dataclass
class RemoteAccountStatus:
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    requirements: list[str] = field(default_factory=list)


@dataclass
class Balance:
    available: Decimal
    pending: Decimal
    currency: str


@dataclass
class PayoutReceipt:
    remote_payout_id: str
    status: str
    amount: Decimal
    arrival_estimate: date | None = None


def verification_status(status: RemoteAccountStatus) -> AccountStatus:
    """Collapse a remote status response into the cached onboarding state."""
    if status.charges_enabled and status.payouts_enabled:
        return AccountStatus.VERIFIED
    if status.details_submitted:
        return AccountStatus.PENDING_VERIFICATION
    if status.requirements:
        return AccountStatus.REQUIRES_INFORMATION
    return AccountStatus.CREATED


def to_minor_units(amount: Decimal) -> int:
    return int((to_money(amount) / CENT).to_integral_value())


def from_minor_units(value: int) -> Decimal:
    return to_money(Decimal(value) * CENT)


class PaymentGateway(ABC):
    """Remote processor operations the payout engine consumes."""

    @abstractmethod
    def get_account_status(self, remote_account_id: str) -> RemoteAccountStatus: ...

    @abstractmethod
    def get_balance(self, remote_account_id: str) -> Balance: ...

    @abstractmethod
    def create_payout(
        self,
        remote_account_id: str,
        amount: Decimal,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PayoutReceipt:
        """
        Create one payout. Raises RemoteError or BelowMinimumError; never retries.

        Repeating a call with the same ``idempotency_key`` must return the
        original payout rather than move money twice.
        """


class StripeGateway(PaymentGateway):
    """Stripe Connect implementation. Amounts cross the wire in minor units."""

    def __init__(
        self,
        api_key: str | None = None,
        currency: str | None = None,
        minimum_payout: Decimal | None = None,
    ) -> None:
        settings = get_settings().gateway
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.currency = (currency or settings.currency).lower()
        self.minimum_payout = (
            minimum_payout if minimum_payout is not None else settings.minimum_payout
        )
        stripe.max_network_retries = 0

    def _require_key(self) -> None:
        if not self.api_key:
            raise RemoteError("Stripe is not configured (GATEWAY_STRIPE_SECRET_KEY is empty)")

    def get_account_status(self, remote_account_id: str) -> RemoteAccountStatus:
        self._require_key()
        try:
            account = stripe.Account.retrieve(remote_account_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise RemoteError(f"Account lookup failed for {remote_account_id}: {e}") from e

        requirements: Any = account.get("requirements") or {}
        currently_due = requirements.get("currently_due") or []
        return RemoteAccountStatus(
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
            requirements=list(currently_due),
        )

    def get_balance(self, remote_account_id: str) -> Balance:
        self._require_key()
        try:
            balance = stripe.Balance.retrieve(
                stripe_account=remote_account_id, api_key=self.api_key
            )
        except stripe.StripeError as e:
            raise RemoteError(f"Balance lookup failed for {remote_account_id}: {e}") from e

        return Balance(
            available=self._amount_in_currency(balance.get("available") or []),
            pending=self._amount_in_currency(balance.get("pending") or []),
            currency=self.currency.upper(),
        )

    def create_payout(
        self,
        remote_account_id: str,
        amount: Decimal,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PayoutReceipt:
        self._require_key()
        amount = to_money(amount)
        if amount < self.minimum_payout:
            raise BelowMinimumError(
                f"Minimum payout amount is {self.minimum_payout} {self.currency.upper()}, got {amount}"
            )

        try:
            payout = stripe.Payout.create(
                amount=to_minor_units(amount),
                currency=self.currency,
                metadata=metadata,
                stripe_account=remote_account_id,
                api_key=self.api_key,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.warning(
                "Payout creation failed",
                remote_account_id=remote_account_id,
                amount=str(amount),
                error=str(e),
            )
            raise RemoteError(str(e)) from e

        arrival = payout.get("arrival_date")
        return PayoutReceipt(
            remote_payout_id=payout["id"],
            status=payout.get("status") or "pending",
            amount=from_minor_units(payout.get("amount", to_minor_units(amount))),
            arrival_estimate=datetime.fromtimestamp(arrival, tz=UTC).date() if arrival else None,
        )

    def _amount_in_currency(self, funds: list[Any]) -> Decimal:
        for fund in funds:
            if fund.get("currency") == self.currency:
                return from_minor_units(fund.get("amount", 0))
        return Decimal("0.00")

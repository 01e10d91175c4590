"""Payee account mapping and cached processor status."""

import structlog
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.enums import AccountStatus
from db.models import PayeeAccounts
from royalties.services._helpers import ensure_utc, iso
from royalties.services._types import PayeeAccountDict
from royalties.services.clock import Clock, SystemClock
from royalties.services.errors import ValidationError
from royalties.services.gateway import Balance, PaymentGateway, verification_status

logger = structlog.get_logger(__name__)


class PayeeService:
    def __init__(
        self, session: Session, gateway: PaymentGateway | None = None, clock: Clock | None = None
    ) -> None:
        self.session: Session = session
        self.gateway = gateway
        self.clock: Clock = clock or SystemClock()

    def get(self, payee_id: str) -> PayeeAccounts | None:
        return self.session.get(PayeeAccounts, payee_id)

    def list_accounts(self, status: AccountStatus | None = None) -> list[PayeeAccounts]:
        stmt: Select[tuple[PayeeAccounts]] = select(PayeeAccounts)
        if status:
            stmt = stmt.where(PayeeAccounts.account_status == status)
        return list(self.session.scalars(stmt.order_by(PayeeAccounts.payee_id)).all())

    def upsert(
        self,
        payee_id: str,
        display_name: str | None = None,
        email: str | None = None,
        remote_account_id: str | None = None,
    ) -> PayeeAccounts:
        """Create or update the mapping. Fields passed as None are left alone."""
        if not (payee_id or "").strip():
            raise ValidationError("payee_id is required")

        now = self.clock.now()
        account = self.get(payee_id)
        if account is None:
            account = PayeeAccounts(
                payee_id=payee_id,
                display_name=display_name or "",
                email=email,
                remote_account_id=remote_account_id or None,
                account_status=AccountStatus.CREATED if remote_account_id else AccountStatus.NONE,
                payouts_enabled=False,
                created_at=now,
                updated_at=now,
            )
            self.session.add(account)
            logger.info("Payee account created", payee_id=payee_id)
        else:
            if display_name is not None:
                account.display_name = display_name
            if email is not None:
                account.email = email
            if remote_account_id is not None and remote_account_id != account.remote_account_id:
                # A new remote account starts unverified.
                account.remote_account_id = remote_account_id or None
                account.account_status = (
                    AccountStatus.CREATED if remote_account_id else AccountStatus.NONE
                )
                account.payouts_enabled = False
                account.status_checked_at = None
            account.updated_at = now
        self.session.flush()
        return account

    def refresh_status(self, payee_id: str) -> PayeeAccounts:
        """Re-read account status from the processor and update the cache. GatewayError propagates."""
        account = self._require(payee_id)
        if not account.remote_account_id:
            raise ValidationError(f"Payee {payee_id} has no remote account")

        status = self._gateway().get_account_status(account.remote_account_id)
        account.account_status = verification_status(status)
        account.payouts_enabled = status.payouts_enabled
        account.status_checked_at = self.clock.now()
        account.updated_at = account.status_checked_at
        self.session.flush()
        logger.info(
            "Payee status refreshed",
            payee_id=payee_id,
            account_status=account.account_status.value,
            payouts_enabled=account.payouts_enabled,
        )
        return account

    def balance(self, payee_id: str) -> Balance:
        account = self._require(payee_id)
        if not account.remote_account_id:
            raise ValidationError(f"Payee {payee_id} has no remote account")
        return self._gateway().get_balance(account.remote_account_id)

    def _require(self, payee_id: str) -> PayeeAccounts:
        account = self.get(payee_id)
        if account is None:
            raise ValidationError(f"Unknown payee {payee_id}")
        return account

    def _gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise RuntimeError("PayeeService was created without a payment gateway")
        return self.gateway

    @staticmethod
    def to_dict(account: PayeeAccounts) -> PayeeAccountDict:
        return {
            "payee_id": account.payee_id,
            "display_name": account.display_name,
            "email": account.email,
            "remote_account_id": account.remote_account_id,
            "account_status": account.account_status.value,
            "payouts_enabled": account.payouts_enabled,
            "status_checked_at": iso(ensure_utc(account.status_checked_at)),
        }

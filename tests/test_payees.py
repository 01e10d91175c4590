"""Tests for royalties.services.payees."""

import pytest
from sqlalchemy.orm import Session

from db.enums import AccountStatus
from royalties.services.clock import FixedClock
from royalties.services.errors import RemoteError, ValidationError
from royalties.services.gateway import RemoteAccountStatus, verification_status
from royalties.services.payees import PayeeService
from tests.conftest import PAYOUT_DAY, FakeGateway


class TestUpsert:
    def test_create_without_remote_account(self, session: Session, clock: FixedClock) -> None:
        account = PayeeService(session, clock=clock).upsert("author-a", "Author A", "a@example.com")
        assert account.account_status == AccountStatus.NONE
        assert account.payouts_enabled is False

    def test_update_keeps_fields_not_given(self, session: Session, clock: FixedClock) -> None:
        service = PayeeService(session, clock=clock)
        service.upsert("author-a", "Author A", "a@example.com", "acct_a")

        account = service.upsert("author-a", display_name="A. Author")
        assert account.display_name == "A. Author"
        assert account.email == "a@example.com"
        assert account.remote_account_id == "acct_a"
        assert account.account_status == AccountStatus.CREATED

    def test_new_remote_account_resets_status(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        service = PayeeService(session, gateway, clock)
        service.upsert("author-a", remote_account_id="acct_a")
        gateway.enable("acct_a")
        service.refresh_status("author-a")

        account = service.upsert("author-a", remote_account_id="acct_b")
        assert account.account_status == AccountStatus.CREATED
        assert account.payouts_enabled is False
        assert account.status_checked_at is None

    def test_blank_id_rejected(self, session: Session) -> None:
        with pytest.raises(ValidationError):
            PayeeService(session).upsert("  ")


class TestRefreshStatus:
    def test_caches_remote_status(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        service = PayeeService(session, gateway, clock)
        service.upsert("author-a", remote_account_id="acct_a")
        gateway.enable("acct_a")

        account = service.refresh_status("author-a")
        assert account.account_status == AccountStatus.VERIFIED
        assert account.payouts_enabled is True
        assert PayeeService.to_dict(account)["status_checked_at"] == PAYOUT_DAY.isoformat()

    def test_gateway_error_propagates(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        service = PayeeService(session, gateway, clock)
        service.upsert("author-a", remote_account_id="acct_a")
        gateway.failing_status.add("acct_a")

        with pytest.raises(RemoteError):
            service.refresh_status("author-a")

    def test_requires_known_payee_with_account(
        self, session: Session, gateway: FakeGateway, clock: FixedClock
    ) -> None:
        service = PayeeService(session, gateway, clock)
        with pytest.raises(ValidationError):
            service.refresh_status("nobody")
        service.upsert("author-a")
        with pytest.raises(ValidationError):
            service.refresh_status("author-a")


class TestVerificationStatus:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (RemoteAccountStatus(True, True, True), AccountStatus.VERIFIED),
            (RemoteAccountStatus(False, False, True), AccountStatus.PENDING_VERIFICATION),
            (RemoteAccountStatus(False, False, False, ["external_account"]), AccountStatus.REQUIRES_INFORMATION),
            (RemoteAccountStatus(False, False, False), AccountStatus.CREATED),
        ],
    )
    def test_mapping(self, status: RemoteAccountStatus, expected: AccountStatus) -> None:
        assert verification_status(status) == expected

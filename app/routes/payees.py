"""Payee account and earnings endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.dependencies import get_api_key, get_context, get_db
from app.schemas.royalties import (
    EarningsSummaryResponse,
    PayeeAccountResponse,
    PayeeBalanceResponse,
    PayeeUpdate,
)
from royalties.context import AppContext
from royalties.services._types import EarningsSummaryDict, PayeeAccountDict
from royalties.services.eligibility import eligibility_cutoff
from royalties.services.errors import GatewayError, ValidationError
from royalties.services.ledger import RoyaltyLedger
from royalties.services.payees import PayeeService

router = APIRouter(prefix="/api", tags=["payees"])


@router.get("/payees", response_model=list[PayeeAccountResponse])
def list_payees(db: Session = Depends(get_db)) -> list[PayeeAccountDict]:
    svc = PayeeService(db)
    return [svc.to_dict(a) for a in svc.list_accounts()]


@router.get("/payees/{payee_id}", response_model=PayeeAccountResponse)
def get_payee(payee_id: str, db: Session = Depends(get_db)) -> PayeeAccountDict:
    svc = PayeeService(db)
    account = svc.get(payee_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Payee not found")
    return svc.to_dict(account)


@router.get("/payees/{payee_id}/earnings", response_model=EarningsSummaryResponse)
def payee_earnings(
    payee_id: str,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> EarningsSummaryDict:
    cutoff = eligibility_cutoff(ctx.clock.today(), ctx.settings.payout.aging_window_months)
    return RoyaltyLedger(db).earnings_summary(payee_id, ctx.clock.now(), cutoff)


@router.get("/payees/{payee_id}/balance", response_model=PayeeBalanceResponse)
def payee_balance(
    payee_id: str,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    svc = PayeeService(db, ctx.gateway, ctx.clock)
    if svc.get(payee_id) is None:
        raise HTTPException(status_code=404, detail="Payee not found")
    try:
        balance = svc.balance(payee_id)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {
        "payee_id": payee_id,
        "available": str(balance.available),
        "pending": str(balance.pending),
        "currency": balance.currency,
    }


@router.put("/payees/{payee_id}", response_model=PayeeAccountResponse)
def upsert_payee(
    payee_id: str,
    body: PayeeUpdate,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
    _key: str = Depends(get_api_key),
) -> PayeeAccountDict:
    svc = PayeeService(db, ctx.gateway, ctx.clock)
    try:
        account = svc.upsert(
            payee_id,
            display_name=body.display_name,
            email=body.email,
            remote_account_id=body.remote_account_id,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return svc.to_dict(account)


@router.post("/payees/{payee_id}/refresh", response_model=PayeeAccountResponse)
def refresh_payee(
    payee_id: str,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
    _key: str = Depends(get_api_key),
) -> PayeeAccountDict:
    svc = PayeeService(db, ctx.gateway, ctx.clock)
    if svc.get(payee_id) is None:
        raise HTTPException(status_code=404, detail="Payee not found")
    try:
        account = svc.refresh_status(payee_id)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return svc.to_dict(account)

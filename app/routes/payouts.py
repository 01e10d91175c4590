"""Payout preview, trigger/cancel and history endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.dependencies import get_api_key, get_context, get_db
from app.schemas.payouts import (
    BatchResponse,
    CancelRequest,
    PayoutPreviewResponse,
    PayoutRecordResponse,
    TriggerRequest,
    TriggerResponse,
)
from db.enums import BatchStatus
from royalties.context import AppContext, CancelBatch, TriggerPayout
from royalties.services._types import BatchDict, PayoutRecordDict
from royalties.services.eligibility import EligibilityAggregator
from royalties.services.errors import ConflictError, ValidationError
from royalties.services.payout_workflow import PayoutWorkflow

router = APIRouter(prefix="/api/payouts", tags=["payouts"])


@router.get("/preview", response_model=PayoutPreviewResponse)
def preview(
    window_months_ago: int | None = Query(None, ge=1, le=24),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> dict[str, object]:
    result = EligibilityAggregator(db, ctx.gateway, ctx.clock).preview(window_months_ago)
    return {
        "payees": [p.to_snapshot() for p in result.payees],
        "vendor_count": result.vendor_count,
        "total_amount": str(result.total_amount),
        "next_payout_date": result.next_payout_date.isoformat(),
        "eligibility_cutoff": result.eligibility_cutoff.isoformat(),
    }


@router.post("/trigger", response_model=TriggerResponse)
def trigger(
    body: TriggerRequest | None = None,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
    _key: str = Depends(get_api_key),
) -> dict[str, object]:
    body = body or TriggerRequest()
    try:
        result = ctx.dispatch(
            TriggerPayout(window_months_ago=body.window_months_ago, min_amount=body.min_amount),
            db,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        "batch_id": result.batch_id,
        "status": result.status.value,
        "vendor_count": result.vendor_count,
        "total_amount": str(result.total_amount),
        "scheduled_at": result.scheduled_at.isoformat(),
        "created": result.created,
    }


@router.post("/cancel", response_model=BatchResponse)
def cancel(
    body: CancelRequest | None = None,
    batch_id: str | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
    _key: str = Depends(get_api_key),
) -> BatchDict:
    target = (body.batch_id if body else None) or batch_id
    try:
        batch = ctx.dispatch(CancelBatch(target), db)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return PayoutWorkflow.batch_to_dict(batch)


@router.get("/batches", response_model=list[BatchResponse])
def list_batches(
    status: BatchStatus | None = Query(None),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> list[BatchDict]:
    workflow = ctx.workflow(db)
    return [workflow.batch_to_dict(b) for b in workflow.list_batches(status, limit, offset)]


@router.get("/batches/current", response_model=BatchResponse | None)
def current_batch(
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> BatchDict | None:
    batch = ctx.workflow(db).current_batch()
    return PayoutWorkflow.batch_to_dict(batch) if batch else None


@router.get("/batches/{batch_id}", response_model=BatchResponse)
def get_batch(
    batch_id: str,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> BatchDict:
    batch = ctx.workflow(db).get_batch(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return PayoutWorkflow.batch_to_dict(batch)


@router.get("/records", response_model=list[PayoutRecordResponse])
def list_records(
    payee_id: str | None = Query(None),
    batch_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> list[PayoutRecordDict]:
    workflow = ctx.workflow(db)
    return [workflow.record_to_dict(r) for r in workflow.list_records(payee_id, batch_id, limit, offset)]

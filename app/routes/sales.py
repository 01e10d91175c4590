"""Sale ingestion and royalty ledger endpoints. Thin routes, logic in services."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.dependencies import get_api_key, get_context, get_db
from app.schemas.royalties import (
    RoyaltyEntryResponse,
    SaleCompletedRequest,
    SaleIngestionResponse,
)
from db.enums import RoyaltyStatus
from royalties.context import AppContext
from royalties.services._types import RoyaltyEntryDict
from royalties.services.errors import ValidationError
from royalties.services.ledger import RoyaltyLedger

router: APIRouter = APIRouter(prefix="/api", tags=["sales"])


@router.post("/sales", response_model=SaleIngestionResponse)
def record_sale(
    body: SaleCompletedRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
    _key: str = Depends(get_api_key),
) -> dict[str, object]:
    try:
        result = ctx.dispatch(body.to_command(), db)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        "sale_id": result.sale_id,
        "entry_ids": result.entry_ids,
        "created": result.created,
        "duplicates": result.duplicates,
        "total_royalty": str(result.total_royalty),
    }


@router.get("/royalties", response_model=list[RoyaltyEntryResponse])
def list_royalties(
    payee_id: str | None = Query(None),
    status: RoyaltyStatus | None = Query(None),
    sale_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> list[RoyaltyEntryDict]:
    return RoyaltyLedger(db).list_entries(payee_id, status, sale_id, limit, offset)

"""Corporate action endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from chainequity_api.db.session import get_db
from chainequity_api.ledger.corporate import BASIS_POINTS, CorporateActionLedger, CorporateActionType

router = APIRouter(prefix="/v1/corporate", tags=["corporate"])


class CorporateActionResponse(BaseModel):
    """Stored corporate action."""

    id: int
    action_type: str
    block_number: int
    transaction_hash: str
    log_index: Optional[int] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    block_timestamp: int
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/actions", response_model=list[CorporateActionResponse])
async def list_actions(
    action_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Corporate actions, latest first."""
    kind = None
    if action_type:
        try:
            kind = CorporateActionType(action_type)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown action type '{action_type}'",
            )
    return CorporateActionLedger(db).history(kind, limit)


@router.get("/splits", response_model=list[CorporateActionResponse])
async def list_splits(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Stock splits, latest first."""
    return CorporateActionLedger(db).splits(limit)


@router.get("/multiplier")
async def split_multiplier(db: Session = Depends(get_db)):
    """Current split multiplier and whether the recorded split chain folds to it."""
    ledger = CorporateActionLedger(db)
    current = ledger.current_split_multiplier()
    consistent, problem = ledger.verify_split_chain()
    return {
        "split_multiplier": current,
        "split_ratio": current / BASIS_POINTS,
        "folded_multiplier": ledger.folded_split_multiplier(),
        "consistent": consistent,
        "problem": problem,
    }


@router.get("/token")
async def token_info(db: Session = Depends(get_db)):
    """Latest symbol and name from recorded changes."""
    ledger = CorporateActionLedger(db)
    return {
        "symbol": ledger.latest_value(CorporateActionType.SYMBOL_CHANGE),
        "name": ledger.latest_value(CorporateActionType.NAME_CHANGE),
        "split_multiplier": ledger.current_split_multiplier(),
    }

"""Event journal endpoints."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from chainequity_api.chain.types import EventKind
from chainequity_api.db.session import get_db
from chainequity_api.ledger.events import EventStore

router = APIRouter(prefix="/v1/events", tags=["events"])

WALLET_EVENT_KINDS = [EventKind.WALLET_APPROVED, EventKind.WALLET_REVOKED]
CORPORATE_EVENT_KINDS = [EventKind.STOCK_SPLIT, EventKind.SYMBOL_CHANGED, EventKind.NAME_CHANGED]


class EventResponse(BaseModel):
    """Stored chain event."""

    id: int
    block_number: int
    transaction_hash: str
    log_index: Optional[int] = None
    event_type: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[str] = None
    payload_json: Optional[dict[str, Any]] = None
    block_timestamp: int
    created_at: datetime

    class Config:
        from_attributes = True


def _parse_kind(value: str) -> EventKind:
    try:
        return EventKind(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown event type '{value}'. Expected one of: {', '.join(k.value for k in EventKind)}",
        )


@router.get("", response_model=list[EventResponse])
async def list_events(
    event_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Recent events, latest first, optionally filtered by type."""
    store = EventStore(db)
    if event_type:
        return store.events_by_type(_parse_kind(event_type), limit)
    return store.recent_events(limit, offset)


@router.get("/transfers", response_model=list[EventResponse])
async def list_transfers(
    limit: int = Query(10, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Transfer events, latest first."""
    return EventStore(db).events_by_type(EventKind.TRANSFER, limit)


@router.get("/wallet-approvals", response_model=list[EventResponse])
async def list_wallet_approvals(
    limit: int = Query(10, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Wallet approvals and revocations, latest first."""
    return EventStore(db).events_by_types(WALLET_EVENT_KINDS, limit)


@router.get("/corporate", response_model=list[EventResponse])
async def list_corporate_events(
    limit: int = Query(10, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Split, symbol and name change events, latest first."""
    return EventStore(db).events_by_types(CORPORATE_EVENT_KINDS, limit)


@router.get("/counts")
async def event_counts(db: Session = Depends(get_db)):
    """Number of stored events per type."""
    counts = EventStore(db).event_counts()
    return {"counts": counts, "total": sum(counts.values())}


@router.get("/blocks", response_model=list[EventResponse])
async def events_in_block_range(
    from_block: int = Query(..., ge=0),
    to_block: int = Query(..., ge=0),
    db: Session = Depends(get_db),
):
    """Events in an inclusive block range, oldest first."""
    if to_block < from_block:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="to_block must be greater than or equal to from_block",
        )
    return EventStore(db).events_by_block_range(from_block, to_block)


@router.get("/address/{address}", response_model=list[EventResponse])
async def events_for_address(
    address: str,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Events sent or received by an address, latest first."""
    try:
        return EventStore(db).events_by_address(address, limit)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

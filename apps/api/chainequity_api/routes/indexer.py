"""Indexer control endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from chainequity_api.celery_client import BACKFILL_TASK, get_celery_app
from chainequity_api.indexer.watcher import LiveWatcher
from chainequity_api.ledger.balances import BalanceLedger
from chainequity_api.ledger.corporate import CorporateActionLedger
from chainequity_api.ledger.sync_state import SyncState

router = APIRouter(prefix="/v1/indexer", tags=["indexer"])
logger = logging.getLogger(__name__)


def _watcher(request: Request) -> LiveWatcher:
    watcher = getattr(request.app.state, "watcher", None)
    if watcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Live watcher is not configured (set RPC_URL and TOKEN_CONTRACT_ADDRESS)",
        )
    return watcher


@router.get("/watermark")
async def get_watermark(request: Request):
    """Highest block fully ingested."""
    with request.app.state.database.read_session() as db:
        return {"watermark": SyncState(db).get_watermark()}


@router.get("/status")
def get_status(request: Request):
    """Watcher state, or just the watermark when no watcher is configured."""
    watcher = getattr(request.app.state, "watcher", None)
    if watcher is None:
        with request.app.state.database.read_session() as db:
            return {"configured": False, "running": False, "watermark": SyncState(db).get_watermark()}
    return {"configured": True, **watcher.status()}


@router.post("/start")
def start_watcher(request: Request):
    """Start the live watcher."""
    watcher = _watcher(request)
    watcher.start()
    logger.info(f"Watcher start requested (correlation_id={getattr(request.state, 'correlation_id', None)})")
    return watcher.status()


@router.post("/stop")
def stop_watcher(request: Request):
    """Stop the live watcher after the in-flight range."""
    watcher = _watcher(request)
    watcher.stop()
    logger.info(f"Watcher stop requested (correlation_id={getattr(request.state, 'correlation_id', None)})")
    return watcher.status()


@router.get("/verify")
def verify_ledger(request: Request):
    """Replay Transfer events and split ratios against the derived ledgers."""
    with request.app.state.database.read_session() as db:
        mismatches = BalanceLedger(db).verify_balances()
        splits_ok, split_problem = CorporateActionLedger(db).verify_split_chain()
    return {
        "consistent": not mismatches and splits_ok,
        "balance_mismatches": mismatches,
        "split_chain_consistent": splits_ok,
        "split_chain_problem": split_problem,
    }


class BackfillRequest(BaseModel):
    """Backfill request; omitted bounds mean watermark + 1 and chain head."""

    from_block: Optional[int] = Field(None, ge=0)
    to_block: Optional[int] = Field(None, ge=0)


@router.post("/backfill", status_code=status.HTTP_202_ACCEPTED)
def enqueue_backfill(body: BackfillRequest, request: Request):
    """Hand a backfill to the worker; it takes the shared writer lock."""
    if body.from_block is not None and body.to_block is not None and body.to_block < body.from_block:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="to_block must be greater than or equal to from_block",
        )
    watcher = getattr(request.app.state, "watcher", None)
    if watcher is not None and watcher.is_running() and request.app.state.settings.writer_lock_backend != "redis":
        # the worker cannot see an in-process lock; only a redis lock serializes the two writers
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Stop the live watcher or use the redis writer lock before enqueueing a backfill",
        )
    correlation_id = getattr(request.state, "correlation_id", None)
    try:
        task = get_celery_app().signature(
            BACKFILL_TASK,
            kwargs={"from_block": body.from_block, "to_block": body.to_block, "correlation_id": correlation_id},
        ).apply_async()
    except (ConnectionError, TimeoutError, OSError) as e:
        logger.error(f"Failed to enqueue backfill: {e}", extra={"correlation_id": correlation_id})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "failed", "error_code": "BROKER_UNAVAILABLE", "detail": str(e)},
            headers={"Retry-After": "30"},
        )
    logger.info(f"Enqueued backfill task {task.id}", extra={"correlation_id": correlation_id})
    return {"status": "queued", "task_id": task.id}

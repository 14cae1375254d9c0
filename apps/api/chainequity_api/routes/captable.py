"""Cap table endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from chainequity_api.analytics.captable import CapTableService
from chainequity_api.analytics.export import export_cap_table
from chainequity_api.db.session import get_db

router = APIRouter(prefix="/v1/captable", tags=["captable"])

EXPORT_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json"}


def get_captable_service(request: Request, db: Session = Depends(get_db)) -> CapTableService:
    """Cap table service bound to the request's read snapshot."""
    return CapTableService(db, decimals=request.app.state.settings.token_decimals)


@router.get("")
async def get_cap_table(
    limit: Optional[int] = Query(None, ge=1),
    service: CapTableService = Depends(get_captable_service),
):
    """Current cap table, largest holders first."""
    return service.cap_table(limit).to_dict(service.decimals)


@router.get("/summary")
async def get_summary(service: CapTableService = Depends(get_captable_service)):
    """Holder statistics and concentration metrics."""
    return service.summary()


@router.get("/overview")
async def get_overview(service: CapTableService = Depends(get_captable_service)):
    """Supply, holder count and recent corporate activity."""
    return service.overview()


@router.get("/distribution")
async def get_distribution(service: CapTableService = Depends(get_captable_service)):
    """Ownership buckets and decentralization metrics."""
    return service.distribution()


@router.get("/supply")
async def get_supply(service: CapTableService = Depends(get_captable_service)):
    """Raw and display supply."""
    return service.supply()


@router.get("/top/{n}")
async def get_top_holders(n: int, service: CapTableService = Depends(get_captable_service)):
    """The n largest holders."""
    return [entry.to_dict(service.decimals) for entry in service.top_n(n)]


@router.get("/holders/{address}")
async def get_holder(address: str, service: CapTableService = Depends(get_captable_service)):
    """Balance, ownership and transfer history of one holder."""
    return service.holder_detail(address)


@router.get("/snapshot/{block_number}")
async def get_snapshot(block_number: int, service: CapTableService = Depends(get_captable_service)):
    """Cap table as of a past block."""
    return service.snapshot_at(block_number).to_dict(service.decimals)


@router.get("/export")
async def export(
    fmt: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    block_number: Optional[int] = Query(None, ge=0),
    service: CapTableService = Depends(get_captable_service),
):
    """Download the cap table as CSV or JSON."""
    table = service.cap_table() if block_number is None else service.snapshot_at(block_number)
    suffix = table.block_number if table.block_number is not None else "empty"
    return Response(
        content=export_cap_table(table, fmt, service.decimals),
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="captable-{suffix}.{fmt}"'},
    )

"""Scans API router — start scan batches and read scan records."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status

from vscan.api.dependencies import ServicesDep
from vscan.core.logging import get_logger
from vscan.core.services import Services
from vscan.mounting.jobs import CancelToken
from vscan.scanning.batch import BatchItem, BatchResult
from vscan.schemas.scan import BatchAccepted, BatchOut, ScanCreate, ScanRecordList, ScanRecordOut

router = APIRouter(prefix="/scans", tags=["scans"])
logger = get_logger(__name__)


@router.get("", response_model=ScanRecordList)
async def list_scans(
    services: ServicesDep,
    item_name: str | None = Query(None),
    batch_id: str | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=200),
) -> ScanRecordList:
    total, records = await services.vulnerabilities.list_scans(
        item_name=item_name, batch_id=batch_id, skip=skip, limit=limit
    )
    return ScanRecordList(total=total, items=records)


@router.post("", response_model=BatchAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_batch(payload: ScanCreate, background_tasks: BackgroundTasks, services: ServicesDep) -> BatchAccepted:
    # Validate scanner names upfront
    unknown = [s for s in payload.scanners if services.registry.get(s) is None]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown scanners: {unknown}. Available: {services.registry.names()}",
        )
    if services.pool.get(payload.host) is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Host {payload.host} is not connected")

    batch_id = str(uuid.uuid4())
    token = CancelToken()
    services.batch_tokens[batch_id] = token
    services.batch_results[batch_id] = None
    items = [BatchItem(i.item_name, i.restore_point_id, list(i.disk_names)) for i in payload.items]
    background_tasks.add_task(
        _run_batch,
        services,
        batch_id=batch_id,
        host=payload.host,
        items=items,
        scanners=payload.scanners,
        keep_mounted=payload.keep_mounted,
        cancel=token,
    )
    logger.info("Scan batch queued", batch_id=batch_id, host=payload.host, items=len(items))
    return BatchAccepted(batch_id=batch_id, host=payload.host, items=len(items), scanners=payload.scanners)


@router.get("/batches/{batch_id}", response_model=BatchOut)
async def get_batch(batch_id: str, services: ServicesDep) -> BatchOut:
    if batch_id not in services.batch_results:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")
    result = services.batch_results[batch_id]
    if batch_id in services.batch_tokens:
        state = "cancelling" if services.batch_tokens[batch_id].cancelled else "running"
    elif isinstance(result, BatchResult):
        state = "finished"
    else:
        state = "error"
    return BatchOut(batch_id=batch_id, state=state, result=result.to_dict() if result else None)


@router.post("/batches/{batch_id}/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_batch(batch_id: str, services: ServicesDep) -> dict[str, str]:
    token = services.batch_tokens.get(batch_id)
    if token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No running batch with this id")
    token.cancel()
    return {"batch_id": batch_id, "state": "cancelling"}


@router.get("/{scan_id}", response_model=ScanRecordOut)
async def get_scan(scan_id: uuid.UUID, services: ServicesDep) -> ScanRecordOut:
    record = await services.vulnerabilities.get_scan(scan_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")
    return record


# ── Background batch execution ───────────────────────────────────────────────

async def _run_batch(
    services: Services,
    *,
    batch_id: str,
    host: str,
    items: list[BatchItem],
    scanners: list[str],
    keep_mounted: bool,
    cancel: CancelToken,
) -> None:
    result = None
    try:
        result = await services.batches.run(
            host, items, scanners, batch_id=batch_id, cancel=cancel, keep_mounted=keep_mounted
        )
    except Exception:
        logger.exception("Scan batch crashed", batch_id=batch_id)
    finally:
        services.finish_batch(batch_id, result)

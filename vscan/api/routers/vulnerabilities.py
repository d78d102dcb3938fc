"""Vulnerabilities API router — browse findings and set their review status."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException, Query, status

from vscan.api.dependencies import ServicesDep
from vscan.core.logging import get_logger
from vscan.schemas.vulnerability import HistoryOut, VulnerabilityList, VulnerabilityOut, VulnerabilityStatusUpdate

router = APIRouter(prefix="/vulnerabilities", tags=["vulnerabilities"])
logger = get_logger(__name__)


@router.get("", response_model=VulnerabilityList)
async def list_vulnerabilities(
    services: ServicesDep,
    search: str | None = Query(None, description="Match on finding id or package name"),
    severity: str | None = Query(None),
    item_name: str | None = Query(None),
    scanner_type: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    in_kev: bool | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
) -> VulnerabilityList:
    total, items = await services.vulnerabilities.list(
        search=search,
        severity=severity,
        item_name=item_name,
        scanner_type=scanner_type,
        status=status_filter,
        in_kev=in_kev,
        skip=skip,
        limit=limit,
    )
    return VulnerabilityList(total=total, items=items)


@router.get("/{vulnerability_id}", response_model=VulnerabilityOut)
async def get_vulnerability(vulnerability_id: uuid.UUID, services: ServicesDep) -> VulnerabilityOut:
    vuln = await services.vulnerabilities.get(vulnerability_id)
    if not vuln:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vulnerability not found")
    return vuln


@router.get("/{vulnerability_id}/history", response_model=list[HistoryOut])
async def get_history(vulnerability_id: uuid.UUID, services: ServicesDep) -> list[HistoryOut]:
    return list(await services.vulnerabilities.history(vulnerability_id))


@router.patch("/{vulnerability_id}", response_model=VulnerabilityOut)
async def update_status(
    vulnerability_id: uuid.UUID, payload: VulnerabilityStatusUpdate, services: ServicesDep
) -> VulnerabilityOut:
    vuln = await services.vulnerabilities.set_status(vulnerability_id, payload.status)
    if not vuln:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vulnerability not found")
    logger.info("Vulnerability status changed", id=str(vulnerability_id), status=payload.status)
    return vuln

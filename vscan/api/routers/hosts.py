"""Scan hosts API router — sessions, provisioning and local mounts."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import func, select

from vscan.api.dependencies import DbDep, ServicesDep
from vscan.core.logging import get_logger
from vscan.models.scan_host import ScanHost
from vscan.remote.pool import HostSession
from vscan.schemas.host import (
    ActiveMountOut,
    HostConnect,
    HostList,
    MountCreate,
    MountRecordOut,
    MountRemove,
    ProvisionRequest,
    ScannerStatusOut,
    SessionOut,
)

router = APIRouter(prefix="/hosts", tags=["hosts"])
logger = get_logger(__name__)


def _session_out(session: HostSession, alive: bool) -> SessionOut:
    return SessionOut(
        host=session.host,
        port=session.port,
        username=session.username,
        status=session.status,
        alive=alive,
        inventory=session.inventory,
    )


@router.get("", response_model=HostList)
async def list_hosts(
    db: DbDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
) -> HostList:
    total = (await db.execute(select(func.count()).select_from(ScanHost))).scalar_one()
    result = await db.execute(select(ScanHost).order_by(ScanHost.address).offset(skip).limit(limit))
    return HostList(total=total, items=list(result.scalars().all()))


@router.post("/connect", response_model=SessionOut)
async def connect_host(payload: HostConnect, services: ServicesDep) -> SessionOut:
    await services.hosts.save_host(payload.address, payload.username, payload.secret, payload.port)
    session = await services.pool.connect(payload.address, payload.username, payload.secret, payload.port)
    return _session_out(session, alive=True)


@router.get("/sessions", response_model=list[SessionOut])
async def list_sessions(services: ServicesDep) -> list[SessionOut]:
    return [_session_out(s, alive=s.status == "connected") for s in services.pool.sessions()]


@router.get("/{address}/status", response_model=SessionOut)
async def host_status(address: str, services: ServicesDep) -> SessionOut:
    session = services.pool.get(address)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No session for host")
    return _session_out(session, alive=await services.pool.is_alive(address))


@router.post("/{address}/disconnect", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_host(address: str, services: ServicesDep) -> None:
    if not await services.pool.disconnect(address):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No session for host")


@router.post("/{address}/provision", response_model=list[ScannerStatusOut])
async def provision_host(address: str, payload: ProvisionRequest, services: ServicesDep) -> list[ScannerStatusOut]:
    unknown = [s for s in payload.scanners if services.registry.get(s) is None]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown scanners: {unknown}. Available: {services.registry.names()}",
        )
    results = []
    for name in payload.scanners:
        scanner_status = await services.provisioning.ensure_scanner(address, name)
        results.append(ScannerStatusOut(**vars(scanner_status)))
    return results


# ── Local mounts on the scan host ────────────────────────────────────────────

@router.get("/{address}/mounts", response_model=list[ActiveMountOut])
async def active_mounts(
    address: str,
    services: ServicesDep,
    prefix: str | None = Query(None, description="Only mount paths starting with this prefix"),
) -> list[ActiveMountOut]:
    mounts = await services.host_mounts.active_mounts(address, prefix)
    return [ActiveMountOut(**vars(m)) for m in mounts]


@router.post("/{address}/mounts", response_model=ActiveMountOut, status_code=status.HTTP_201_CREATED)
async def mount_device(address: str, payload: MountCreate, services: ServicesDep) -> ActiveMountOut:
    mounted = await services.host_mounts.mount(
        address, payload.device, payload.mount_point, options=payload.options, fs_type=payload.fs_type
    )
    return ActiveMountOut(**vars(mounted))


@router.post("/{address}/mounts/unmount")
async def unmount_device(address: str, payload: MountRemove, services: ServicesDep) -> dict[str, bool]:
    was_mounted = await services.host_mounts.unmount(address, payload.mount_point, force=payload.force)
    return {"was_mounted": was_mounted}


@router.get("/{address}/mount-records", response_model=list[MountRecordOut])
async def mount_records(address: str, services: ServicesDep) -> list[MountRecordOut]:
    return list(await services.mounts.active(address))

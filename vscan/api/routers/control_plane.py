"""Control-plane API router — backup server session and inventory browsing."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from vscan.api.dependencies import ServicesDep
from vscan.core.logging import get_logger
from vscan.gateway.control_plane import ControlPlaneCredentials
from vscan.schemas.control_plane import ControlPlaneConnect, ControlPlaneStatus, InventoryList

router = APIRouter(prefix="/control-plane", tags=["control-plane"])
logger = get_logger(__name__)


@router.get("/status", response_model=ControlPlaneStatus)
async def get_status(services: ServicesDep) -> ControlPlaneStatus:
    return ControlPlaneStatus(**services.gateway.status())


@router.post("/connect", response_model=ControlPlaneStatus)
async def connect(payload: ControlPlaneConnect, services: ServicesDep) -> ControlPlaneStatus:
    info = await services.gateway.connect(payload.server, payload.username, payload.password, payload.port)
    credentials = services.gateway.credentials
    await services.control_planes.save(
        credentials.server,
        credentials.port,
        credentials.username,
        credentials.password_enc,
        info.get("version"),
    )
    logger.info("Control plane connected", server=payload.server, version=info.get("version"))
    return ControlPlaneStatus(**services.gateway.status())


@router.post("/restore", response_model=ControlPlaneStatus)
async def restore(services: ServicesDep) -> ControlPlaneStatus:
    """Reconnect with the last credentials that worked."""
    row = await services.control_planes.latest()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No saved control-plane server")
    await services.gateway.restore(
        ControlPlaneCredentials(
            server=row.server, port=row.port, username=row.username, password_enc=row.password_enc
        )
    )
    return ControlPlaneStatus(**services.gateway.status())


@router.post("/disconnect", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect(services: ServicesDep) -> None:
    await services.gateway.disconnect()
    await services.control_planes.mark_disconnected()


@router.get("/items", response_model=InventoryList)
async def list_items(services: ServicesDep, search: str | None = Query(None, max_length=255)) -> InventoryList:
    items = await services.gateway.list_items(search)
    return InventoryList(total=len(items), items=items)


@router.get("/items/{item_name}/restore-points", response_model=InventoryList)
async def list_restore_points(item_name: str, services: ServicesDep) -> InventoryList:
    points = await services.gateway.list_restore_points(item_name)
    return InventoryList(total=len(points), items=points)


@router.get("/restore-points/{restore_point_id}/disks", response_model=InventoryList)
async def list_disks(restore_point_id: str, services: ServicesDep) -> InventoryList:
    disks = await services.gateway.list_disks(restore_point_id)
    return InventoryList(total=len(disks), items=disks)

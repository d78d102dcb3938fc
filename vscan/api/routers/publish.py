"""Publish jobs API router — mount backup content on a scan host, unmount it."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, status

from vscan.api.dependencies import ServicesDep
from vscan.core.errors import VScanError
from vscan.core.logging import get_logger
from vscan.core.services import Services
from vscan.mounting.jobs import PublishRequest
from vscan.schemas.publish import PublishAccepted, PublishCreate, PublishJobList, PublishJobOut

router = APIRouter(prefix="/publish", tags=["publish"])
logger = get_logger(__name__)


@router.get("", response_model=PublishJobList)
async def list_jobs(services: ServicesDep) -> PublishJobList:
    jobs = sorted(services.jobs.all(), key=lambda j: j.created_at, reverse=True)
    return PublishJobList(total=len(jobs), items=[PublishJobOut(**j.to_dict()) for j in jobs])


@router.post("", response_model=PublishAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_job(payload: PublishCreate, background_tasks: BackgroundTasks, services: ServicesDep) -> PublishAccepted:
    request = PublishRequest(
        item_name=payload.item_name,
        restore_point_id=payload.restore_point_id,
        disk_names=payload.disk_names,
        target_host=payload.target_host,
        reason=payload.reason,
    )
    background_tasks.add_task(_run_publish, services, request)
    return PublishAccepted(request_id=request.id, item_name=request.item_name)


@router.get("/requests/{request_id}", response_model=PublishJobOut)
async def get_request(request_id: str, services: ServicesDep) -> PublishJobOut:
    """Latest attempt made for a publish request."""
    return PublishJobOut(**services.jobs.latest(request_id).to_dict())


@router.get("/{job_id}", response_model=PublishJobOut)
async def get_job(job_id: str, services: ServicesDep) -> PublishJobOut:
    return PublishJobOut(**services.jobs.get(job_id).to_dict())


@router.delete("/{job_id}", response_model=PublishJobOut)
async def unmount_job(job_id: str, services: ServicesDep) -> PublishJobOut:
    job = await services.unmount.unmount(job_id)
    return PublishJobOut(**job.to_dict())


@router.delete("")
async def unmount_all(services: ServicesDep) -> dict[str, str | None]:
    return await services.unmount.unmount_all()


async def _run_publish(services: Services, request: PublishRequest) -> None:
    try:
        job = await services.coordinator.mount(request)
        logger.info("Publish request mounted", request_id=request.id, job_id=job.id)
    except VScanError as exc:
        logger.warning("Publish request failed", request_id=request.id, kind=exc.kind, error=exc.message)

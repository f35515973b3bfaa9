"""
Scheduled job inspection and manual triggering (admin only).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from geoattend.api.v1.deps import require_admin, get_services
from geoattend.models.user import User
from geoattend.schemas.attendance import JobRead, JobTriggerResponse
from geoattend.services.container import Services

router = APIRouter(prefix="/jobs", tags=["jobs"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[JobRead])
async def list_jobs(
    services: Services = Depends(get_services),
    _admin: User = Depends(require_admin),
) -> list[JobRead]:
    return [JobRead.model_validate(job) for job in services.orchestrator.jobs()]


@router.post("/{name}/trigger", response_model=JobTriggerResponse)
async def trigger_job(
    name: str,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> JobTriggerResponse:
    """Run *name* now, outside its schedule. The outcome is reported, never raised."""
    orchestrator = services.orchestrator
    if not orchestrator.has_job(name):
        raise HTTPException(status_code=404, detail=f"Unknown job '{name}'")

    logger.info("Job %s triggered manually by %s", name, admin.email)
    success = await orchestrator.trigger_manually(name)
    snapshot = orchestrator.get(name)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Unknown job '{name}'")
    return JobTriggerResponse(success=success, job=JobRead.model_validate(snapshot))

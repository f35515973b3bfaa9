"""
Employee administration endpoints.

- GET operations require any authenticated user.
- PUT / DELETE operations require admin role.
- Employees are created by the bot's contact-sharing registration, never here.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from geoattend.api.v1.deps import get_current_active_user, get_services, require_admin
from geoattend.models.user import User
from geoattend.schemas.attendance import (AttendanceDayRead, DeleteResponse,
                                          EmployeeRead, EmployeeUpdate)
from geoattend.services.container import Services

router = APIRouter(prefix="/employees", tags=["employees"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[EmployeeRead])
async def list_employees(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, le=500),
    department: str | None = None,
    include_inactive: bool = False,
    services: Services = Depends(get_services),
    _user: User = Depends(get_current_active_user),
) -> list[EmployeeRead]:
    employees = await services.store.list_employees(
        active=None if include_inactive else True,
        department=department,
        skip=skip,
        limit=limit,
    )
    return [EmployeeRead.model_validate(e) for e in employees]


@router.get("/{employee_id}", response_model=EmployeeRead)
async def get_employee(
    employee_id: int,
    services: Services = Depends(get_services),
    _user: User = Depends(get_current_active_user),
) -> EmployeeRead:
    employee = await services.store.get_employee(employee_id)
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    return EmployeeRead.model_validate(employee)


@router.put("/{employee_id}", response_model=EmployeeRead)
async def update_employee(
    employee_id: int,
    body: EmployeeUpdate,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> EmployeeRead:
    patch = body.model_dump(exclude_unset=True)
    employee = await services.store.update_employee(employee_id, patch)
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    await services.store.append_audit_log(
        "profile_updated",
        f"Employee {employee_id} updated by {admin.email}",
        {"employee_id": employee_id, "fields": sorted(patch)},
    )
    logger.info("Updated employee %d (%s)", employee_id, ", ".join(sorted(patch)))
    return EmployeeRead.model_validate(employee)


@router.delete("/{employee_id}", response_model=DeleteResponse)
async def delete_employee(
    employee_id: int,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> DeleteResponse:
    """Soft-delete (deactivate) an employee. Attendance history is preserved."""
    employee = await services.store.update_employee(employee_id, {"is_active": False})
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    await services.store.append_audit_log(
        "employee_deactivated",
        f"Employee {employee_id} deactivated by {admin.email}",
        {"employee_id": employee_id},
    )
    logger.info("Soft-deleted employee %d (%s)", employee_id, employee.full_name)
    return DeleteResponse(success=True, message=f"Employee '{employee.full_name}' deactivated")


@router.get("/{employee_id}/attendance", response_model=list[AttendanceDayRead])
async def employee_attendance(
    employee_id: int,
    days: int = Query(default=30, ge=1, le=366),
    services: Services = Depends(get_services),
    _user: User = Depends(get_current_active_user),
) -> list[AttendanceDayRead]:
    """Attendance days of one employee over the last *days* calendar days, newest first."""
    if await services.store.get_employee(employee_id) is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    records = await services.reports.employee_history(employee_id, days=days)
    return [AttendanceDayRead.model_validate(r) for r in records]

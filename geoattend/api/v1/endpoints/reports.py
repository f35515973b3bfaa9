"""
Reporting endpoints and the public health probe.

Aggregation itself lives in :class:`geoattend.services.reports.ReportAggregator`;
these handlers only translate paths into calls and results into schemas.
"""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Path

from geoattend.api.v1.deps import get_current_active_user, get_services
from geoattend.core.exceptions import StorageUnavailable
from geoattend.models.user import User
from geoattend.schemas.attendance import (AbsenteesResponse, DailySummaryRead,
                                          EmployeeRead, HealthResponse,
                                          PeriodSummaryRead)
from geoattend.services.container import Services

router = APIRouter(tags=["reports"])
logger = logging.getLogger(__name__)


# ── Reports ─────────────────────────────────────────────────────────
@router.get("/reports/daily/{day}", response_model=DailySummaryRead)
async def daily_report(
    day: date,
    services: Services = Depends(get_services),
    _user: User = Depends(get_current_active_user),
) -> DailySummaryRead:
    summary = await services.reports.daily_summary(day)
    return DailySummaryRead.model_validate(summary)


@router.get("/reports/weekly/{day}", response_model=PeriodSummaryRead)
async def weekly_report(
    day: date,
    services: Services = Depends(get_services),
    _user: User = Depends(get_current_active_user),
) -> PeriodSummaryRead:
    """ISO week (Monday to Sunday) containing *day*."""
    summary = await services.reports.weekly_summary(day)
    return PeriodSummaryRead.model_validate(summary)


@router.get("/reports/monthly/{year}/{month}", response_model=PeriodSummaryRead)
async def monthly_report(
    year: int = Path(ge=2000, le=2100),
    month: int = Path(ge=1, le=12),
    services: Services = Depends(get_services),
    _user: User = Depends(get_current_active_user),
) -> PeriodSummaryRead:
    summary = await services.reports.monthly_summary(year, month)
    return PeriodSummaryRead.model_validate(summary)


@router.get("/reports/absentees/{day}", response_model=AbsenteesResponse)
async def absentees_report(
    day: date,
    services: Services = Depends(get_services),
    _user: User = Depends(get_current_active_user),
) -> AbsenteesResponse:
    """Active employees without a check-in; empty until the absence cutoff has passed."""
    clock = services.clock
    if day > clock.today():
        raise HTTPException(status_code=400, detail="Cannot report absentees for a future date")
    cutoff_passed = clock.now() >= clock.at(day, services.reports.absence_cutoff)
    absentees = await services.reports.absentees(day)
    return AbsenteesResponse(
        date=day,
        cutoff_passed=cutoff_passed,
        absentees=[EmployeeRead.model_validate(e) for e in absentees],
    )


# ── Health ──────────────────────────────────────────────────────────
@router.get("/health", response_model=HealthResponse)
async def health(services: Services = Depends(get_services)) -> HealthResponse:
    """Public health check — database connectivity and scheduler state."""
    result = HealthResponse(
        db=False,
        scheduler=services.orchestrator.running,
        jobs=len(services.orchestrator.jobs()),
    )
    try:
        await services.store.ping()
        result.db = True
    except StorageUnavailable as e:
        logger.error("Health check DB failure: %s", e)
    return result

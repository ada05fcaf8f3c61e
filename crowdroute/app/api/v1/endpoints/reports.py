"""
Fare Report API Endpoints.

Standalone fare reports, per-step report listings and moderation.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from crowdroute.app.core.config import settings
from crowdroute.app.core.dependencies import get_current_contributor, get_optional_contributor
from crowdroute.app.core.exceptions import NotFoundError
from crowdroute.app.db.session import get_db
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.enums import ContributorRole
from crowdroute.app.models.fare_report import FareReport
from crowdroute.app.models.report_enums import ReportSource
from crowdroute.app.models.route_step import RouteStep
from crowdroute.app.schemas.report import (
    FareReportCreate, FareReportResponse, FareReportSubmissionResponse, FareReportListResponse,
    FlagRequest, ModerationResponse, CleanupResponse
)
from crowdroute.app.services import submission_guard
from crowdroute.app.services.reputation_ledger import ReputationLedger
from crowdroute.app.api.v1.endpoints.routes import submission_response

router = APIRouter(prefix="/reports", tags=["Fare Reports"])


@router.post("", response_model=FareReportSubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_fare_report(
    report_data: FareReportCreate,
    contributor: Optional[Contributor] = Depends(get_optional_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Report a fare paid on a route step.

    Identified contributors may report a given step once per 6 hours.
    """
    result = await submission_guard.submit_fare_report(
        db, report_data, contributor, source=ReportSource.FARE_REPORT
    )
    return submission_response(result)


@router.get("/steps/{step_id}", response_model=FareReportListResponse)
async def list_step_reports(
    step_id: int,
    include_flagged: bool = False,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db)
):
    """
    Active reports for a step, newest first.
    """
    if await db.get(RouteStep, step_id) is None:
        raise NotFoundError("Route step", step_id)

    conditions = [FareReport.route_step_id == step_id, FareReport.is_active == True]
    if not include_flagged:
        conditions.append(FareReport.is_flagged == False)

    total = (await db.execute(select(func.count(FareReport.id)).where(*conditions))).scalar()

    offset = (page - 1) * page_size
    result = await db.execute(
        select(FareReport).where(*conditions)
        .order_by(FareReport.created_at.desc(), FareReport.id.desc())
        .offset(offset).limit(page_size)
    )
    return FareReportListResponse(
        items=[FareReportResponse.model_validate(report) for report in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post("/{report_id}/flag", response_model=ModerationResponse)
async def flag_report(
    report_id: int,
    flag: FlagRequest,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Flag a report. It stops counting towards the step aggregate.
    """
    report, aggregate = await submission_guard.flag_report(db, report_id, flag.reason, contributor)
    return ModerationResponse(report=FareReportResponse.model_validate(report), step_aggregate=aggregate)


@router.post("/{report_id}/verify", response_model=ModerationResponse)
async def verify_report(
    report_id: int,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    report, aggregate = await submission_guard.verify_report(db, report_id, contributor)
    return ModerationResponse(report=FareReportResponse.model_validate(report), step_aggregate=aggregate)


@router.post("/{report_id}/unflag", response_model=ModerationResponse)
async def unflag_report(
    report_id: int,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    report, aggregate = await submission_guard.unflag_report(db, report_id, contributor)
    return ModerationResponse(report=FareReportResponse.model_validate(report), step_aggregate=aggregate)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_reports(
    days_old: int = Query(None, ge=1, description="Defaults to the retention horizon"),
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Deactivate reports older than the retention horizon.

    Needs the review threshold or the admin role.
    """
    ReputationLedger.require(
        contributor, settings.reputation_review, "run report cleanup", allow_roles=(ContributorRole.ADMIN,)
    )
    days_old = days_old or settings.report_retention_days
    deactivated = await submission_guard.cleanup_old_reports(db, days_old, actor=contributor)
    return CleanupResponse(deactivated=deactivated, days_old=days_old)

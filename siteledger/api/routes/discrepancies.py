"""Material discrepancy endpoints.

Scanning and aggregation routes are read-only and never fail on data
problems: they answer with empty lists.  The summary answers 503 when the
data could not be read at all, so a dashboard can tell "nothing wrong"
from "nothing known".
"""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from siteledger.core.config import settings
from siteledger.core.database import get_db
from siteledger.core.exceptions import InvalidStateError, ResourceNotFoundError
from siteledger.core.logging import get_logger
from siteledger.models.discrepancy import DiscrepancyRecord
from siteledger.models.project import Project
from siteledger.schemas.discrepancy import (
    AlertRunResponse,
    CategoryBreakdown,
    DiscrepancyRecordResponse,
    DiscrepancyResult,
    DiscrepancySummary,
    ResolutionRequest,
    ScanFilters,
    SupplierPerformance,
    ThresholdOverrides,
    ThresholdSet,
    TrendPoint,
)
from siteledger.services.discrepancy.alerts import DiscrepancyAlerter
from siteledger.services.discrepancy.classifier import DEFAULT_THRESHOLDS, merge_thresholds
from siteledger.services.discrepancy.scanner import DiscrepancyScanner
from siteledger.services.discrepancy.suppliers import get_supplier_performance

logger = get_logger(__name__)

router = APIRouter()


def scan_filters(
    start_date: Optional[date] = Query(
        None, description="Include materials with any date on/after (YYYY-MM-DD)"
    ),
    end_date: Optional[date] = Query(
        None, description="Include materials with any date on/before (YYYY-MM-DD)"
    ),
    category: Optional[str] = Query(None, description="Material category"),
    variance_percentage: Optional[float] = Query(None, ge=0),
    variance_amount: Optional[float] = Query(None, ge=0),
    loss_percentage: Optional[float] = Query(None, ge=0),
    loss_amount: Optional[float] = Query(None, ge=0),
    wastage_percentage: Optional[float] = Query(None, ge=0),
) -> ScanFilters:
    """Build ``ScanFilters`` from query parameters."""
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=400,
            detail=f"start_date {start_date} is after end_date {end_date}",
        )
    return ScanFilters(
        start_date=start_date,
        end_date=end_date,
        category=category,
        thresholds=ThresholdOverrides(
            variance_percentage=variance_percentage,
            variance_amount=variance_amount,
            loss_percentage=loss_percentage,
            loss_amount=loss_amount,
            wastage_percentage=wastage_percentage,
        ),
    )


# ── Scanner ──────────────────────────────────────────────────────────


@router.get(
    "/projects/{project_id}/discrepancies",
    response_model=list[DiscrepancyResult],
)
def list_project_discrepancies(
    project_id: UUID,
    filters: ScanFilters = Depends(scan_filters),
    db: Session = Depends(get_db),
) -> list[DiscrepancyResult]:
    """Every material of the project that exceeds a threshold."""
    return DiscrepancyScanner(db).scan(project_id, filters)


@router.get(
    "/projects/{project_id}/discrepancies/summary",
    response_model=DiscrepancySummary,
)
def get_discrepancy_summary(
    project_id: UUID,
    filters: ScanFilters = Depends(scan_filters),
    db: Session = Depends(get_db),
) -> DiscrepancySummary:
    """Project totals and severity breakdown."""
    summary = DiscrepancyScanner(db).summarize(project_id, filters)
    if summary is None:
        raise HTTPException(status_code=503, detail="Discrepancy data unavailable")
    return summary


@router.get(
    "/projects/{project_id}/discrepancies/trends",
    response_model=list[TrendPoint],
)
def get_discrepancy_trends(
    project_id: UUID,
    filters: ScanFilters = Depends(scan_filters),
    db: Session = Depends(get_db),
) -> list[TrendPoint]:
    return DiscrepancyScanner(db).trends(project_id, filters)


@router.get(
    "/projects/{project_id}/discrepancies/categories",
    response_model=list[CategoryBreakdown],
)
def get_category_analysis(
    project_id: UUID,
    filters: ScanFilters = Depends(scan_filters),
    db: Session = Depends(get_db),
) -> list[CategoryBreakdown]:
    return DiscrepancyScanner(db).category_analysis(project_id, filters)


# ── Alerts and records ───────────────────────────────────────────────


@router.post(
    "/projects/{project_id}/discrepancies/alerts",
    response_model=AlertRunResponse,
)
def run_discrepancy_alerts(
    project_id: UUID,
    actor_id: Optional[UUID] = Query(None, description="User triggering the pass"),
    filters: ScanFilters = Depends(scan_filters),
    db: Session = Depends(get_db),
) -> AlertRunResponse:
    """Scan the project, record discrepancies and notify the project team."""
    logger.info("Discrepancy alert pass requested: project=%s", project_id)

    alerter = DiscrepancyAlerter(db=db, config=settings)
    try:
        return alerter.scan_and_alert(project_id, filters, actor_id=actor_id)
    except Exception as exc:
        logger.exception("Discrepancy alert pass failed")
        raise HTTPException(status_code=500, detail=str(exc))


@router.patch(
    "/discrepancies/{record_id}/status",
    response_model=DiscrepancyRecordResponse,
)
def update_discrepancy_status(
    record_id: UUID,
    body: ResolutionRequest,
    db: Session = Depends(get_db),
) -> DiscrepancyRecord:
    """Move a discrepancy record through investigation to resolution."""
    alerter = DiscrepancyAlerter(db=db, config=settings)
    try:
        return alerter.resolve_discrepancy(
            record_id, body.status, user_id=body.user_id, notes=body.notes
        )
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except InvalidStateError as exc:
        raise HTTPException(status_code=409, detail=exc.message)


# ── Thresholds ───────────────────────────────────────────────────────


@router.put("/projects/{project_id}/thresholds", response_model=ThresholdSet)
def update_project_thresholds(
    project_id: UUID,
    body: ThresholdOverrides,
    db: Session = Depends(get_db),
) -> ThresholdSet:
    """Store the project's threshold overrides; returns the thresholds now in effect.

    Only the fields sent are stored; the rest keep following the defaults.
    """
    project = db.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")

    project.wastage_thresholds = body.model_dump(exclude_none=True) or None
    db.commit()

    logger.info(
        "Thresholds updated: project=%s overrides=%s",
        project_id,
        project.wastage_thresholds,
    )
    return merge_thresholds(DEFAULT_THRESHOLDS, project.wastage_thresholds)


# ── Suppliers ────────────────────────────────────────────────────────


@router.get(
    "/suppliers/performance",
    response_model=list[SupplierPerformance],
    tags=["Suppliers"],
)
def get_suppliers_performance(
    project_id: Optional[UUID] = Query(None, description="Limit to one project"),
    filters: ScanFilters = Depends(scan_filters),
    db: Session = Depends(get_db),
) -> list[SupplierPerformance]:
    """Delivery accuracy per supplier, worst variance cost first."""
    return get_supplier_performance(db, project_id, filters)

"""Budget and capital endpoints.

Setting a budget or capital value for the first time captures the spending
baseline; the responses say whether this request did the capture.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from siteledger.core.database import get_db
from siteledger.core.exceptions import ResourceNotFoundError
from siteledger.core.logging import get_logger
from siteledger.schemas.activation import (
    BudgetUpdate,
    CapitalResponse,
    CapitalUpdate,
    PhaseBudgetResponse,
    ProjectBaselinesResponse,
    ProjectBudgetResponse,
)
from siteledger.services.activation import (
    get_project_baselines,
    set_phase_budget,
    set_project_budget,
    set_project_capital,
)

logger = get_logger(__name__)

router = APIRouter()


@router.put("/projects/{project_id}/budget", response_model=ProjectBudgetResponse)
def update_project_budget(
    project_id: UUID,
    body: BudgetUpdate,
    db: Session = Depends(get_db),
) -> ProjectBudgetResponse:
    try:
        result = set_project_budget(db, project_id, body.total)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)

    logger.info(
        "Project budget set: project=%s total=%.2f captured=%s",
        project_id,
        result.budget_total,
        result.activation_captured,
    )
    return result


@router.put("/phases/{phase_id}/budget", response_model=PhaseBudgetResponse)
def update_phase_budget(
    phase_id: UUID,
    body: BudgetUpdate,
    db: Session = Depends(get_db),
) -> PhaseBudgetResponse:
    try:
        result = set_phase_budget(db, phase_id, body.total)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)

    logger.info(
        "Phase budget set: phase=%s total=%.2f captured=%s",
        phase_id,
        result.budget_total,
        result.activation_captured,
    )
    return result


@router.put("/projects/{project_id}/capital", response_model=CapitalResponse)
def update_project_capital(
    project_id: UUID,
    body: CapitalUpdate,
    db: Session = Depends(get_db),
) -> CapitalResponse:
    try:
        result = set_project_capital(db, project_id, body.total_invested)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)

    logger.info(
        "Project capital set: project=%s total_invested=%.2f captured=%s",
        project_id,
        result.total_invested,
        result.activation_captured,
    )
    return result


@router.get("/projects/{project_id}/baselines", response_model=ProjectBaselinesResponse)
def get_baselines(
    project_id: UUID,
    db: Session = Depends(get_db),
) -> ProjectBaselinesResponse:
    """Budget, phase and capital baselines with effective spending."""
    try:
        return get_project_baselines(db, project_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)

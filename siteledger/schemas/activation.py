"""Pydantic schemas for budget/capital values and their activation baselines."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ── Requests ─────────────────────────────────────────────────────────


class BudgetUpdate(BaseModel):
    """New total for a project or phase budget."""

    total: float = Field(..., ge=0, description="Budget total in project currency")


class CapitalUpdate(BaseModel):
    """New invested-capital total for a project."""

    total_invested: float = Field(..., ge=0)


# ── Baselines ────────────────────────────────────────────────────────


class ProjectSpendingBreakdown(BaseModel):
    total: float = 0.0
    dcc: float = 0.0
    pre_construction: float = 0.0
    indirect: float = 0.0


class PhaseSpendingBreakdown(BaseModel):
    total: float = 0.0
    materials: float = 0.0
    labour: float = 0.0
    equipment: float = 0.0
    subcontractors: float = 0.0


class ProjectBudgetBaseline(BaseModel):
    """Spending captured when the project budget was first set."""

    has_baseline: bool = False
    activated_at: Optional[datetime] = None
    pre_budget_spending: ProjectSpendingBreakdown = Field(
        default_factory=ProjectSpendingBreakdown
    )


class PhaseBudgetBaseline(BaseModel):
    """Spending captured when the phase budget was first set."""

    has_baseline: bool = False
    activated_at: Optional[datetime] = None
    pre_budget_spending: PhaseSpendingBreakdown = Field(
        default_factory=PhaseSpendingBreakdown
    )


class CapitalBaseline(BaseModel):
    """Capital usage captured when capital was first set.

    Informational only: capital validations always see true usage.
    """

    has_baseline: bool = False
    activated_at: Optional[datetime] = None
    pre_capital_used: float = 0.0
    pre_capital_committed: float = 0.0


# ── Responses ────────────────────────────────────────────────────────


class ProjectBudgetResponse(BaseModel):
    project_id: UUID
    budget_total: float
    activation_captured: bool = Field(
        ...,
        description="True when this update captured the baseline",
    )
    baseline: ProjectBudgetBaseline


class PhaseBudgetResponse(BaseModel):
    phase_id: UUID
    project_id: UUID
    budget_total: float
    activation_captured: bool
    baseline: PhaseBudgetBaseline


class CapitalResponse(BaseModel):
    project_id: UUID
    total_invested: float
    activation_captured: bool
    baseline: CapitalBaseline


class PhaseBaselineEntry(BaseModel):
    phase_id: UUID
    name: str
    actual_spending: float = 0.0
    effective_spending: float = 0.0
    baseline: PhaseBudgetBaseline


class ProjectBaselinesResponse(BaseModel):
    """Every activation baseline for one project plus effective spending."""

    project_id: UUID
    total_used: float = 0.0
    effective_spending: float = Field(
        0.0,
        description="total_used minus the pre-budget baseline, floored at 0",
    )
    budget: ProjectBudgetBaseline
    capital: CapitalBaseline
    phases: list[PhaseBaselineEntry] = Field(default_factory=list)

"""Budget and capital activation baselines.

Budgets and capital are often entered late, after money has already been
spent.  The first time a zero budget (or zero capital) becomes positive we
snapshot the spending so far.  Budget validations later subtract that
snapshot; capital validations never do, the capital snapshot is reported
for information only.

Each of the three entities (project budget, phase budget, project capital)
activates at most once.  The capture is a single conditional UPDATE on
``*_activated_at IS NULL``, so two concurrent requests cannot both write a
baseline; the loser gets the stored state back.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from siteledger.core.exceptions import ResourceNotFoundError
from siteledger.core.logging import get_logger
from siteledger.models.phase import Phase
from siteledger.models.project import Project
from siteledger.models.project_finances import ProjectFinances
from siteledger.schemas.activation import (
    CapitalBaseline,
    CapitalResponse,
    PhaseBaselineEntry,
    PhaseBudgetBaseline,
    PhaseBudgetResponse,
    PhaseSpendingBreakdown,
    ProjectBaselinesResponse,
    ProjectBudgetBaseline,
    ProjectBudgetResponse,
    ProjectSpendingBreakdown,
)
from siteledger.services.discrepancy.metrics import to_quantity
from siteledger.services.discrepancy.queries import coerce_uuid

logger = get_logger(__name__)

PHASE_SPENDING_CATEGORIES = ("materials", "labour")


# ── Activation state ─────────────────────────────────────────────────


@dataclass(frozen=True)
class NotActivated:
    """No baseline captured yet."""


@dataclass(frozen=True)
class Activated:
    """Baseline captured at ``activated_at``; never changes afterwards."""

    activated_at: datetime
    baseline: dict[str, float] = field(default_factory=dict)


ActivationState = Union[NotActivated, Activated]


def budget_activation_state(entity: Any) -> ActivationState:
    """State of a project or phase budget."""
    if entity is None or entity.budget_activated_at is None:
        return NotActivated()
    spending = entity.pre_budget_spending or {}
    return Activated(
        activated_at=entity.budget_activated_at,
        baseline={k: to_quantity(v) for k, v in spending.items()},
    )


def capital_activation_state(finances: Optional[ProjectFinances]) -> ActivationState:
    if finances is None or finances.capital_activated_at is None:
        return NotActivated()
    return Activated(
        activated_at=finances.capital_activated_at,
        baseline={
            "pre_capital_used": to_quantity(finances.pre_capital_used),
            "pre_capital_committed": to_quantity(finances.pre_capital_committed),
        },
    )


# ── Predicates ───────────────────────────────────────────────────────


def _needs_activation(activated_at: Optional[datetime], current: Any, new: Any) -> bool:
    if activated_at is not None:
        return False
    if to_quantity(new) <= 0:
        return False
    return to_quantity(current) <= 0


def needs_budget_activation(project: Project, new_total: Any) -> bool:
    """True only when a never-activated zero budget is set to a positive value."""
    return _needs_activation(project.budget_activated_at, project.budget_total, new_total)


def needs_phase_budget_activation(phase: Phase, new_total: Any) -> bool:
    return _needs_activation(phase.budget_activated_at, phase.budget_total, new_total)


def needs_capital_activation(
    finances: Optional[ProjectFinances],
    new_total_invested: Any,
) -> bool:
    """Like ``needs_budget_activation``; a missing finances row counts as zero."""
    if finances is None:
        return to_quantity(new_total_invested) > 0
    return _needs_activation(
        finances.capital_activated_at, finances.total_invested, new_total_invested
    )


# ── Spending source ──────────────────────────────────────────────────


class SpendingLedger(Protocol):
    """Where current spending figures come from when a baseline is captured."""

    def total_used(self, project_id: uuid.UUID) -> float: ...

    def committed_cost(self, project_id: uuid.UUID) -> float: ...

    def spending_breakdown(self, project_id: uuid.UUID) -> dict[str, float]: ...


class SqlSpendingLedger:
    """Reads the figures the finance layer keeps on projects and finances."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _finances(self, project_id: uuid.UUID) -> Optional[ProjectFinances]:
        return (
            self.db.query(ProjectFinances)
            .filter(ProjectFinances.project_id == project_id)
            .first()
        )

    def total_used(self, project_id: uuid.UUID) -> float:
        finances = self._finances(project_id)
        return to_quantity(finances.total_used) if finances else 0.0

    def committed_cost(self, project_id: uuid.UUID) -> float:
        finances = self._finances(project_id)
        return to_quantity(finances.committed_cost) if finances else 0.0

    def spending_breakdown(self, project_id: uuid.UUID) -> dict[str, float]:
        project = self.db.get(Project, project_id)
        spending = (project.actual_spending if project else None) or {}
        return {
            "dcc": to_quantity(spending.get("dcc")),
            "pre_construction": to_quantity(spending.get("pre_construction")),
            "indirect": to_quantity(spending.get("indirect")),
        }


# ── Capture ──────────────────────────────────────────────────────────


def _require_uuid(resource: str, value: Any) -> uuid.UUID:
    result = coerce_uuid(value)
    if result is None:
        raise ResourceNotFoundError(resource, value)
    return result


def _money(value: float) -> Decimal:
    return Decimal(str(round(value, 2)))


def _capture_project_budget(
    db: Session,
    project_uuid: uuid.UUID,
    ledger: SpendingLedger,
) -> tuple[ActivationState, bool]:
    breakdown = ledger.spending_breakdown(project_uuid)
    baseline = {
        "total": round(ledger.total_used(project_uuid), 2),
        "dcc": round(breakdown.get("dcc", 0.0), 2),
        "pre_construction": round(breakdown.get("pre_construction", 0.0), 2),
        "indirect": round(breakdown.get("indirect", 0.0), 2),
    }
    now = datetime.utcnow()
    result = db.execute(
        update(Project)
        .where(Project.id == project_uuid, Project.budget_activated_at.is_(None))
        .values(budget_activated_at=now, pre_budget_spending=baseline, updated_at=now)
    )
    if result.rowcount:
        logger.info("Project budget activated: project=%s baseline=%s", project_uuid, baseline)
        return Activated(now, baseline), True

    project = db.get(Project, project_uuid)
    if project is None:
        raise ResourceNotFoundError("Project", project_uuid)
    db.refresh(project)
    return budget_activation_state(project), False


def _capture_phase_budget(db: Session, phase: Phase) -> tuple[ActivationState, bool]:
    spending = phase.actual_spending or {}
    baseline = {
        key: round(to_quantity(spending.get(key)), 2)
        for key in PhaseSpendingBreakdown.model_fields
    }
    now = datetime.utcnow()
    result = db.execute(
        update(Phase)
        .where(
            Phase.id == phase.id,
            Phase.deleted_at.is_(None),
            Phase.budget_activated_at.is_(None),
        )
        .values(budget_activated_at=now, pre_budget_spending=baseline, updated_at=now)
    )
    if result.rowcount:
        logger.info("Phase budget activated: phase=%s baseline=%s", phase.id, baseline)
        return Activated(now, baseline), True

    db.refresh(phase)
    return budget_activation_state(phase), False


def _capture_capital(
    db: Session,
    project_uuid: uuid.UUID,
    ledger: SpendingLedger,
) -> tuple[ActivationState, bool]:
    used = round(ledger.total_used(project_uuid), 2)
    committed = round(ledger.committed_cost(project_uuid), 2)
    baseline = {"pre_capital_used": used, "pre_capital_committed": committed}
    now = datetime.utcnow()
    activate = (
        update(ProjectFinances)
        .where(
            ProjectFinances.project_id == project_uuid,
            ProjectFinances.capital_activated_at.is_(None),
        )
        .values(
            capital_activated_at=now,
            pre_capital_used=_money(used),
            pre_capital_committed=_money(committed),
            updated_at=now,
        )
    )

    if db.execute(activate).rowcount:
        logger.info("Capital activated: project=%s baseline=%s", project_uuid, baseline)
        return Activated(now, baseline), True

    finances = (
        db.query(ProjectFinances)
        .filter(ProjectFinances.project_id == project_uuid)
        .first()
    )
    if finances is None:
        if db.get(Project, project_uuid) is None:
            raise ResourceNotFoundError("Project", project_uuid)
        try:
            with db.begin_nested():
                db.add(
                    ProjectFinances(
                        id=uuid.uuid4(),
                        project_id=project_uuid,
                        capital_activated_at=now,
                        pre_capital_used=_money(used),
                        pre_capital_committed=_money(committed),
                    )
                )
                db.flush()
            logger.info("Capital activated: project=%s baseline=%s", project_uuid, baseline)
            return Activated(now, baseline), True
        except IntegrityError:
            # Finances row created concurrently; retry the guarded update
            if db.execute(activate).rowcount:
                return Activated(now, baseline), True
            finances = (
                db.query(ProjectFinances)
                .filter(ProjectFinances.project_id == project_uuid)
                .one()
            )

    db.refresh(finances)
    return capital_activation_state(finances), False


def capture_project_budget_activation(
    db: Session,
    project_id: Any,
    ledger: Optional[SpendingLedger] = None,
) -> ActivationState:
    """Snapshot pre-budget spending for a project, once.

    Raises:
        ResourceNotFoundError: if the project does not exist.
    """
    project_uuid = _require_uuid("Project", project_id)
    state, _ = _capture_project_budget(db, project_uuid, ledger or SqlSpendingLedger(db))
    db.commit()
    return state


def capture_phase_budget_activation(db: Session, phase_id: Any) -> ActivationState:
    """Snapshot a phase's spending breakdown, once.

    Raises:
        ResourceNotFoundError: if the phase does not exist or was deleted.
    """
    phase = _get_phase(db, phase_id)
    state, _ = _capture_phase_budget(db, phase)
    db.commit()
    return state


def capture_capital_activation(
    db: Session,
    project_id: Any,
    ledger: Optional[SpendingLedger] = None,
) -> ActivationState:
    """Snapshot capital used/committed, once, creating the finances row if needed.

    Raises:
        ResourceNotFoundError: if the project does not exist.
    """
    project_uuid = _require_uuid("Project", project_id)
    state, _ = _capture_capital(db, project_uuid, ledger or SqlSpendingLedger(db))
    db.commit()
    return state


# ── Reads ────────────────────────────────────────────────────────────


def get_effective_project_spending(project: Project, current_spending: Any) -> float:
    """Current spending minus the pre-budget baseline, never below 0."""
    current = to_quantity(current_spending)
    state = budget_activation_state(project)
    if isinstance(state, NotActivated):
        return current
    return max(0.0, round(current - state.baseline.get("total", 0.0), 2))


def get_effective_phase_spending(
    phase: Phase,
    current_spending: Any,
    category: str = "total",
) -> float:
    """Like ``get_effective_project_spending`` for one phase spending category.

    ``category`` is ``materials``, ``labour`` or anything else for the total.
    """
    current = to_quantity(current_spending)
    state = budget_activation_state(phase)
    if isinstance(state, NotActivated):
        return current
    key = category if category in PHASE_SPENDING_CATEGORIES else "total"
    return max(0.0, round(current - state.baseline.get(key, 0.0), 2))


def get_pre_budget_baseline(project: Optional[Project]) -> ProjectBudgetBaseline:
    state = budget_activation_state(project)
    if isinstance(state, NotActivated):
        return ProjectBudgetBaseline()
    return ProjectBudgetBaseline(
        has_baseline=True,
        activated_at=state.activated_at,
        pre_budget_spending=ProjectSpendingBreakdown(**state.baseline),
    )


def get_pre_phase_budget_baseline(phase: Optional[Phase]) -> PhaseBudgetBaseline:
    state = budget_activation_state(phase)
    if isinstance(state, NotActivated):
        return PhaseBudgetBaseline()
    return PhaseBudgetBaseline(
        has_baseline=True,
        activated_at=state.activated_at,
        pre_budget_spending=PhaseSpendingBreakdown(**state.baseline),
    )


def get_pre_capital_baseline(finances: Optional[ProjectFinances]) -> CapitalBaseline:
    """Capital baseline for display; never subtracted from capital usage."""
    state = capital_activation_state(finances)
    if isinstance(state, NotActivated):
        return CapitalBaseline()
    return CapitalBaseline(has_baseline=True, activated_at=state.activated_at, **state.baseline)


def get_project_baselines(
    db: Session,
    project_id: Any,
    ledger: Optional[SpendingLedger] = None,
) -> ProjectBaselinesResponse:
    """Every baseline of a project with the spending figures they offset."""
    project = _get_project(db, project_id)
    ledger = ledger or SqlSpendingLedger(db)
    total_used = ledger.total_used(project.id)

    phases = (
        db.query(Phase)
        .filter(Phase.project_id == project.id, Phase.deleted_at.is_(None))
        .order_by(Phase.created_at.asc())
        .all()
    )
    entries = []
    for phase in phases:
        actual = to_quantity((phase.actual_spending or {}).get("total"))
        entries.append(
            PhaseBaselineEntry(
                phase_id=phase.id,
                name=phase.name,
                actual_spending=actual,
                effective_spending=get_effective_phase_spending(phase, actual),
                baseline=get_pre_phase_budget_baseline(phase),
            )
        )

    return ProjectBaselinesResponse(
        project_id=project.id,
        total_used=total_used,
        effective_spending=get_effective_project_spending(project, total_used),
        budget=get_pre_budget_baseline(project),
        capital=get_pre_capital_baseline(_get_finances(db, project.id)),
        phases=entries,
    )


# ── Value setters ────────────────────────────────────────────────────


def _get_project(db: Session, project_id: Any) -> Project:
    project = db.get(Project, _require_uuid("Project", project_id))
    if project is None:
        raise ResourceNotFoundError("Project", project_id)
    return project


def _get_phase(db: Session, phase_id: Any) -> Phase:
    phase_uuid = _require_uuid("Phase", phase_id)
    phase = (
        db.query(Phase)
        .filter(Phase.id == phase_uuid, Phase.deleted_at.is_(None))
        .first()
    )
    if phase is None:
        raise ResourceNotFoundError("Phase", phase_id)
    return phase


def _get_finances(db: Session, project_uuid: uuid.UUID) -> Optional[ProjectFinances]:
    return (
        db.query(ProjectFinances)
        .filter(ProjectFinances.project_id == project_uuid)
        .first()
    )


def set_project_budget(
    db: Session,
    project_id: Any,
    total: float,
    ledger: Optional[SpendingLedger] = None,
) -> ProjectBudgetResponse:
    """Write a project's budget total, capturing the baseline on first activation."""
    project = _get_project(db, project_id)
    captured = False
    if needs_budget_activation(project, total):
        _, captured = _capture_project_budget(db, project.id, ledger or SqlSpendingLedger(db))

    project.budget_total = _money(to_quantity(total))
    db.commit()
    db.refresh(project)

    return ProjectBudgetResponse(
        project_id=project.id,
        budget_total=to_quantity(project.budget_total),
        activation_captured=captured,
        baseline=get_pre_budget_baseline(project),
    )


def set_phase_budget(db: Session, phase_id: Any, total: float) -> PhaseBudgetResponse:
    """Write a phase's budget total, capturing the baseline on first activation."""
    phase = _get_phase(db, phase_id)
    captured = False
    if needs_phase_budget_activation(phase, total):
        _, captured = _capture_phase_budget(db, phase)

    phase.budget_total = _money(to_quantity(total))
    db.commit()
    db.refresh(phase)

    return PhaseBudgetResponse(
        phase_id=phase.id,
        project_id=phase.project_id,
        budget_total=to_quantity(phase.budget_total),
        activation_captured=captured,
        baseline=get_pre_phase_budget_baseline(phase),
    )


def set_project_capital(
    db: Session,
    project_id: Any,
    total_invested: float,
    ledger: Optional[SpendingLedger] = None,
) -> CapitalResponse:
    """Write a project's invested capital, capturing the baseline on first activation."""
    project = _get_project(db, project_id)
    finances = _get_finances(db, project.id)
    captured = False
    if needs_capital_activation(finances, total_invested):
        _, captured = _capture_capital(db, project.id, ledger or SqlSpendingLedger(db))
        finances = _get_finances(db, project.id)

    if finances is None:
        finances = ProjectFinances(id=uuid.uuid4(), project_id=project.id)
        db.add(finances)
    finances.total_invested = _money(to_quantity(total_invested))
    db.commit()
    db.refresh(finances)

    return CapitalResponse(
        project_id=project.id,
        total_invested=to_quantity(finances.total_invested),
        activation_captured=captured,
        baseline=get_pre_capital_baseline(finances),
    )

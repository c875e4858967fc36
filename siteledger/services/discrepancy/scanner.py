"""Project discrepancy scanner: the dashboards' view of material losses.

Every public method:
  1. Resolves the thresholds for the project (explicit overrides, else the
     project's stored config, else the defaults).
  2. Loads the delivered, non-deleted materials matching the filters.
  3. Classifies each material from scratch (nothing is cached, so a
     threshold change shows up on the very next call).
  4. Aggregates the results into the shape the caller asked for.

Store failures never escape: they are logged and turned into an empty
list (or ``None`` for the summary) so a dashboard keeps rendering.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from siteledger.core.logging import get_logger
from siteledger.models.enums import Severity
from siteledger.models.material import Material
from siteledger.models.project import Project
from siteledger.schemas.discrepancy import (
    CategoryBreakdown,
    DiscrepancyResult,
    DiscrepancySummary,
    ScanFilters,
    SeverityBreakdown,
    SummaryMetrics,
    ThresholdSet,
    TrendPoint,
)
from siteledger.services.discrepancy.classifier import (
    DEFAULT_THRESHOLDS,
    classify_material,
    has_overrides,
    merge_thresholds,
)
from siteledger.services.discrepancy.queries import coerce_uuid, delivered_materials_query

logger = get_logger(__name__)

UNCATEGORIZED = "other"


@dataclass
class _Totals:
    """Running totals for one aggregation bucket.

    Metric sums include flagged materials only; ``material_count`` counts
    every material so averaged wastage is diluted by clean materials.
    """

    material_count: int = 0
    materials_with_issues: int = 0
    variance: float = 0.0
    loss: float = 0.0
    wastage: float = 0.0
    variance_cost: float = 0.0
    loss_cost: float = 0.0
    total_discrepancy_cost: float = 0.0

    def add(self, result: DiscrepancyResult) -> None:
        self.material_count += 1
        if not result.alerts.has_any_alert:
            return
        m = result.metrics
        self.materials_with_issues += 1
        self.variance += m.variance
        self.loss += m.loss
        self.wastage += m.wastage
        self.variance_cost += m.variance_cost
        self.loss_cost += m.loss_cost
        self.total_discrepancy_cost += m.total_discrepancy_cost

    @property
    def average_wastage(self) -> float:
        if self.material_count == 0:
            return 0.0
        return round(self.wastage / self.material_count, 2)


class DiscrepancyScanner:
    """Scans a project's materials and aggregates discrepancy results."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ── Public API ───────────────────────────────────────────────────

    def scan(
        self,
        project_id: Any,
        filters: Optional[ScanFilters] = None,
    ) -> list[DiscrepancyResult]:
        """Return the classification of every flagged material."""
        try:
            results = self._classify(project_id, filters)
        except SQLAlchemyError:
            logger.exception("Discrepancy scan failed: project=%s", project_id)
            return []

        flagged = [r for r in results if r.alerts.has_any_alert]
        logger.info(
            "Discrepancy scan: project=%s scanned=%d flagged=%d",
            project_id,
            len(results),
            len(flagged),
        )
        return flagged

    def summarize(
        self,
        project_id: Any,
        filters: Optional[ScanFilters] = None,
    ) -> Optional[DiscrepancySummary]:
        """Project-wide totals and a severity histogram.

        Returns a zero-valued summary when no materials match and ``None``
        when the data could not be read.
        """
        try:
            results = self._classify(project_id, filters)
        except SQLAlchemyError:
            logger.exception("Discrepancy summary failed: project=%s", project_id)
            return None

        totals = _Totals()
        breakdown = SeverityBreakdown()
        for result in results:
            totals.add(result)
            if result.severity == Severity.CRITICAL:
                breakdown.critical += 1
            elif result.severity == Severity.HIGH:
                breakdown.high += 1
            elif result.severity == Severity.MEDIUM:
                breakdown.medium += 1
            elif result.severity == Severity.LOW:
                breakdown.low += 1

        return DiscrepancySummary(
            project_id=str(project_id),
            total_materials=totals.material_count,
            materials_with_issues=totals.materials_with_issues,
            metrics=SummaryMetrics(
                total_variance=round(totals.variance, 2),
                total_loss=round(totals.loss, 2),
                total_wastage=totals.average_wastage,
                total_variance_cost=round(totals.variance_cost, 2),
                total_loss_cost=round(totals.loss_cost, 2),
                total_discrepancy_cost=round(totals.total_discrepancy_cost, 2),
            ),
            severity_breakdown=breakdown,
        )

    def trends(
        self,
        project_id: Any,
        filters: Optional[ScanFilters] = None,
    ) -> list[TrendPoint]:
        """Month-by-month discrepancy totals, oldest month first.

        A material lands in the month of its delivery date, falling back to
        its usage date and then its creation date.  Materials with none of
        the three are left out.
        """
        try:
            pairs = self._classify_with_materials(project_id, filters)
        except SQLAlchemyError:
            logger.exception("Discrepancy trends failed: project=%s", project_id)
            return []

        months: dict[str, _Totals] = {}
        for material, result in pairs:
            when = material.date_delivered or material.date_used or material.created_at
            if when is None:
                continue
            months.setdefault(when.strftime("%Y-%m"), _Totals()).add(result)

        trends = [
            TrendPoint(
                month=month,
                month_label=_month_label(month),
                variance=round(t.variance, 2),
                loss=round(t.loss, 2),
                wastage=t.average_wastage,
                variance_cost=round(t.variance_cost, 2),
                loss_cost=round(t.loss_cost, 2),
                total_discrepancy_cost=round(t.total_discrepancy_cost, 2),
                material_count=t.material_count,
                materials_with_issues=t.materials_with_issues,
            )
            for month, t in months.items()
        ]
        trends.sort(key=lambda point: point.month)
        return trends

    def category_analysis(
        self,
        project_id: Any,
        filters: Optional[ScanFilters] = None,
    ) -> list[CategoryBreakdown]:
        """Per-category totals, most expensive category first."""
        try:
            pairs = self._classify_with_materials(project_id, filters)
        except SQLAlchemyError:
            logger.exception("Category analysis failed: project=%s", project_id)
            return []

        categories: dict[str, _Totals] = {}
        for material, result in pairs:
            category = material.category or UNCATEGORIZED
            categories.setdefault(category, _Totals()).add(result)

        analysis = [
            CategoryBreakdown(
                category=category,
                total_materials=t.material_count,
                materials_with_issues=t.materials_with_issues,
                variance=round(t.variance, 2),
                loss=round(t.loss, 2),
                wastage=t.average_wastage,
                variance_cost=round(t.variance_cost, 2),
                loss_cost=round(t.loss_cost, 2),
                total_discrepancy_cost=round(t.total_discrepancy_cost, 2),
                issue_rate=round(t.materials_with_issues / t.material_count * 100, 2),
            )
            for category, t in categories.items()
        ]
        analysis.sort(key=lambda row: row.total_discrepancy_cost, reverse=True)
        return analysis

    def resolve_thresholds(
        self,
        project_id: Any,
        filters: Optional[ScanFilters] = None,
    ) -> ThresholdSet:
        """Thresholds in effect for ``project_id`` given ``filters``.

        Stored thresholds that do not validate are ignored in favour of the
        defaults.
        """
        if filters is not None and has_overrides(filters.thresholds):
            return merge_thresholds(DEFAULT_THRESHOLDS, filters.thresholds)

        project_uuid = coerce_uuid(project_id)
        project = self.db.get(Project, project_uuid) if project_uuid else None
        stored = project.wastage_thresholds if project is not None else None
        try:
            return merge_thresholds(DEFAULT_THRESHOLDS, stored)
        except (ValidationError, TypeError, AttributeError):
            logger.warning(
                "Ignoring malformed stored thresholds for project=%s: %r",
                project_id,
                stored,
            )
            return DEFAULT_THRESHOLDS

    # ── Private helpers ──────────────────────────────────────────────

    def _fetch_materials(
        self,
        project_id: Any,
        filters: Optional[ScanFilters],
    ) -> list[Material]:
        project_uuid = coerce_uuid(project_id)
        if project_uuid is None:
            logger.warning("Ignoring scan for invalid project id %r", project_id)
            return []
        return (
            delivered_materials_query(self.db, project_uuid, filters)
            .order_by(Material.created_at.asc())
            .all()
        )

    def _classify_with_materials(
        self,
        project_id: Any,
        filters: Optional[ScanFilters],
    ) -> list[tuple[Material, DiscrepancyResult]]:
        thresholds = self.resolve_thresholds(project_id, filters)
        materials = self._fetch_materials(project_id, filters)
        return [(m, classify_material(m, thresholds)) for m in materials]

    def _classify(
        self,
        project_id: Any,
        filters: Optional[ScanFilters],
    ) -> list[DiscrepancyResult]:
        return [result for _, result in self._classify_with_materials(project_id, filters)]


def _month_label(month: str) -> str:
    """'2024-01' -> 'Jan 2024'."""
    year, mon = month.split("-")
    return date(int(year), int(mon), 1).strftime("%b %Y")

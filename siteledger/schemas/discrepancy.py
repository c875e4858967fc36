"""Pydantic schemas for discrepancy scanning, summaries and records."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from siteledger.models.enums import DiscrepancyStatus, Severity


# ── Thresholds ───────────────────────────────────────────────────────


class ThresholdSet(BaseModel):
    """Complete, immutable set of discrepancy thresholds.

    Absolute amounts of 0 disable the amount check for that metric.
    """

    model_config = ConfigDict(frozen=True)

    variance_percentage: float = Field(5.0, ge=0)
    variance_amount: float = Field(100.0, ge=0)
    loss_percentage: float = Field(10.0, ge=0)
    loss_amount: float = Field(50.0, ge=0)
    wastage_percentage: float = Field(15.0, ge=0)


class ThresholdOverrides(BaseModel):
    """Partial thresholds; unset fields fall back to the defaults."""

    variance_percentage: Optional[float] = Field(None, ge=0)
    variance_amount: Optional[float] = Field(None, ge=0)
    loss_percentage: Optional[float] = Field(None, ge=0)
    loss_amount: Optional[float] = Field(None, ge=0)
    wastage_percentage: Optional[float] = Field(None, ge=0)


# ── Scan inputs ──────────────────────────────────────────────────────


class ScanFilters(BaseModel):
    """Optional narrowing applied to every scanner operation."""

    start_date: Optional[Union[datetime, date]] = Field(
        None,
        description="Inclusive lower bound on any of the material's dates",
    )
    end_date: Optional[Union[datetime, date]] = Field(
        None,
        description="Inclusive upper bound (end of that day)",
    )
    category: Optional[str] = None
    thresholds: Optional[ThresholdOverrides] = Field(
        None,
        description="Explicit thresholds; when empty the project's own are used",
    )


# ── Per-material result ──────────────────────────────────────────────


class DiscrepancyMetrics(BaseModel):
    variance: float = 0.0
    variance_percentage: float = 0.0
    variance_cost: float = 0.0
    loss: float = 0.0
    loss_percentage: float = 0.0
    loss_cost: float = 0.0
    wastage: float = 0.0
    total_discrepancy_cost: float = 0.0


class DiscrepancyAlerts(BaseModel):
    variance: bool = False
    loss: bool = False
    wastage: bool = False
    has_any_alert: bool = False


class DiscrepancyResult(BaseModel):
    """Classification of one material against a threshold set."""

    material_id: Optional[str] = None
    material_name: Optional[str] = None
    project_id: Optional[str] = None
    supplier_name: Optional[str] = None
    category: Optional[str] = None
    metrics: DiscrepancyMetrics
    alerts: DiscrepancyAlerts
    severity: Severity


# ── Aggregates ───────────────────────────────────────────────────────


class SummaryMetrics(BaseModel):
    total_variance: float = 0.0
    total_loss: float = 0.0
    total_wastage: float = Field(
        0.0,
        description="Flagged wastage averaged over every scanned material",
    )
    total_variance_cost: float = 0.0
    total_loss_cost: float = 0.0
    total_discrepancy_cost: float = 0.0


class SeverityBreakdown(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class DiscrepancySummary(BaseModel):
    """Project-wide discrepancy totals for dashboards."""

    project_id: str
    total_materials: int = 0
    materials_with_issues: int = 0
    metrics: SummaryMetrics = Field(default_factory=SummaryMetrics)
    severity_breakdown: SeverityBreakdown = Field(default_factory=SeverityBreakdown)


class TrendPoint(BaseModel):
    """Discrepancy totals for one calendar month."""

    month: str = Field(..., description="YYYY-MM")
    month_label: str = Field(..., description="e.g. 'Jan 2024'")
    variance: float = 0.0
    loss: float = 0.0
    wastage: float = 0.0
    variance_cost: float = 0.0
    loss_cost: float = 0.0
    total_discrepancy_cost: float = 0.0
    material_count: int = 0
    materials_with_issues: int = 0


class CategoryBreakdown(BaseModel):
    """Discrepancy totals for one material category."""

    category: str
    total_materials: int
    materials_with_issues: int = 0
    variance: float = 0.0
    loss: float = 0.0
    wastage: float = 0.0
    variance_cost: float = 0.0
    loss_cost: float = 0.0
    total_discrepancy_cost: float = 0.0
    issue_rate: float = Field(
        0.0,
        description="materials_with_issues / total_materials * 100",
    )


class SupplierPerformance(BaseModel):
    """Delivery accuracy and variance cost for one supplier."""

    supplier_name: str
    total_materials: int
    total_purchased: float = 0.0
    total_delivered: float = 0.0
    total_variance: float = 0.0
    total_variance_cost: float = 0.0
    average_variance_percentage: float = 0.0
    delivery_accuracy: float = 0.0


# ── Persisted records ────────────────────────────────────────────────


class DiscrepancyRecordResponse(BaseModel):
    """Persisted discrepancy record returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    material_id: UUID
    project_id: UUID
    material_name: Optional[str] = None
    supplier_name: Optional[str] = None
    severity: str
    metrics: dict[str, Any]
    alerts: dict[str, Any]
    status: str = Field(
        ...,
        description="open | investigating | resolved | false_positive",
    )
    is_active: bool
    resolution_history: list[dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ResolutionRequest(BaseModel):
    """Body for a human status change on a discrepancy record."""

    status: DiscrepancyStatus
    user_id: Optional[UUID] = None
    notes: Optional[str] = Field(None, max_length=2000)


class AlertRunResponse(BaseModel):
    """Outcome of a scan-and-alert pass."""

    project_id: str
    discrepancies_found: int
    notifications_created: int
    discrepancies: list[DiscrepancyResult] = Field(default_factory=list)

"""Per-material discrepancy classification.

``classify_material`` computes every metric for one material, checks it
against a threshold set and grades the result.  It takes no session
and does no I/O.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Union

from siteledger.models.enums import Severity
from siteledger.schemas.discrepancy import (
    DiscrepancyAlerts,
    DiscrepancyMetrics,
    DiscrepancyResult,
    ThresholdOverrides,
    ThresholdSet,
)
from siteledger.services.discrepancy.metrics import (
    calculate_loss,
    calculate_loss_cost,
    calculate_loss_percentage,
    calculate_total_discrepancy_cost,
    calculate_variance,
    calculate_variance_cost,
    calculate_variance_percentage,
    calculate_wastage,
    is_loss_excessive,
    is_variance_excessive,
    is_wastage_excessive,
    to_quantity,
)

DEFAULT_THRESHOLDS = ThresholdSet()

# Total discrepancy cost cut-offs (currency units, strict ">")
CRITICAL_COST = 10_000
HIGH_COST = 5_000
MEDIUM_COST = 1_000

ThresholdInput = Union[ThresholdSet, ThresholdOverrides, Mapping[str, Any], None]


def merge_thresholds(
    base: ThresholdSet = DEFAULT_THRESHOLDS,
    *overrides: ThresholdInput,
) -> ThresholdSet:
    """Layer partial overrides over ``base`` and return a new ThresholdSet.

    Later overrides win.  ``None`` values inside an override are ignored,
    so a partially-filled project config only replaces what it sets.
    """
    merged = base.model_dump()
    for override in overrides:
        if override is None:
            continue
        if isinstance(override, (ThresholdSet, ThresholdOverrides)):
            values = override.model_dump(exclude_none=True)
        else:
            values = {k: v for k, v in override.items() if v is not None}
        merged.update({k: v for k, v in values.items() if k in merged})
    return ThresholdSet.model_validate(merged)


def has_overrides(thresholds: ThresholdInput) -> bool:
    """True when ``thresholds`` carries at least one explicit value."""
    if thresholds is None:
        return False
    if isinstance(thresholds, (ThresholdSet, ThresholdOverrides)):
        return bool(thresholds.model_dump(exclude_none=True))
    return any(v is not None for v in thresholds.values())


def get_severity_level(
    has_variance: bool,
    has_loss: bool,
    has_wastage: bool,
    total_cost: float,
) -> Severity:
    """Grade a discrepancy.  Rules are evaluated in order; first match wins.

    1. nothing flagged                               -> NONE
    2. variance and loss, or cost > 10,000           -> CRITICAL
    3. variance, or cost > 5,000                     -> HIGH
    4. (loss or wastage) and cost > 1,000            -> MEDIUM
    5. anything else flagged                         -> LOW
    """
    if not (has_variance or has_loss or has_wastage):
        return Severity.NONE
    if (has_variance and has_loss) or total_cost > CRITICAL_COST:
        return Severity.CRITICAL
    if has_variance or total_cost > HIGH_COST:
        return Severity.HIGH
    if (has_loss or has_wastage) and total_cost > MEDIUM_COST:
        return Severity.MEDIUM
    return Severity.LOW


def _field(material: Any, name: str) -> Any:
    if isinstance(material, Mapping):
        return material.get(name)
    return getattr(material, name, None)


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def classify_material(
    material: Any,
    thresholds: ThresholdInput = None,
) -> DiscrepancyResult:
    """Compute metrics, alerts and severity for one material.

    Args:
        material: A ``Material`` row, a mapping, or any object exposing the
            material attributes.  ``quantity`` is read when
            ``quantity_purchased`` is absent or zero.
        thresholds: Full or partial thresholds merged over the defaults.

    Returns:
        A ``DiscrepancyResult``; ``alerts.has_any_alert`` is False and
        severity NONE when nothing exceeds its threshold.
    """
    thresh = merge_thresholds(DEFAULT_THRESHOLDS, thresholds)

    purchased_raw = _field(material, "quantity_purchased")
    if not purchased_raw:
        purchased_raw = _field(material, "quantity")
    purchased = to_quantity(purchased_raw)
    delivered = to_quantity(_field(material, "quantity_delivered"))
    used = to_quantity(_field(material, "quantity_used"))
    unit_cost = to_quantity(_field(material, "unit_cost"))

    metrics = DiscrepancyMetrics(
        variance=calculate_variance(purchased, delivered),
        variance_percentage=calculate_variance_percentage(purchased, delivered),
        variance_cost=calculate_variance_cost(purchased, delivered, unit_cost),
        loss=calculate_loss(delivered, used),
        loss_percentage=calculate_loss_percentage(delivered, used),
        loss_cost=calculate_loss_cost(delivered, used, unit_cost),
        wastage=calculate_wastage(purchased, delivered, used),
        total_discrepancy_cost=calculate_total_discrepancy_cost(
            purchased, delivered, used, unit_cost
        ),
    )

    has_variance = is_variance_excessive(
        purchased, delivered, thresh.variance_percentage, thresh.variance_amount
    )
    has_loss = is_loss_excessive(
        delivered, used, thresh.loss_percentage, thresh.loss_amount
    )
    has_wastage = is_wastage_excessive(
        purchased, delivered, used, thresh.wastage_percentage
    )

    return DiscrepancyResult(
        material_id=_optional_str(_field(material, "id")),
        material_name=_field(material, "name") or _field(material, "material_name"),
        project_id=_optional_str(_field(material, "project_id")),
        supplier_name=_field(material, "supplier_name") or _field(material, "supplier"),
        category=_field(material, "category"),
        metrics=metrics,
        alerts=DiscrepancyAlerts(
            variance=has_variance,
            loss=has_loss,
            wastage=has_wastage,
            has_any_alert=has_variance or has_loss or has_wastage,
        ),
        severity=get_severity_level(
            has_variance, has_loss, has_wastage, metrics.total_discrepancy_cost
        ),
    )

"""Supplier delivery performance.

Groups the delivered-materials population by supplier name and reports how
much of what was paid for actually arrived.  Aggregation happens in Python
over the raw rows, so the same code runs on PostgreSQL and SQLite.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from siteledger.core.logging import get_logger
from siteledger.models.material import Material
from siteledger.schemas.discrepancy import ScanFilters, SupplierPerformance
from siteledger.services.discrepancy.metrics import (
    calculate_variance,
    calculate_variance_cost,
    calculate_variance_percentage,
    to_quantity,
)
from siteledger.services.discrepancy.queries import coerce_uuid, delivered_materials_query

logger = get_logger(__name__)

UNKNOWN_SUPPLIER = "unknown"


def get_supplier_performance(
    db: Session,
    project_id: Optional[Any] = None,
    filters: Optional[ScanFilters] = None,
) -> list[SupplierPerformance]:
    """Per-supplier delivery accuracy, worst variance cost first.

    Args:
        db: Active database session.
        project_id: Limit to one project; ``None`` covers every project.
        filters: Optional category / date narrowing.

    Returns:
        One ``SupplierPerformance`` per supplier name, or ``[]`` when the
        data could not be read.
    """
    project_uuid = None
    if project_id is not None:
        project_uuid = coerce_uuid(project_id)
        if project_uuid is None:
            logger.warning("Ignoring supplier rollup for invalid project id %r", project_id)
            return []

    try:
        materials: list[Material] = delivered_materials_query(
            db, project_uuid, filters
        ).all()
    except SQLAlchemyError:
        logger.exception("Supplier performance query failed: project=%s", project_id)
        return []

    grouped: dict[str, list[Material]] = defaultdict(list)
    for material in materials:
        grouped[material.supplier_name or UNKNOWN_SUPPLIER].append(material)

    rows: list[SupplierPerformance] = []
    for supplier, items in grouped.items():
        total_purchased = 0.0
        total_delivered = 0.0
        total_variance = 0.0
        total_variance_cost = 0.0
        pct_sum = 0.0

        for m in items:
            purchased = to_quantity(m.quantity_purchased)
            delivered = to_quantity(m.quantity_delivered)
            total_purchased += purchased
            total_delivered += delivered
            total_variance += calculate_variance(purchased, delivered)
            total_variance_cost += calculate_variance_cost(purchased, delivered, m.unit_cost)
            pct_sum += calculate_variance_percentage(purchased, delivered)

        # A zero denominator still yields a (low) accuracy figure, not an error
        denominator = total_purchased if total_purchased > 0 else 1

        rows.append(
            SupplierPerformance(
                supplier_name=supplier,
                total_materials=len(items),
                total_purchased=round(total_purchased, 2),
                total_delivered=round(total_delivered, 2),
                total_variance=round(total_variance, 2),
                total_variance_cost=round(total_variance_cost, 2),
                average_variance_percentage=round(pct_sum / len(items), 2),
                delivery_accuracy=round(total_delivered / denominator * 100, 2),
            )
        )

    rows.sort(key=lambda row: row.total_variance_cost, reverse=True)

    logger.info(
        "Supplier performance computed: suppliers=%d materials=%d",
        len(rows),
        len(materials),
    )
    return rows

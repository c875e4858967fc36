"""Material population queries shared by the scanner and supplier rollups."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Any, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from siteledger.models.material import Material
from siteledger.schemas.discrepancy import ScanFilters

# A material matches a date range when ANY of these falls inside it
DATE_FIELDS = (
    Material.date_delivered,
    Material.date_used,
    Material.created_at,
    Material.updated_at,
)


def coerce_uuid(value: Any) -> Optional[uuid.UUID]:
    """Return ``value`` as a UUID, or None when it is not a valid id."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def date_window(
    start: Optional[date], end: Optional[date]
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Expand filter bounds to datetimes.

    A bare start date begins at midnight; the end bound always runs to the
    last microsecond of its day.
    """
    start_dt: Optional[datetime] = None
    end_dt: Optional[datetime] = None

    if start is not None:
        start_dt = start if isinstance(start, datetime) else datetime.combine(start, time.min)
    if end is not None:
        end_day = end.date() if isinstance(end, datetime) else end
        end_dt = datetime.combine(end_day, time.max)

    return start_dt, end_dt


def delivered_materials_query(
    db: Session,
    project_id: Optional[uuid.UUID] = None,
    filters: Optional[ScanFilters] = None,
) -> Query:
    """Non-deleted materials with something delivered, narrowed by filters."""
    query = db.query(Material).filter(
        Material.deleted_at.is_(None),
        Material.quantity_delivered > 0,
    )

    if project_id is not None:
        query = query.filter(Material.project_id == project_id)

    if filters is None:
        return query

    if filters.category:
        query = query.filter(Material.category == filters.category)

    start_dt, end_dt = date_window(filters.start_date, filters.end_date)
    if start_dt is not None or end_dt is not None:
        per_field = []
        for column in DATE_FIELDS:
            bounds = []
            if start_dt is not None:
                bounds.append(column >= start_dt)
            if end_dt is not None:
                bounds.append(column <= end_dt)
            per_field.append(and_(*bounds))
        query = query.filter(or_(*per_field))

    return query

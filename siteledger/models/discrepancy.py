"""Discrepancy model: the persisted, human-workable side of a scan result."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from siteledger.core.database import Base
from siteledger.models.enums import DiscrepancyStatus


class DiscrepancyRecord(Base):
    """The current discrepancy state of one material.

    Think of this as an open case file: the scanner keeps the numbers
    fresh, while people move the case through investigation to resolution.
    At most one record per material is active at a time.
    """

    __tablename__ = "discrepancies"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    material_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("materials.id"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    material_name: Mapped[Optional[str]] = mapped_column(
        String(200),
    )
    supplier_name: Mapped[Optional[str]] = mapped_column(
        String(200),
    )
    severity: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="LOW | MEDIUM | HIGH | CRITICAL",
    )
    metrics: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
    )
    alerts: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiscrepancyStatus.OPEN.value,
        comment="open | investigating | resolved | false_positive",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    resolution_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )

    __table_args__ = (
        Index(
            "uq_discrepancies_active_material",
            "material_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<DiscrepancyRecord(material_id={self.material_id!r}, "
            f"severity={self.severity!r}, status={self.status!r})>"
        )

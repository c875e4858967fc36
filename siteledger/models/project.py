"""Project model: budget, thresholds and the budget activation baseline."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from siteledger.core.database import Base


class Project(Base):
    """A construction project.

    Only the fields the financial core reads or writes live here; the
    rest of the project profile belongs to the web layer.
    """

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    code: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )
    budget_total: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=0,
    )
    wastage_thresholds: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
        comment="Partial ThresholdSet overrides merged over the defaults",
    )
    actual_spending: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
        comment="dcc | pre_construction | indirect spending breakdown",
    )
    budget_activated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    pre_budget_spending: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        onupdate=func.now(),
    )

    @property
    def display_name(self) -> str:
        return self.name or self.code or "Unknown Project"

    def __repr__(self) -> str:
        return f"<Project(name={self.name!r}, budget_total={self.budget_total})>"

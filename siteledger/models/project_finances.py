"""Project finances model: invested capital and the capital baseline."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column

from siteledger.core.database import Base


class ProjectFinances(Base):
    """One row per project holding capital totals.

    ``total_used`` and ``committed_cost`` are maintained by the finance
    recalculation job; this service only reads them.
    """

    __tablename__ = "project_finances"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id"),
        unique=True,
        nullable=False,
    )
    total_invested: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=0,
    )
    total_used: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=0,
    )
    committed_cost: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=0,
    )
    capital_activated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    pre_capital_used: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
        nullable=True,
    )
    pre_capital_committed: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
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

    def __repr__(self) -> str:
        return (
            f"<ProjectFinances(project_id={self.project_id!r}, "
            f"total_invested={self.total_invested})>"
        )

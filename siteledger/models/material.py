"""Material model: one purchased material line item."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from siteledger.core.database import Base


class Material(Base):
    """A material purchase tracked from order through delivery to usage.

    Comparing the three quantities is what the discrepancy engine does:
    purchased vs delivered is *variance*, delivered vs used is *loss*.
    """

    __tablename__ = "materials"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    phase_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("phases.id"),
        nullable=True,
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        nullable=True,
    )
    supplier_name: Mapped[Optional[str]] = mapped_column(
        String(200),
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    category: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    quantity_purchased: Mapped[Decimal] = mapped_column(
        Numeric(15, 3),
        default=0,
    )
    quantity_delivered: Mapped[Decimal] = mapped_column(
        Numeric(15, 3),
        default=0,
    )
    quantity_used: Mapped[Decimal] = mapped_column(
        Numeric(15, 3),
        default=0,
    )
    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=0,
    )
    status: Mapped[Optional[str]] = mapped_column(
        String(30),
        comment="pending_approval | approved | received | rejected",
    )
    date_delivered: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    date_used: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
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

    __table_args__ = (
        Index("ix_materials_project_category", "project_id", "category"),
    )

    def __repr__(self) -> str:
        return (
            f"<Material(name={self.name!r}, purchased={self.quantity_purchased}, "
            f"delivered={self.quantity_delivered}, used={self.quantity_used})>"
        )

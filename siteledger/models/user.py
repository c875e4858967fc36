"""User model: the subset of the user directory alerting needs."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from siteledger.core.database import Base


class User(Base):
    """A system user who may receive discrepancy alerts."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[Optional[str]] = mapped_column(
        String(200),
    )
    email: Mapped[Optional[str]] = mapped_column(
        String(255),
    )
    role: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment="owner | pm | project_manager | admin | supervisor | ...",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        comment="active | inactive | suspended",
    )
    notification_preferences: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<User(email={self.email!r}, role={self.role!r})>"

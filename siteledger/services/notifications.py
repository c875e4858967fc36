"""Side-effect collaborators used by discrepancy alerting.

The alerter only knows these four small interfaces.  The ``Sql*`` classes
write to this service's own tables; ``LoggingEmailSender`` renders the
critical-discrepancy email and hands it to the log, since mail delivery
belongs to a separate service.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session

from siteledger.core.logging import get_logger
from siteledger.models.notification import AuditLog, Notification
from siteledger.models.user import User
from siteledger.schemas.discrepancy import DiscrepancyResult
from siteledger.services.discrepancy.queries import coerce_uuid

logger = get_logger(__name__)


# ── Interfaces ───────────────────────────────────────────────────────


class NotificationSink(Protocol):
    def create_notifications(self, notifications: list[dict[str, Any]]) -> int: ...


class EmailSender(Protocol):
    def send_discrepancy_email(
        self,
        discrepancy: DiscrepancyResult,
        recipient: User,
        project_name: str,
    ) -> None: ...


class AuditSink(Protocol):
    def create_audit_log(
        self,
        user_id: Optional[Any],
        action: str,
        entity_type: str,
        entity_id: Optional[Any],
        changes: dict[str, Any],
        project_id: Optional[Any] = None,
    ) -> None: ...


class RecipientDirectory(Protocol):
    def active_users_with_roles(self, roles: Iterable[str]) -> list[User]: ...


# ── SQLAlchemy-backed implementations ───────────────────────────────


class SqlNotificationSink:
    """Writes in-app notifications to the ``notifications`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create_notifications(self, notifications: list[dict[str, Any]]) -> int:
        """Insert one row per notification dict; returns how many were added.

        Each dict carries: user_id, type, title, message, and optionally
        project_id, related_model, related_id.
        """
        for n in notifications:
            self.db.add(
                Notification(
                    id=uuid.uuid4(),
                    user_id=coerce_uuid(n["user_id"]),
                    type=n["type"],
                    title=n["title"],
                    message=n["message"],
                    project_id=coerce_uuid(n.get("project_id")),
                    related_model=n.get("related_model"),
                    related_id=coerce_uuid(n.get("related_id")),
                    is_read=False,
                )
            )
        self.db.flush()
        return len(notifications)


class SqlAuditSink:
    """Writes audit entries to the ``audit_logs`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create_audit_log(
        self,
        user_id: Optional[Any],
        action: str,
        entity_type: str,
        entity_id: Optional[Any],
        changes: dict[str, Any],
        project_id: Optional[Any] = None,
    ) -> None:
        self.db.add(
            AuditLog(
                id=uuid.uuid4(),
                user_id=coerce_uuid(user_id) if user_id is not None else None,
                action=action,
                entity_type=entity_type,
                entity_id=coerce_uuid(entity_id) if entity_id is not None else None,
                changes=changes,
                project_id=coerce_uuid(project_id) if project_id is not None else None,
            )
        )
        self.db.flush()


class SqlRecipientDirectory:
    """Looks up alert recipients in the ``users`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def active_users_with_roles(self, roles: Iterable[str]) -> list[User]:
        return (
            self.db.query(User)
            .filter(User.role.in_(list(roles)), User.status == "active")
            .order_by(User.created_at.asc(), User.id.asc())
            .all()
        )


# ── Email rendering ──────────────────────────────────────────────────


def render_discrepancy_email(
    discrepancy: DiscrepancyResult,
    recipient: User,
    project_name: str,
) -> tuple[str, str]:
    """Build (subject, plain-text body) for a critical discrepancy email."""
    m = discrepancy.metrics
    material = discrepancy.material_name or "Unnamed material"
    subject = (
        f"[{discrepancy.severity.value}] Material discrepancy on {project_name}: "
        f"{material}"
    )
    lines = [
        f"Hello {recipient.name or recipient.email},",
        "",
        f"A {discrepancy.severity.value} discrepancy was detected on project "
        f"{project_name}.",
        "",
        f"Material: {material}",
        f"Supplier: {discrepancy.supplier_name or 'n/a'}",
        f"Variance: {m.variance:.2f} units ({m.variance_percentage:.2f}%)",
        f"Loss: {m.loss:.2f} units ({m.loss_percentage:.2f}%)",
        f"Wastage: {m.wastage:.2f}%",
        f"Total cost impact: {m.total_discrepancy_cost:.2f}",
        "",
        "Please review this material in SiteLedger.",
    ]
    return subject, "\n".join(lines)


class LoggingEmailSender:
    """EmailSender that logs the rendered message instead of mailing it."""

    def send_discrepancy_email(
        self,
        discrepancy: DiscrepancyResult,
        recipient: User,
        project_name: str,
    ) -> None:
        if not recipient.email:
            raise ValueError(f"User {recipient.id} has no email address")
        subject, body = render_discrepancy_email(discrepancy, recipient, project_name)
        logger.info("Discrepancy email to=%s subject=%r\n%s", recipient.email, subject, body)

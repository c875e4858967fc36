"""Discrepancy alerting: turns scan results into records people can act on.

One alert pass:
  1. Upserts a discrepancy record per flagged material, keyed by
     (material_id, is_active) rather than by primary key.
  2. Resolves the recipients (active users in the alerting roles).
  3. Emails CRITICAL discrepancies to every eligible recipient, one send at
     a time, each failure isolated.
  4. Fans out one in-app notification per discrepancy and recipient.
  5. Writes a single audit entry with the counts.

Store failures roll the pass back and propagate.  Email failures never do.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from siteledger.core.config import Settings, settings
from siteledger.core.exceptions import InvalidStateError, ResourceNotFoundError
from siteledger.core.logging import get_logger
from siteledger.models.discrepancy import DiscrepancyRecord
from siteledger.models.enums import DiscrepancyStatus, Severity
from siteledger.models.project import Project
from siteledger.models.user import User
from siteledger.schemas.discrepancy import AlertRunResponse, DiscrepancyResult, ScanFilters
from siteledger.services.discrepancy.queries import coerce_uuid
from siteledger.services.discrepancy.scanner import DiscrepancyScanner
from siteledger.services.notifications import (
    AuditSink,
    EmailSender,
    LoggingEmailSender,
    NotificationSink,
    RecipientDirectory,
    SqlAuditSink,
    SqlNotificationSink,
    SqlRecipientDirectory,
)

logger = get_logger(__name__)

AUDIT_ACTION = "DISCREPANCY_ALERTS_CREATED"
RELATED_MODEL = "MATERIAL"


def build_alert_message(discrepancy: DiscrepancyResult) -> str:
    """One-line notification text listing only the flagged metrics.

    e.g. ``Cement - Variance: 200.00 units (20.00%). Total cost impact: 2000.00``
    """
    m = discrepancy.metrics
    parts: list[str] = []
    if discrepancy.alerts.variance:
        parts.append(f"Variance: {m.variance:.2f} units ({m.variance_percentage:.2f}%)")
    if discrepancy.alerts.loss:
        parts.append(f"Loss: {m.loss:.2f} units ({m.loss_percentage:.2f}%)")
    if discrepancy.alerts.wastage:
        parts.append(f"Wastage: {m.wastage:.2f}%")

    name = discrepancy.material_name or "Unnamed material"
    return (
        f"{name} - {', '.join(parts)}. "
        f"Total cost impact: {m.total_discrepancy_cost:.2f}"
    )


def build_alert_title(severity: Severity) -> str:
    return f"Material Discrepancy Alert - {severity.value} Severity"


def wants_discrepancy_email(user: User) -> bool:
    """Email is on unless the user explicitly turned it off."""
    if not user.email:
        return False
    prefs = user.notification_preferences or {}
    if prefs.get("emailNotifications") is False:
        return False
    if prefs.get("discrepancyAlerts") is False:
        return False
    return True


class DiscrepancyAlerter:
    """Persists flagged discrepancies and notifies the people responsible."""

    def __init__(
        self,
        db: Session,
        notifications: Optional[NotificationSink] = None,
        emails: Optional[EmailSender] = None,
        audit: Optional[AuditSink] = None,
        recipients: Optional[RecipientDirectory] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.notifications = notifications or SqlNotificationSink(db)
        self.emails = emails or LoggingEmailSender()
        self.audit = audit or SqlAuditSink(db)
        self.recipients = recipients or SqlRecipientDirectory(db)
        self.config = config or settings

    # ── Public API ───────────────────────────────────────────────────

    def create_alerts(
        self,
        discrepancies: list[DiscrepancyResult],
        project_id: Any,
        actor_id: Optional[Any] = None,
    ) -> int:
        """Record and announce ``discrepancies`` for one project.

        Args:
            discrepancies: Scan results; unflagged entries are ignored.
            project_id: Project the discrepancies belong to.
            actor_id: User to attribute the audit entry to.  Defaults to the
                first recipient.

        Returns:
            Number of in-app notifications created (0 when nobody is
            eligible to receive them).
        """
        flagged = [d for d in discrepancies if d.alerts.has_any_alert]
        if not flagged:
            return 0

        project_uuid = coerce_uuid(project_id)
        if project_uuid is None:
            logger.warning("Skipping alerts for invalid project id %r", project_id)
            return 0

        try:
            for discrepancy in flagged:
                self._upsert_record(discrepancy, project_uuid)

            users = self.recipients.active_users_with_roles(
                self.config.alert_recipient_roles
            )
            if not users:
                self.db.commit()
                logger.warning(
                    "No alert recipients for project=%s; %d discrepancies recorded",
                    project_id,
                    len(flagged),
                )
                return 0

            project = self.db.get(Project, project_uuid)
            project_name = project.display_name if project is not None else str(project_id)

            for discrepancy in flagged:
                if discrepancy.severity == Severity.CRITICAL:
                    self._send_critical_emails(discrepancy, users, project_name)

            payload = [
                {
                    "user_id": user.id,
                    "type": self.config.alert_notification_type,
                    "title": build_alert_title(discrepancy.severity),
                    "message": build_alert_message(discrepancy),
                    "project_id": project_uuid,
                    "related_model": RELATED_MODEL,
                    "related_id": discrepancy.material_id,
                }
                for discrepancy in flagged
                for user in users
            ]
            created = self.notifications.create_notifications(payload)

            self.audit.create_audit_log(
                user_id=actor_id if actor_id is not None else users[0].id,
                action=AUDIT_ACTION,
                entity_type="PROJECT",
                entity_id=project_uuid,
                changes={
                    "discrepancy_count": len(flagged),
                    "notification_count": created,
                },
                project_id=project_uuid,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Alert pass failed: project=%s", project_id)
            raise

        logger.info(
            "Alerts created: project=%s discrepancies=%d recipients=%d notifications=%d",
            project_id,
            len(flagged),
            len(users),
            created,
        )
        return created

    def scan_and_alert(
        self,
        project_id: Any,
        filters: Optional[ScanFilters] = None,
        actor_id: Optional[Any] = None,
    ) -> AlertRunResponse:
        """Scan ``project_id`` and alert on whatever is flagged."""
        results = DiscrepancyScanner(self.db).scan(project_id, filters)
        created = self.create_alerts(results, project_id, actor_id=actor_id)
        return AlertRunResponse(
            project_id=str(project_id),
            discrepancies_found=len(results),
            notifications_created=created,
            discrepancies=results,
        )

    def resolve_discrepancy(
        self,
        record_id: Any,
        status: DiscrepancyStatus,
        user_id: Optional[Any] = None,
        notes: Optional[str] = None,
    ) -> DiscrepancyRecord:
        """Move a discrepancy record to ``status`` and log the change.

        Terminal statuses close the record, so the next scan that still
        flags the material opens a fresh one.  A closed record cannot be
        moved again.
        """
        record_uuid = coerce_uuid(record_id)
        record = self.db.get(DiscrepancyRecord, record_uuid) if record_uuid else None
        if record is None:
            raise ResourceNotFoundError("Discrepancy", record_id)

        status = DiscrepancyStatus(status)
        if not record.is_active:
            raise InvalidStateError(
                f"Discrepancy {record.id} is closed ({record.status})"
            )

        now = datetime.utcnow()
        record.resolution_history = [
            *(record.resolution_history or []),
            {
                "from_status": record.status,
                "status": status.value,
                "user_id": str(user_id) if user_id is not None else None,
                "notes": notes,
                "at": now.isoformat(),
            },
        ]
        record.status = status.value
        record.updated_at = now
        if status.is_terminal:
            record.is_active = False

        self.db.commit()
        self.db.refresh(record)

        logger.info(
            "Discrepancy %s moved to %s (active=%s)",
            record.id,
            record.status,
            record.is_active,
        )
        return record

    # ── Private helpers ──────────────────────────────────────────────

    def _upsert_record(self, discrepancy: DiscrepancyResult, project_uuid: uuid.UUID) -> None:
        """Refresh the material's active record, creating it if needed.

        Status and resolution history belong to people and are never
        touched here.
        """
        material_uuid = coerce_uuid(discrepancy.material_id)
        if material_uuid is None:
            logger.warning(
                "Discrepancy without a material id not recorded: %s",
                discrepancy.material_name,
            )
            return

        values = {
            "severity": discrepancy.severity.value,
            "metrics": discrepancy.metrics.model_dump(),
            "alerts": discrepancy.alerts.model_dump(),
            "material_name": discrepancy.material_name,
            "supplier_name": discrepancy.supplier_name,
            "updated_at": datetime.utcnow(),
        }
        refresh = (
            update(DiscrepancyRecord)
            .where(
                DiscrepancyRecord.material_id == material_uuid,
                DiscrepancyRecord.is_active.is_(True),
            )
            .values(**values)
        )

        if self.db.execute(refresh).rowcount:
            return

        try:
            with self.db.begin_nested():
                self.db.add(
                    DiscrepancyRecord(
                        id=uuid.uuid4(),
                        material_id=material_uuid,
                        project_id=project_uuid,
                        status=DiscrepancyStatus.OPEN.value,
                        is_active=True,
                        resolution_history=[],
                        **values,
                    )
                )
                self.db.flush()
        except IntegrityError:
            # Another pass inserted the active record first
            logger.info("Active discrepancy for material=%s created concurrently", material_uuid)
            self.db.execute(refresh)

    def _send_critical_emails(
        self,
        discrepancy: DiscrepancyResult,
        users: list[User],
        project_name: str,
    ) -> None:
        for user in users:
            if not wants_discrepancy_email(user):
                continue
            try:
                self.emails.send_discrepancy_email(discrepancy, user, project_name)
            except Exception:
                logger.exception(
                    "Discrepancy email failed: user=%s material=%s",
                    user.id,
                    discrepancy.material_id,
                )

"""Tests for discrepancy alerting, record upserts and resolution (SQLite)."""

from __future__ import annotations

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from siteledger.core.exceptions import InvalidStateError, ResourceNotFoundError
from siteledger.models.discrepancy import DiscrepancyRecord
from siteledger.models.enums import DiscrepancyStatus, Severity
from siteledger.models.notification import AuditLog, Notification
from siteledger.services.discrepancy.alerts import (
    DiscrepancyAlerter,
    build_alert_message,
    build_alert_title,
    wants_discrepancy_email,
)
from siteledger.services.discrepancy.classifier import classify_material
from siteledger.services.discrepancy.scanner import DiscrepancyScanner


# ── Helpers ──────────────────────────────────────────────────────────


@pytest.fixture
def short_delivery(make_material):
    """HIGH severity: 20% variance and 20% wastage."""
    return make_material(
        name="Cement 42.5R",
        quantity_purchased=1000,
        quantity_delivered=800,
        quantity_used=800,
        unit_cost=10,
    )


@pytest.fixture
def critical_loss(make_material):
    """CRITICAL severity: variance and loss both flagged."""
    return make_material(
        name="Copper cable 4mm",
        category="electrical",
        quantity_purchased=100,
        quantity_delivered=80,
        quantity_used=60,
        unit_cost=25,
    )


def _scan(db_session, project):
    return DiscrepancyScanner(db_session).scan(project.id)


def _alerter(db_session, emails=None) -> DiscrepancyAlerter:
    return DiscrepancyAlerter(db_session, emails=emails or MagicMock())


# ── Message building ─────────────────────────────────────────────────


class TestMessages:
    def test_only_flagged_clauses_are_listed(self) -> None:
        result = classify_material(
            {
                "id": "m-1",
                "name": "Cement 42.5R",
                "quantity_purchased": 1000,
                "quantity_delivered": 800,
                "quantity_used": 800,
                "unit_cost": 10,
            }
        )
        assert build_alert_message(result) == (
            "Cement 42.5R - Variance: 200.00 units (20.00%), Wastage: 20.00%. "
            "Total cost impact: 2000.00"
        )

    def test_title(self) -> None:
        assert build_alert_title(Severity.HIGH) == "Material Discrepancy Alert - HIGH Severity"

    @pytest.mark.parametrize(
        "email,prefs,expected",
        [
            ("a@example.com", None, True),
            ("a@example.com", {}, True),
            ("a@example.com", {"emailNotifications": False}, False),
            ("a@example.com", {"discrepancyAlerts": False}, False),
            ("a@example.com", {"discrepancyAlerts": True, "emailNotifications": True}, True),
            (None, None, False),
        ],
    )
    def test_email_preferences(self, make_user, email, prefs, expected) -> None:
        user = make_user(email=email, notification_preferences=prefs)
        assert wants_discrepancy_email(user) is expected


# ── create_alerts ────────────────────────────────────────────────────


class TestCreateAlerts:
    def test_notifications_for_every_recipient(
        self, db_session, project, make_user, short_delivery, critical_loss
    ) -> None:
        make_user(role="owner", email="owner@example.com")
        make_user(role="pm")
        make_user(role="supervisor", email="site@example.com")
        make_user(role="admin", status="inactive")

        created = _alerter(db_session).create_alerts(_scan(db_session, project), project.id)

        # 2 discrepancies x 2 eligible recipients
        assert created == 4
        notifications = db_session.query(Notification).all()
        assert len(notifications) == 4
        assert {n.type for n in notifications} == {"discrepancy_alert"}
        assert {n.related_model for n in notifications} == {"MATERIAL"}
        assert all(n.project_id == project.id for n in notifications)

    def test_records_opened_once_and_refreshed(
        self, db_session, project, make_user, short_delivery
    ) -> None:
        make_user()
        alerter = _alerter(db_session)

        alerter.create_alerts(_scan(db_session, project), project.id)
        record = db_session.query(DiscrepancyRecord).one()
        record.status = DiscrepancyStatus.INVESTIGATING.value
        record.resolution_history = [{"status": "investigating"}]
        db_session.commit()

        short_delivery.quantity_delivered = 500
        db_session.commit()
        alerter.create_alerts(_scan(db_session, project), project.id)

        records = db_session.query(DiscrepancyRecord).all()
        assert len(records) == 1
        db_session.refresh(records[0])
        assert records[0].metrics["variance"] == 500.0
        assert records[0].status == "investigating"
        assert records[0].resolution_history == [{"status": "investigating"}]
        assert records[0].is_active is True

    def test_no_recipients_records_but_notifies_nobody(
        self, db_session, project, short_delivery
    ) -> None:
        created = _alerter(db_session).create_alerts(_scan(db_session, project), project.id)

        assert created == 0
        assert db_session.query(DiscrepancyRecord).count() == 1
        assert db_session.query(Notification).count() == 0
        assert db_session.query(AuditLog).count() == 0

    def test_unflagged_results_are_ignored(self, db_session, project, make_user, make_material) -> None:
        make_user()
        clean = classify_material(make_material())

        assert _alerter(db_session).create_alerts([clean], project.id) == 0
        assert db_session.query(DiscrepancyRecord).count() == 0

    def test_critical_emails_respect_preferences(
        self, db_session, project, make_user, critical_loss
    ) -> None:
        make_user(email="on@example.com")
        make_user(email="off@example.com", notification_preferences={"discrepancyAlerts": False})
        make_user(email=None)
        emails = MagicMock()

        created = _alerter(db_session, emails).create_alerts(
            _scan(db_session, project), project.id
        )

        assert created == 3
        assert emails.send_discrepancy_email.call_count == 1
        discrepancy, recipient, project_name = emails.send_discrepancy_email.call_args.args
        assert discrepancy.severity == Severity.CRITICAL
        assert recipient.email == "on@example.com"
        assert project_name == "Riverside Apartments"

    def test_non_critical_sends_no_email(
        self, db_session, project, make_user, short_delivery
    ) -> None:
        make_user()
        emails = MagicMock()

        _alerter(db_session, emails).create_alerts(_scan(db_session, project), project.id)

        emails.send_discrepancy_email.assert_not_called()

    def test_email_failure_does_not_block_others(
        self, db_session, project, make_user, critical_loss
    ) -> None:
        make_user(email="first@example.com")
        make_user(email="second@example.com")
        emails = MagicMock()
        emails.send_discrepancy_email.side_effect = [ConnectionError("smtp down"), None]

        created = _alerter(db_session, emails).create_alerts(
            _scan(db_session, project), project.id
        )

        assert emails.send_discrepancy_email.call_count == 2
        assert created == 2
        assert db_session.query(Notification).count() == 2

    def test_audit_entry_attributed_to_first_recipient(
        self, db_session, project, make_user, short_delivery, critical_loss
    ) -> None:
        first = make_user(email="first@example.com", created_at=datetime(2024, 1, 1))
        make_user(email="second@example.com", created_at=datetime(2024, 1, 2))

        _alerter(db_session).create_alerts(_scan(db_session, project), project.id)

        audit = db_session.query(AuditLog).one()
        assert audit.action == "DISCREPANCY_ALERTS_CREATED"
        assert audit.entity_type == "PROJECT"
        assert audit.entity_id == project.id
        assert audit.changes == {"discrepancy_count": 2, "notification_count": 4}
        assert audit.user_id == first.id

    def test_audit_entry_uses_explicit_actor(
        self, db_session, project, make_user, short_delivery
    ) -> None:
        make_user()
        actor = uuid.uuid4()

        _alerter(db_session).create_alerts(
            _scan(db_session, project), project.id, actor_id=actor
        )

        assert db_session.query(AuditLog).one().user_id == actor


# ── scan_and_alert ───────────────────────────────────────────────────


def test_scan_and_alert(db_session, project, make_user, short_delivery, critical_loss) -> None:
    make_user()

    run = _alerter(db_session).scan_and_alert(project.id)

    assert run.project_id == str(project.id)
    assert run.discrepancies_found == 2
    assert run.notifications_created == 2
    assert {d.severity for d in run.discrepancies} == {Severity.HIGH, Severity.CRITICAL}


# ── resolve_discrepancy ──────────────────────────────────────────────


class TestResolveDiscrepancy:
    @pytest.fixture
    def record(self, db_session, project, make_user, short_delivery) -> DiscrepancyRecord:
        make_user()
        _alerter(db_session).create_alerts(_scan(db_session, project), project.id)
        return db_session.query(DiscrepancyRecord).one()

    def test_investigating_keeps_record_active(self, db_session, record) -> None:
        user_id = uuid.uuid4()

        updated = _alerter(db_session).resolve_discrepancy(
            record.id, DiscrepancyStatus.INVESTIGATING, user_id=user_id, notes="Checking GRN"
        )

        assert updated.status == "investigating"
        assert updated.is_active is True
        assert len(updated.resolution_history) == 1
        entry = updated.resolution_history[0]
        assert entry["from_status"] == "open"
        assert entry["status"] == "investigating"
        assert entry["user_id"] == str(user_id)
        assert entry["notes"] == "Checking GRN"

    def test_resolution_closes_record_and_rescan_opens_new_one(
        self, db_session, project, record
    ) -> None:
        alerter = _alerter(db_session)
        alerter.resolve_discrepancy(record.id, DiscrepancyStatus.RESOLVED, notes="Credit note")

        alerter.create_alerts(_scan(db_session, project), project.id)

        records = db_session.query(DiscrepancyRecord).all()
        assert len(records) == 2
        assert sorted(r.is_active for r in records) == [False, True]
        active = next(r for r in records if r.is_active)
        assert active.status == "open"

    def test_closed_record_cannot_move(self, db_session, record) -> None:
        alerter = _alerter(db_session)
        alerter.resolve_discrepancy(record.id, DiscrepancyStatus.FALSE_POSITIVE)

        with pytest.raises(InvalidStateError):
            alerter.resolve_discrepancy(record.id, DiscrepancyStatus.OPEN)

    def test_unknown_record(self, db_session) -> None:
        with pytest.raises(ResourceNotFoundError):
            _alerter(db_session).resolve_discrepancy(uuid.uuid4(), DiscrepancyStatus.RESOLVED)


# ── One active record per material ───────────────────────────────────


class TestActiveRecordUniqueness:
    @pytest.fixture
    def recorded(self, db_session, project, short_delivery) -> DiscrepancyRecord:
        _alerter(db_session).create_alerts(_scan(db_session, project), project.id)
        return db_session.query(DiscrepancyRecord).one()

    def _duplicate(self, record: DiscrepancyRecord, is_active: bool) -> DiscrepancyRecord:
        return DiscrepancyRecord(
            id=uuid.uuid4(),
            material_id=record.material_id,
            project_id=record.project_id,
            severity=record.severity,
            metrics=record.metrics,
            alerts=record.alerts,
            is_active=is_active,
        )

    def test_second_active_record_rejected(self, db_session, recorded) -> None:
        db_session.add(self._duplicate(recorded, is_active=True))

        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_inactive_history_allowed(self, db_session, recorded) -> None:
        db_session.add(self._duplicate(recorded, is_active=False))
        db_session.commit()

        assert db_session.query(DiscrepancyRecord).count() == 2

    def test_concurrent_insert_falls_back_to_update(
        self, db_session, project, short_delivery, recorded, monkeypatch
    ) -> None:
        short_delivery.quantity_delivered = 500
        db_session.commit()
        results = _scan(db_session, project)

        real_execute = db_session.execute
        updates = []

        def racing_execute(statement, *args, **kwargs):
            result = real_execute(statement, *args, **kwargs)
            if getattr(statement, "is_dml", False):
                updates.append(statement)
                if len(updates) == 1:
                    # Report no match, as if the active record appeared afterwards
                    return SimpleNamespace(rowcount=0)
            return result

        monkeypatch.setattr(db_session, "execute", racing_execute)
        _alerter(db_session).create_alerts(results, project.id)
        monkeypatch.undo()

        # Guarded update, failed savepoint insert, then the retried update
        assert len(updates) == 2
        records = db_session.query(DiscrepancyRecord).all()
        assert len(records) == 1
        db_session.refresh(records[0])
        assert records[0].is_active is True
        assert records[0].metrics["variance"] == 500.0
        assert records[0].id == recorded.id

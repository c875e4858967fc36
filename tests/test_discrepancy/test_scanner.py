"""Integration tests for the project discrepancy scanner (SQLite)."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from siteledger.models.enums import Severity
from siteledger.schemas.discrepancy import ScanFilters, ThresholdOverrides, ThresholdSet
from siteledger.services.discrepancy.scanner import DiscrepancyScanner


# ── Helpers ──────────────────────────────────────────────────────────


@pytest.fixture
def seeded(make_material):
    """Three materials: one clean, one short-delivered, one with site loss."""
    clean = make_material(name="Cement 50kg", category="cement")
    short = make_material(
        name="Cement 42.5R",
        category="cement",
        supplier_name="Bamburi",
        quantity_purchased=1000,
        quantity_delivered=800,
        quantity_used=800,
        unit_cost=10,
        date_delivered=datetime(2024, 1, 20),
    )
    lost = make_material(
        name="Steel rebar Y12",
        category="steel",
        supplier_name="Devki",
        quantity_purchased=500,
        quantity_delivered=500,
        quantity_used=300,
        unit_cost=50,
        date_delivered=datetime(2024, 2, 3),
    )
    return {"clean": clean, "short": short, "lost": lost}


def _failing_session() -> MagicMock:
    db = MagicMock()
    db.get.side_effect = SQLAlchemyError("database is down")
    db.query.side_effect = SQLAlchemyError("database is down")
    return db


# ── scan ─────────────────────────────────────────────────────────────


class TestScan:
    def test_returns_flagged_materials_only(self, db_session, project, seeded) -> None:
        results = DiscrepancyScanner(db_session).scan(project.id)

        names = {r.material_name for r in results}
        assert names == {"Cement 42.5R", "Steel rebar Y12"}
        assert all(r.project_id == str(project.id) for r in results)

    def test_excludes_deleted_and_undelivered(self, db_session, project, make_material) -> None:
        make_material(
            quantity_purchased=1000,
            quantity_delivered=500,
            quantity_used=0,
            deleted_at=datetime(2024, 3, 1),
        )
        make_material(quantity_purchased=1000, quantity_delivered=0, quantity_used=0)

        assert DiscrepancyScanner(db_session).scan(project.id) == []

    def test_unknown_and_invalid_project(self, db_session, seeded) -> None:
        scanner = DiscrepancyScanner(db_session)
        assert scanner.scan(uuid.uuid4()) == []
        assert scanner.scan("not-a-uuid") == []

    def test_store_failure_returns_empty_list(self) -> None:
        assert DiscrepancyScanner(_failing_session()).scan(uuid.uuid4()) == []

    def test_stored_project_thresholds_apply(self, db_session, project, seeded) -> None:
        project.wastage_thresholds = {
            "variance_percentage": 25,
            "variance_amount": 500,
            "wastage_percentage": 50,
        }
        db_session.commit()

        results = DiscrepancyScanner(db_session).scan(project.id)

        # Short delivery (20% variance, 20% wastage) is now within limits
        assert [r.material_name for r in results] == ["Steel rebar Y12"]

    def test_explicit_thresholds_win_over_stored(self, db_session, project, seeded) -> None:
        project.wastage_thresholds = {
            "variance_percentage": 25,
            "variance_amount": 500,
            "wastage_percentage": 50,
        }
        db_session.commit()

        filters = ScanFilters(thresholds=ThresholdOverrides(variance_percentage=10))
        results = DiscrepancyScanner(db_session).scan(project.id, filters)

        assert {r.material_name for r in results} == {"Cement 42.5R", "Steel rebar Y12"}

    def test_category_filter(self, db_session, project, seeded) -> None:
        results = DiscrepancyScanner(db_session).scan(
            project.id, ScanFilters(category="steel")
        )
        assert [r.material_name for r in results] == ["Steel rebar Y12"]

    def test_date_filter_matches_any_date_field(self, db_session, project, seeded) -> None:
        filters = ScanFilters(start_date=date(2024, 2, 1), end_date=date(2024, 2, 29))
        results = DiscrepancyScanner(db_session).scan(project.id, filters)
        assert [r.material_name for r in results] == ["Steel rebar Y12"]

    def test_end_date_covers_the_whole_day(self, db_session, project, make_material) -> None:
        make_material(
            name="Late delivery",
            quantity_purchased=1000,
            quantity_delivered=800,
            quantity_used=800,
            date_delivered=datetime(2024, 3, 31, 17, 45),
        )
        filters = ScanFilters(start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))

        results = DiscrepancyScanner(db_session).scan(project.id, filters)

        assert [r.material_name for r in results] == ["Late delivery"]


# ── summarize ────────────────────────────────────────────────────────


class TestSummarize:
    def test_totals_and_breakdown(self, db_session, project, seeded) -> None:
        summary = DiscrepancyScanner(db_session).summarize(project.id)

        assert summary.total_materials == 3
        assert summary.materials_with_issues == 2
        assert summary.metrics.total_variance == 200.0
        assert summary.metrics.total_loss == 200.0
        # (20 + 40) flagged wastage spread over all three materials
        assert summary.metrics.total_wastage == 20.0
        assert summary.metrics.total_variance_cost == 2000.0
        assert summary.metrics.total_loss_cost == 10000.0
        assert summary.metrics.total_discrepancy_cost == 12000.0
        assert summary.severity_breakdown.high == 2
        assert summary.severity_breakdown.critical == 0

    def test_empty_project_gives_zero_summary(self, db_session, project) -> None:
        summary = DiscrepancyScanner(db_session).summarize(project.id)

        assert summary is not None
        assert summary.total_materials == 0
        assert summary.metrics.total_discrepancy_cost == 0.0

    def test_is_deterministic(self, db_session, project, seeded) -> None:
        scanner = DiscrepancyScanner(db_session)
        assert scanner.summarize(project.id) == scanner.summarize(project.id)

    def test_store_failure_returns_none(self) -> None:
        assert DiscrepancyScanner(_failing_session()).summarize(uuid.uuid4()) is None


# ── trends ───────────────────────────────────────────────────────────


class TestTrends:
    def test_monthly_buckets_sorted_ascending(self, db_session, project, seeded) -> None:
        trends = DiscrepancyScanner(db_session).trends(project.id)

        assert [t.month for t in trends] == ["2024-01", "2024-02"]
        january, february = trends
        assert january.month_label == "Jan 2024"
        assert january.material_count == 2
        assert january.materials_with_issues == 1
        assert january.variance == 200.0
        assert january.wastage == 10.0
        assert february.loss == 200.0
        assert february.total_discrepancy_cost == 10000.0

    def test_falls_back_to_usage_date(self, db_session, project, make_material) -> None:
        make_material(
            quantity_purchased=100,
            quantity_delivered=100,
            quantity_used=50,
            date_delivered=None,
            date_used=datetime(2023, 11, 2),
        )
        trends = DiscrepancyScanner(db_session).trends(project.id)
        assert [t.month_label for t in trends] == ["Nov 2023"]

    def test_store_failure_returns_empty_list(self) -> None:
        assert DiscrepancyScanner(_failing_session()).trends(uuid.uuid4()) == []


# ── category_analysis ────────────────────────────────────────────────


class TestCategoryAnalysis:
    def test_sorted_by_cost_with_issue_rate(self, db_session, project, seeded, make_material) -> None:
        make_material(
            name="Paint",
            category=None,
            quantity_purchased=10,
            quantity_delivered=10,
            quantity_used=5,
            unit_cost=20,
        )

        analysis = DiscrepancyScanner(db_session).category_analysis(project.id)

        assert [c.category for c in analysis] == ["steel", "cement", "other"]
        cement = analysis[1]
        assert cement.total_materials == 2
        assert cement.materials_with_issues == 1
        assert cement.issue_rate == 50.0
        assert analysis[2].total_discrepancy_cost == 100.0
        assert all(c.total_materials > 0 for c in analysis)

    def test_severity_of_results_is_graded(self, db_session, project, seeded) -> None:
        results = DiscrepancyScanner(db_session).scan(project.id)
        assert {r.severity for r in results} == {Severity.HIGH}


# ── threshold resolution ─────────────────────────────────────────────


class TestThresholdResolution:
    @pytest.mark.parametrize(
        "stored",
        [
            {"variance_percentage": "five"},
            {"loss_percentage": -3},
            ["variance_percentage", 25],
            "strict",
        ],
    )
    def test_malformed_stored_thresholds_fall_back_to_defaults(
        self, db_session, project, seeded, stored
    ) -> None:
        project.wastage_thresholds = stored
        db_session.commit()
        scanner = DiscrepancyScanner(db_session)

        assert scanner.resolve_thresholds(project.id) == ThresholdSet()
        assert {r.material_name for r in scanner.scan(project.id)} == {
            "Cement 42.5R",
            "Steel rebar Y12",
        }
        assert scanner.summarize(project.id).materials_with_issues == 2
        assert [t.month for t in scanner.trends(project.id)] == ["2024-01", "2024-02"]
        assert [c.category for c in scanner.category_analysis(project.id)] == [
            "steel",
            "cement",
        ]

    def test_partial_stored_thresholds_merge_over_defaults(
        self, db_session, project
    ) -> None:
        project.wastage_thresholds = {"loss_percentage": 30}
        db_session.commit()

        resolved = DiscrepancyScanner(db_session).resolve_thresholds(project.id)

        assert resolved.loss_percentage == 30
        assert resolved.variance_percentage == ThresholdSet().variance_percentage

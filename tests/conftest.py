"""Shared test fixtures for the SiteLedger service tests.

Uses a file-backed SQLite database so tests run without PostgreSQL.
"""

from __future__ import annotations

import os

# Override DATABASE_URL before importing anything from siteledger: the
# Settings model reads .env eagerly via pydantic-settings, and the
# module-level ``engine`` in siteledger.core.database would try to connect
# to PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from siteledger.core.database import Base, create_db_engine, get_db
from siteledger.main import app
from siteledger.models import Material, Project, User

# Same dialect setup as the app: foreign keys on, partial unique indexes
# created through their sqlite_where clause.
engine = create_db_engine(os.environ["DATABASE_URL"])
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test, dropped again afterwards."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """TestClient whose requests share the test's session."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ── Data builders ────────────────────────────────────────────────────


@pytest.fixture
def project(db_session) -> Project:
    """A project with no budget and no stored thresholds."""
    obj = Project(id=uuid.uuid4(), name="Riverside Apartments", code="RSA-01")
    db_session.add(obj)
    db_session.commit()
    return obj


@pytest.fixture
def make_material(db_session, project):
    """Factory inserting a material row; quantities default to a clean line."""

    def _make(**kwargs) -> Material:
        defaults = {
            "id": uuid.uuid4(),
            "project_id": project.id,
            "name": "Cement 50kg",
            "category": "cement",
            "supplier_name": "Bamburi",
            "quantity_purchased": Decimal("100"),
            "quantity_delivered": Decimal("100"),
            "quantity_used": Decimal("100"),
            "unit_cost": Decimal("10"),
            "date_delivered": datetime(2024, 1, 10),
        }
        defaults.update(kwargs)
        material = Material(**defaults)
        db_session.add(material)
        db_session.commit()
        return material

    return _make


@pytest.fixture
def make_user(db_session):
    """Factory inserting a user; active project manager by default."""

    def _make(**kwargs) -> User:
        defaults = {
            "id": uuid.uuid4(),
            "name": "Grace Wanjiru",
            "email": "grace@example.com",
            "role": "pm",
            "status": "active",
        }
        defaults.update(kwargs)
        user = User(**defaults)
        db_session.add(user)
        db_session.commit()
        return user

    return _make

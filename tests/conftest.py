"""
Pytest fixtures for the pharmacy ledger test suite.

Provides:
- an in-memory SQLite database per test (tables created fresh)
- a `db` session bound to it
- a FastAPI TestClient whose get_db dependency yields that same session
- small factories for medications / batches / allocations
"""
import logging
import os

# must be set before app.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from app.core.logging import configure_logging, reset_logging
from app.db.base import Base, import_models
from app.db.session import get_db, make_engine, make_session_factory
from app.services import procurement, stock_ledger


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    import_models()
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db):
    from app.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_medication(db):
    """Create + commit a medication: make_medication(name=..., quantity=..., mrp=...)."""

    def _make(name="Paracetamol 500mg", manufacturer="ACME", quantity=100, mrp="10.00", **kw):
        med = stock_ledger.create_medication(
            db,
            name=name,
            manufacturer=manufacturer,
            mrp=Decimal(str(mrp)),
            initial_quantity=quantity,
            actor="tester",
            **kw,
        )
        db.commit()
        return med

    return _make


@pytest.fixture
def buy(db):
    """Run buy_medicine and commit; returns the BuyResult."""

    def _buy(**kw):
        kw.setdefault("name", "Amoxicillin 250mg")
        kw.setdefault("manufacturer", "Cipla")
        kw.setdefault("quantity", 50)
        kw.setdefault("mrp", Decimal("12.50"))
        res = procurement.buy_medicine(db, actor="tester", **kw)
        db.commit()
        return res

    return _buy


@pytest.fixture
def allocate(db):
    """Allocate + commit: allocate(med, quantity, department="icu", batch_number="B1")."""

    def _allocate(med, quantity, department="icu", batch_number="B1", **kw):
        row = stock_ledger.allocate_to_department(
            db,
            medication_id=med.id,
            batch_number=batch_number,
            department=department,
            quantity=quantity,
            actor="tester",
            **kw,
        )
        db.commit()
        return row

    return _allocate

import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Configure a disposable database URL before importing the application Base.
# Tests never use this engine; each test builds its own.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

from core.config import Settings  # noqa: E402
from core.database import Base  # noqa: E402
from apps.spare_parts.models import SparePart  # noqa: E402
from apps.jobs.models import ServiceJob  # noqa: E402
from apps.inventory import models as inventory_models  # noqa: E402,F401
from apps.outward_flow import models as outward_flow_models  # noqa: E402,F401
from apps.inventory.services import StockLedger  # noqa: E402


def _session_factory(engine):
    Base.metadata.create_all(bind=engine)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSession = _session_factory(engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path):
    """Sessions on a file-backed database, for tests that need two connections."""
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'spareflow-test.db'}",
        connect_args={"check_same_thread": False},
    )
    yield _session_factory(engine)
    engine.dispose()


@pytest.fixture()
def test_settings():
    return Settings(
        DEFAULT_AUTO_APPROVE_LIMIT=500.0,
        APPROVAL_LEVEL_THRESHOLDS=[1000.0, 5000.0],
        AUTO_ISSUE_ON_APPROVAL=False,
        RESERVATION_TTL_HOURS=24,
        TAX_PERCENT=18.0,
        OVERHEAD_PERCENT=10.0,
        LABOR_MARKUP_PERCENT=20.0,
        DEFAULT_LABOR_COST=500.0,
    )


@pytest.fixture()
def make_part(db_session):
    counter = {"n": 0}

    def _make(db=None, **overrides):
        db = db or db_session
        counter["n"] += 1
        values = dict(
            name=f"Brake Pad {counter['n']}",
            part_number=f"BP-{counter['n']:04d}",
            category_id="BRAKES",
            cost_price=60.0,
            selling_price=100.0,
            markup_percent=66.67,
            warranty_months=6,
        )
        values.update(overrides)
        part = SparePart(**values)
        db.add(part)
        db.commit()
        return part

    return _make


@pytest.fixture()
def make_job(db_session):
    counter = {"n": 0}

    def _make(db=None, **overrides):
        db = db or db_session
        counter["n"] += 1
        values = dict(
            job_number=f"SRV-{counter['n']:06d}",
            store_id="S1",
            technician_id="tech-1",
            vehicle_number="KA01AB1234",
        )
        values.update(overrides)
        job = ServiceJob(**values)
        db.add(job)
        db.commit()
        return job

    return _make


@pytest.fixture()
def stock(db_session):
    """Initialize a stock level; ``batches`` adds further lots as (quantity, unit_cost)."""

    def _stock(part, store_id="S1", quantity=10, minimum=5, maximum=50, reorder=8,
               unit_cost=None, batches=(), db=None):
        db = db or db_session
        ledger = StockLedger(db)
        level = ledger.initialize_stock(
            part.id,
            store_id,
            initial_stock=quantity,
            minimum_stock=minimum,
            maximum_stock=maximum,
            reorder_level=reorder,
            unit_cost=unit_cost,
        )
        for batch_quantity, batch_cost in batches:
            ledger.record_movement(part.id, store_id, "IN", batch_quantity, unit_cost=batch_cost)
        return ledger.get_level(part.id, store_id)

    return _stock


@pytest.fixture()
def client(db_session):
    """API client bound to the test session; startup hooks are not run."""
    from fastapi.testclient import TestClient

    from core.database import get_db
    from main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

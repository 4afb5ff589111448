"""Pytest configuration for tests - in-memory SQLite ledger database per test."""

import os

# Set test database URL BEFORE any imports from src
# This ensures the SessionLocal and engine never touch a real database file
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "INFO")

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from src.models import Base, ChargeModule  # noqa: E402
from src.services import build_engine  # noqa: E402
from src.services.bucket_store import ChargeBucketStore, UnitRef  # noqa: E402
from src.services.unit_locks import UnitLockRegistry  # noqa: E402


@pytest.fixture
def engine():
    """Fresh in-memory database with all ledger tables."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Database session bound to the in-memory test database."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def unit_ref():
    return UnitRef("MTC", "1A")


@pytest.fixture
def bucket_store(db_session):
    return ChargeBucketStore(db_session)


@pytest.fixture
def unit(bucket_store, unit_ref):
    """Unit account with no buckets and an empty credit ledger."""
    return bucket_store.get_or_create_unit(unit_ref)


@pytest.fixture
def make_bucket(bucket_store, unit):
    """Factory creating buckets for the default unit."""

    def _make(
        base: int,
        penalty: int = 0,
        period_date: date = date(2026, 1, 1),
        module: ChargeModule = ChargeModule.DUES,
        fiscal_year=None,
        reference=None,
    ):
        return bucket_store.add_bucket(
            unit,
            module=module,
            period_date=period_date,
            base_amount=base,
            penalty_amount=penalty,
            fiscal_year=fiscal_year,
            reference=reference,
        )

    return _make


@pytest.fixture
def lock_registry():
    """Isolated lock registry so tests never share unit locks."""
    return UnitLockRegistry(timeout=1.0)

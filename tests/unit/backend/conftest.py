"""
Shared fixtures for backend unit tests.

- db_session: fresh in-memory SQLite index per test
- ledger/store: seeded in-memory doubles (see tests/fakes.py)
- lifecycle: orchestrator wired to the doubles and the SQLite index
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rxledger.db.postgres import Base
from rxledger import models  # noqa: F401 - registers models with Base
from rxledger.models import Role
from rxledger.services.caller_context import resolve_caller
from rxledger.services.prescription_index import DivergenceRegistry, PrescriptionIndexService
from rxledger.services.prescription_lifecycle import PrescriptionLifecycleService
from rxledger.services.status_audit import StatusAuditService

from fakes import (
    DOCTOR,
    OTHER_DOCTOR,
    P1,
    PH1,
    PH2,
    RA,
    FakeContentStore,
    FakeLedger,
)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db_session():
    """In-memory SQLite session with all index tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()
    engine.dispose()


# =============================================================================
# Wired fixtures
# =============================================================================

@pytest.fixture
def store():
    return FakeContentStore()


@pytest.fixture
def ledger(store):
    """Ledger with one of each role registered, profiles in the store."""
    ledger = FakeLedger()
    ledger.seed(RA, Role.REGULATORY_AUTHORITY, store.put_json({"name": "Medicines Authority"}))
    ledger.seed(DOCTOR, Role.PHYSICIAN, store.put_json({"name": "Dr Grey", "registrationNumber": "MC-1"}))
    ledger.seed(OTHER_DOCTOR, Role.PHYSICIAN, store.put_json({"name": "Dr Shepherd"}))
    ledger.seed(P1, Role.PATIENT, store.put_json({"name": "Pat One", "nhiNumber": "ABC1234"}))
    ledger.seed(PH1, Role.PHARMACY, store.put_json({"pharmacyName": "First Pharmacy"}))
    ledger.seed(PH2, Role.PHARMACY, store.put_json({"pharmacyName": "Second Pharmacy"}))
    return ledger


@pytest.fixture
def caller(ledger):
    """Build a caller context from the ledger's view of an account."""
    def _caller(account):
        return resolve_caller(ledger, account)
    return _caller


@pytest.fixture
def divergence():
    return DivergenceRegistry()


@pytest.fixture
def lifecycle(ledger, store, db_session, divergence):
    return PrescriptionLifecycleService(
        gateway=ledger,
        content_store=store,
        index=PrescriptionIndexService(db_session),
        audit=StatusAuditService(db_session),
        divergence=divergence,
    )

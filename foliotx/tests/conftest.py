"""
Shared pytest fixtures for the FolioTX test suite.

Engine tests work on plain Portfolio lists and need no database. API tests
use FastAPI TestClient against a throwaway SQLite file so they never touch
the real ledger; every test starts from empty tables.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from foliotx.constants import PORTFOLIO_COLORS
from foliotx.database import Base, get_db
from foliotx.main import app
from foliotx.schemas.ledger import Portfolio

# Registers the ledger tables on Base.metadata
from foliotx.models.portfolio import (  # noqa: F401
    DeletedPortfolioRecord, PortfolioRecord, PriceSnapshotRecord,
)


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    """One SQLite ledger file for the whole session."""
    path = tmp_path_factory.mktemp("ledger") / "foliotx_test.db"
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Empties every table, then hands out sessions on the test engine."""
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    return sessionmaker(bind=test_engine)


@pytest.fixture
def client(session_factory):
    """TestClient with get_db pointed at the test engine."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def test_db(session_factory):
    """Direct SQLAlchemy session for storage-level tests."""
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def ledger():
    """Two empty portfolios: 'Main Portfolio' and 'Cold Storage'."""
    return [
        Portfolio(name="Main Portfolio", color=PORTFOLIO_COLORS[0]),
        Portfolio(name="Cold Storage", color=PORTFOLIO_COLORS[1]),
    ]

"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers mappers)
from database import Base, configure_sqlite
from services.transfer_matcher import TransferMatcher

# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    account,
    brokerage_account,
    credit_card_account,
    family,
    other_family,
    plaid_link,
    savings_account,
    security,
    simplefin_link,
)


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def reset_running_transfer_matches():
    """Running matcher families are tracked process-wide; start every test clean."""
    TransferMatcher._running_families.clear()
    yield
    TransferMatcher._running_families.clear()

"""Shared pytest fixtures: in-memory DB, populated trace, fake map provider."""

import sys
import os

# Add server root to path so imports work
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Location, Config  # noqa: F401


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite database for each test."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db(engine):
    """Provide a DB session, closed after each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def populated_db(db):
    """A DB session holding the full two-day GPS trace fixture."""
    from tests.fakes import add_trace
    from tests.gps_test_fixtures import GPS_TRACE

    add_trace(db, GPS_TRACE)
    return db


@pytest.fixture
def fake_client():
    from tests.fakes import FakeMapClient

    return FakeMapClient()

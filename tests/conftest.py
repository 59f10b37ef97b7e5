"""
Pytest configuration and fixtures for behaviour clustering tests.
"""

import os
import tempfile

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.clustering.context import ClusteringContext
from app.clustering.models import AccessEvent, GraphConfiguration, ModuleNode, Point
from app.database.init_db import import_models
from app.database.session import get_session
from app.main import app
from app.services.config_service import config_service


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; tests start from the defaults."""
    config_service.clear_cache()
    yield
    config_service.clear_cache()


@pytest.fixture(scope="function")
def isolated_db_session():
    """Create an isolated database session for each test."""
    from sqlmodel import SQLModel

    import_models()

    # Create temporary database file
    fd, temp_db = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_engine(f"sqlite:///{temp_db}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(bind=engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()
        engine.dispose()
        try:
            os.unlink(temp_db)
        except OSError:
            pass


@pytest.fixture
def client(isolated_db_session):
    """Create a test client with database dependency override."""

    def override_get_session():
        try:
            yield isolated_db_session
        finally:
            pass

    app.dependency_overrides[get_session] = override_get_session

    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def context():
    """Seeded clustering context."""
    return ClusteringContext.create(seed=42)


@pytest.fixture
def four_points():
    return {"s1": Point(0, 0), "s2": Point(1, 0), "s3": Point(10, 10), "s4": Point(11, 10)}


@pytest.fixture
def square_positions():
    """Four modules on the corners of a square, module 4 hidden."""
    return {
        1: ModuleNode(0, 0),
        2: ModuleNode(200, 0),
        3: ModuleNode(200, 200),
        4: ModuleNode(0, 200, visible=False),
    }


@pytest.fixture
def configuration():
    """Configuration in normalized space with one hidden module."""
    return GraphConfiguration(
        owner_id="teacher",
        configuration_id=1,
        nodes={
            1: ModuleNode(-1.0, 0.0),
            2: ModuleNode(0.0, 1.0),
            3: ModuleNode(1.0, 0.0),
            4: ModuleNode(0.0, -1.0, visible=False),
        },
    )


@pytest.fixture
def sample_events():
    return [
        AccessEvent("alice", 1, 100),
        AccessEvent("alice", 2, 110),
        AccessEvent("alice", 3, 120),
        AccessEvent("bob", 3, 105),
        AccessEvent("bob", 4, 115),
        AccessEvent("bob", 3, 125),
        AccessEvent("carol", 4, 130),
    ]

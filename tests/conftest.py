"""
Test configuration and fixtures for SnapURL.
This centralizes all test setup, making individual tests clean.
"""

import asyncio
import os

# Must be set before the app (and its engine and settings) are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ["CLICK_WORKER_EMBEDDED"] = "false"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["GEO_BACKEND"] = "null"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from snapurl_app.cache.strategies import InMemoryCache
from snapurl_app.click_processor.click_worker import ClickWorker
from snapurl_app.database.connection import Base, get_db
from snapurl_app.dependencies import get_cache, get_queue
from snapurl_app.queue.strategies import InMemoryQueue
from snapurl_app.services.short_code_factory import ShortCodeFactory

# Test database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    This ensures tests are isolated and don't affect each other.
    """
    Base.metadata.create_all(bind=engine)
    ShortCodeFactory.clear_instances()

    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def queue():
    return InMemoryQueue()


@pytest.fixture(scope="function")
def client(db_session, cache, queue):
    """
    Create a test client with database, cache and queue overridden.
    This is the main fixture that tests will use.
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_queue] = lambda: queue

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def drain_clicks(db_session, queue):
    """Run the click worker over everything queued so far; returns clicks recorded."""
    def drain() -> int:
        worker = ClickWorker(queue=queue, db_session_factory=TestingSessionLocal)
        recorded = asyncio.run(worker.drain())
        db_session.expire_all()
        return recorded
    return drain


@pytest.fixture
def session_factory(db_session):
    """Session factory for code that opens its own sessions (the click worker)."""
    return TestingSessionLocal

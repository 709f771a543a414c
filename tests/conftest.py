"""
Pytest fixtures.

The app reads DATABASE_URL and UPLOAD_DIR at import time, so they are pointed
at a throwaway directory before anything from ``estampa_fina`` is imported.
"""

import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="estampa-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'app.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["ADMIN_EMAIL"] = "admin@estampafina.com"
os.environ["ADMIN_PASSWORD"] = "admin123"
os.environ["SECRET_KEY"] = "chave-de-teste"
os.environ.setdefault("LOG_LEVEL", "warning")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from estampa_fina.models import Base
from estampa_fina.store import DocumentStore, ListenerHub

ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]
ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def listeners():
    return ListenerHub()


@pytest.fixture
def store(db, listeners):
    return DocumentStore(db, listeners)


@pytest.fixture
def client():
    """TestClient with startup (schema, seed, settings) run."""
    from fastapi.testclient import TestClient

    from estampa_fina.main import app

    with TestClient(app) as c:
        yield c


def login(client, email=ADMIN_EMAIL, password=ADMIN_PASSWORD):
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)


@pytest.fixture
def admin(client):
    """Client signed in as the bootstrap administrator."""
    r = login(client)
    assert r.status_code == 302
    return client

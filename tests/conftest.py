from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import app.db.session as db_session
from app.core.rate_limit import auth_limiter
from app.core.settings import get_settings
from app.main import app


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def session_factory(tmp_path):
    database_path = tmp_path / "test.db"
    db_session.configure_engine(f"sqlite:///{database_path}")
    db_session.init_db()
    return db_session.open_session


@pytest.fixture()
def client(session_factory):
    auth_limiter.reset()

    with TestClient(app) as test_client:
        yield test_client

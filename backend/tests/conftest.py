from pathlib import Path
import os
import tempfile
import uuid
import pytest

# Point the app at a throwaway SQLite file before `planner` is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="planner-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("ENV", "development")

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from planner.main import app  # noqa: E402
from planner.database import engine  # noqa: E402
from planner.config import settings  # noqa: E402
from planner.utils import rate_limit  # noqa: E402


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture(autouse=True)
def fresh_rate_limits():
    """Each test starts with empty rate-limit windows."""
    rate_limit.get_limiter().reset()
    yield


@pytest.fixture
def dev_env(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "development")


@pytest.fixture
def prod_env(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")


def register_and_login(client, email=None, password="pass123"):
    email = email or f"student-{uuid.uuid4().hex[:8]}@example.com"
    r = client.post('/auth/register', json={'email': email, 'password': password})
    assert r.status_code == 200
    login = client.post('/auth/login', json={'email': email, 'password': password})
    assert login.status_code == 200
    return r.json()['id'], {'Authorization': f"Bearer {login.json()['access_token']}"}


@pytest.fixture
def auth(client):
    """(user_id, headers) for a freshly registered student."""
    return register_and_login(client)

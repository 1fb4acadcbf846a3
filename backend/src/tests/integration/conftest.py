"""
HTTP-level fixtures.

Routes share the test's own database session, so rows created through the
factories are visible to the request and vice versa.
"""

import pytest
from fastapi.testclient import TestClient

from src.api.routes import files as files_routes
from src.auth.api_tokens import APITokenManager
from src.auth.bearer import issue_access_token
from src.auth.sessions import SessionManager
from src.config.settings import SESSION_COOKIE_NAME
from src.database.session import get_db_session
from src.jobs.sink import get_job_sink
from src.main import create_app
from src.metrics.latency import LatencyTracker

JWT_SECRET = "integration-jwt-secret-0123456789abcdef"
WEBHOOK_SECRET = "whsec_integration"


@pytest.fixture
def secrets_env(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("BILLING_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("ENCRYPTION_KEY", "integration-encryption-key")
    monkeypatch.setenv("SESSION_COOKIE_SECURE", "false")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("GITHUB_CLIENT_ID", "gh-client")
    monkeypatch.setenv("GITHUB_CLIENT_SECRET", "gh-secret")


@pytest.fixture
def latency_tracker():
    return LatencyTracker()


@pytest.fixture
def app(db_session, job_sink, storage, latency_tracker, secrets_env):
    application = create_app(latency_tracker=latency_tracker)

    def override_db():
        yield db_session

    application.dependency_overrides[get_db_session] = override_db
    application.dependency_overrides[get_job_sink] = lambda: job_sink
    application.dependency_overrides[files_routes.get_storage] = lambda: storage
    return application


@pytest.fixture
def client(app):
    # No context manager: the lifespan (Redis latency publisher) is not started
    return TestClient(app)


@pytest.fixture
def login(client, db_session):
    """Sign a user in through a session cookie."""

    def _login(user):
        issued = SessionManager(db_session).create_session(user.id)
        client.cookies.set(SESSION_COOKIE_NAME, issued.token)
        return issued.token

    return _login


@pytest.fixture
def jwt_headers():
    def _headers(user):
        token = issue_access_token(user.id, secret=JWT_SECRET)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def api_token_headers(db_session):
    def _headers(user, **kwargs):
        issued = APITokenManager(db_session).create(user.id, "integration", **kwargs)
        return {"Authorization": f"Bearer {issued.token}"}

    return _headers

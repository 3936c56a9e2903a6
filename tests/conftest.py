"""
Shared pytest fixtures for the OpsPilot test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, fresh KPI cache (autouse)
    - client: Flask test client (function-scoped)
    - kpi_cache: The KPI cache bound to the app for the current test
    - org / other_org: Pre-created Organization entities
    - auth_headers: Bearer headers for a role in an organization

Data builders live in factories.py.
"""

import pytest

from opspilot import create_app
from opspilot.models import db as _db
from opspilot.services.jwt_service import generate_access_token
from opspilot.services.kpi_cache import KpiCache

from factories import make_org


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: fresh KPI cache, open app context, rollback after test, recreate tables."""
    app.extensions["kpi_cache"] = KpiCache(
        default_ttl=app.config["KPI_CACHE_TTL"],
        prefix=app.config["KPI_CACHE_PREFIX"],
    )
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def kpi_cache(app):
    return app.extensions["kpi_cache"]


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def org():
    return make_org()


@pytest.fixture()
def other_org():
    return make_org(name="Globex", slug="globex")


@pytest.fixture()
def auth_headers(app):
    """Factory: Bearer headers for a caller with *role* in *organization_id*."""
    def _headers(role="PROJECT_MANAGER", organization_id=None, user_id="user-1"):
        with app.app_context():
            token = generate_access_token(user_id, organization_id, role)
        return {"Authorization": f"Bearer {token}"}
    return _headers

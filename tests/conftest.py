"""
Shared pytest fixtures for the VISION Platform test suite.

Provides:
    - app: Flask application (session-scoped, uploads in a temp dir)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - owner / owner_headers: Registered user and a real Bearer token
    - org: Organization owned by ``owner``
    - make_member: Factory adding another user to ``org`` with a role
"""

import pytest

from vision import create_app
from vision.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
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
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def bearer(user):
    """Authorization header carrying a freshly issued access token."""
    from vision.services.jwt_service import generate_access_token
    return {"Authorization": f"Bearer {generate_access_token(user.id, user.email)}"}


@pytest.fixture()
def make_user():
    """Factory: register a user through the service layer."""
    from vision.services import user_service

    counter = {"n": 0}

    def _make(email=None, password="Secret123!", full_name="Test User"):
        counter["n"] += 1
        return user_service.register(email or f"user{counter['n']}@helpinghands.org", password, full_name)

    return _make


@pytest.fixture()
def owner(make_user):
    return make_user("owner@helpinghands.org", full_name="Olivia Owner")


@pytest.fixture()
def owner_headers(owner):
    return bearer(owner)


@pytest.fixture()
def org(owner):
    """Organization created by ``owner`` (who becomes its Owner)."""
    from vision.services.organization_service import create_organization
    return create_organization(owner.id, {"name": "Helping Hands", "mission": "Feed the neighborhood"})


@pytest.fixture()
def make_member(org, make_user):
    """Factory: add a new user to ``org`` with ``role``; returns (user, member, headers)."""
    from vision.services.organization_service import add_member

    def _make(role="Editor", email=None):
        user = make_user(email)
        member = add_member(org.id, user.id, role, invited_by=org.created_by)
        _db.session.commit()
        return user, member, bearer(user)

    return _make

"""
Shared pytest fixtures for the approval engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - directory: Fresh in-memory user directory per test (autouse)
    - client: Flask test client (function-scoped)
    - headers_for: X-User-Id header builder
    - process / chain: pre-created processes
"""

import pytest

from approvals import create_app
from approvals.integrations.directory import StaticDirectory
from approvals.models import db as _db
from approvals.models.process import DesignationApprover, UserApprover

# Org chart used across tests:
#   user 5 (requester, designation 10) → manager 6 (designation 11)
#   → manager 8 (designation 2) → manager 9 (designation 3)
#   user 7 holds designation 1; user 4 also holds designation 2.
DESIGNATIONS = {4: 2, 5: 10, 6: 11, 7: 1, 8: 2, 9: 3}
MANAGERS = {5: 6, 6: 8, 8: 9}

ADMIN_ID = 1


def make_directory() -> StaticDirectory:
    return StaticDirectory(designations=DESIGNATIONS, managers=MANAGERS)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing", directory=make_directory())
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


@pytest.fixture(autouse=True)
def directory(app):
    """Install a fresh StaticDirectory so per-test `assign` calls never leak."""
    fresh = make_directory()
    app.extensions["directory"] = fresh
    return fresh


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def headers_for():
    """Build actor headers: headers_for(7) → {"X-User-Id": "7"}."""
    def _build(user_id):
        return {"X-User-Id": str(user_id)}
    return _build


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def process():
    """An active process without steps."""
    from approvals.services import process_catalog_service as catalog
    return catalog.create_process("Material Request", "Active", actor_id=ADMIN_ID)


@pytest.fixture()
def chain(process):
    """Active 3-step chain: User(7) → Designation(2) → User(9).

    Returns (process, [step1, step2, step3]).
    """
    from approvals.services import step_service
    steps = [
        step_service.add_step(process.id, UserApprover(7), "Line manager review"),
        step_service.add_step(process.id, DesignationApprover(2), "Procurement check", timeout_days=2),
        step_service.add_step(process.id, UserApprover(9), "Final sign-off"),
    ]
    return process, steps

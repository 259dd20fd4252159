"""
Shared pytest fixtures for the sitetrack test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project entity
    - make_item / log: work item and daily log factories
    - simplified_workflow: switches ACCEPTANCE_WORKFLOW for one test
"""

from datetime import date, timedelta

import pytest

import sitetrack as _app_module
from sitetrack import create_app
from sitetrack.models import db as _db

# Committed parent/child work items would make DROP TABLE fail under
# RESTRICT; tables are rebuilt per test, so enforcement is off here.
_app_module._SQLITE_FK_ENFORCEMENT = False

TODAY = date.today()
PAST = TODAY - timedelta(days=10)
FUTURE = TODAY + timedelta(days=10)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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


@pytest.fixture()
def simplified_workflow(app, monkeypatch):
    """Run the test with the stage chain ending at customer_approved."""
    monkeypatch.setitem(app.config, "ACCEPTANCE_WORKFLOW", "simplified")
    return "simplified"


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """Create and flush a Project (with its progress row)."""
    from sitetrack.services.project_service import create_project

    return create_project({"code": "PRJ-001", "name": "Harbour View Residences"})


@pytest.fixture()
def make_item(project):
    """Factory: ``make_item("Framing", parent=phase)`` → flushed WorkItem.

    Items default to a window that started in the past and ends in the
    future, so partial progress reads as in_progress.
    """
    from sitetrack.services.work_item_service import create_work_item

    def _make(name, parent=None, start=PAST, end=FUTURE):
        return create_work_item(project.id, {
            "name": name,
            "parent_id": parent.id if parent is not None else None,
            "start_date": start.isoformat() if start else None,
            "end_date": end.isoformat() if end else None,
        })

    return _make


@pytest.fixture()
def log(project):
    """Factory: ``log(item, 50)`` → upserted DailyProgressLog for today."""
    from sitetrack.services.daily_log_service import upsert_log

    def _log(item, percentage, log_date=None):
        return upsert_log(project.id, item.id, log_date or TODAY, percentage)

    return _log

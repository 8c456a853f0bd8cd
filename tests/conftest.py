"""
Shared pytest fixtures for the concept paper workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse), seeds deadline options
    - client: Flask test client (function-scoped)
    - make_user / users: active users, one per role
    - stage_template: swap WORKFLOW_STAGES for a test
    - make_paper: submit a paper through the service layer
    - now: fixed submission instant
"""

from datetime import datetime, timezone

import pytest

import app as _app_module
from app import create_app
from app.models import db as _db
from app.models.auth import Role, User

# Papers and their current_stage_id are written out of FK order in a few
# corruption tests; keep SQLite FK enforcement off for the suite.
_app_module._SQLITE_FK_ENFORCEMENT = False

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


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
    """Per-test: open app context, rollback after test, recreate tables."""
    from app.services.deadline_policy import seed_default_options

    with app.app_context():
        seed_default_options()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def now():
    return NOW


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: make_user("auditor", name="Ana") -> committed active User."""
    counter = {"n": 0}

    def _make(role, name=None, is_active=True):
        counter["n"] += 1
        role_value = Role(role).value
        user = User(
            name=name or f"{role_value.title()} {counter['n']}",
            email=f"{role_value}.{counter['n']}@example.edu",
            role=role_value,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def users(make_user):
    """One active user per role, keyed by role value."""
    return {role.value: make_user(role.value) for role in Role}


@pytest.fixture()
def stage_template(app, monkeypatch):
    """Replace WORKFLOW_STAGES for the duration of one test.

    stage_template([("A", "sps", "1_day"), ("B", "vp_acad", "2_days")])
    """

    def _set(rows):
        stages = [
            row if isinstance(row, dict)
            else {"stage_name": row[0], "assigned_role": row[1], "deadline_option": row[2]}
            for row in rows
        ]
        monkeypatch.setitem(app.config, "WORKFLOW_STAGES", stages)
        return stages

    return _set


@pytest.fixture()
def make_paper(users):
    """Factory: submit a paper as the requisitioner and start its workflow."""
    from app.services.concept_paper_service import create_paper

    def _make(now=NOW, **overrides):
        data = {
            "department": "College of Engineering",
            "title": "Robotics outreach program",
            "nature_of_request": "regular",
            "students_involved": True,
        }
        data.update(overrides)
        return create_paper(data, users["requisitioner"], now=now)

    return _make

import itertools
import pathlib
import sys
from datetime import timedelta

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cprportal.app import create_app, db
from cprportal.models import ClassType, CourseRequest, Organization, User
from cprportal.shared.time import today


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("UPLOAD_ROOT", str(tmp_path / "uploads"))
    monkeypatch.setenv("FLASK_SKIP_SEED", "1")
    for name in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS", "EMAIL_FROM"):
        monkeypatch.delenv(name, raising=False)
    application = create_app()
    application.config["TESTING"] = True
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


_seq = itertools.count(1)


@pytest.fixture
def make_user(app):
    def _make(role="sysadmin", password="password123", **fields):
        n = next(_seq)
        fields.setdefault("username", f"{role}{n}")
        fields.setdefault("email", f"{role}{n}@example.com")
        user = User(role=role, status=fields.pop("status", "active"), **fields)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_org(app):
    def _make(name=None, **fields):
        org = Organization(name=name or f"Org {next(_seq)}", **fields)
        db.session.add(org)
        db.session.commit()
        return org

    return _make


@pytest.fixture
def make_course_type(app):
    def _make(name=None, duration_minutes=240, **fields):
        course_type = ClassType(
            name=name or f"CPR Level {next(_seq)}",
            duration_minutes=duration_minutes,
            **fields,
        )
        db.session.add(course_type)
        db.session.commit()
        return course_type

    return _make


@pytest.fixture
def make_course(app):
    def _make(org, course_type, status="pending", scheduled_date=None, **fields):
        course = CourseRequest(
            organization_id=org.id,
            course_type_id=course_type.id,
            date_requested=today(),
            scheduled_date=scheduled_date or today() + timedelta(days=7),
            location=fields.pop("location", "Main Hall"),
            status=status,
            **fields,
        )
        db.session.add(course)
        db.session.commit()
        return course

    return _make


@pytest.fixture
def login():
    def _login(client, user):
        with client.session_transaction() as sess:
            sess.clear()
            sess["user_id"] = user.id
            sess["role"] = user.role

    return _login

from datetime import timedelta

import pytest

from cprportal.app import db
from cprportal.models import Timesheet
from cprportal.shared.time import today


def _monday():
    current = today()
    return current - timedelta(days=current.weekday())


@pytest.fixture
def instructor(make_user):
    return make_user(role="instructor", first_name="Tess", last_name="Hours")


def test_submit_timesheet_counts_completed_courses(
    app, client, instructor, login, make_org, make_course_type, make_course
):
    monday = _monday()
    make_course(
        make_org(),
        make_course_type(),
        status="completed",
        confirmed_date=monday + timedelta(days=2),
        instructor_id=instructor.id,
    )
    login(client, instructor)
    resp = client.post(
        "/api/v1/instructor/timesheets",
        json={"week_start_date": monday.isoformat(), "total_hours": "12.5", "notes": "ok"},
    )
    assert resp.status_code == 201
    sheet = resp.get_json()["timesheet"]
    assert sheet["courses_taught"] == 1
    assert sheet["total_hours"] == 12.5
    assert sheet["week_end_date"] == (monday + timedelta(days=6)).isoformat()
    assert sheet["status"] == "pending"

    dup = client.post(
        "/api/v1/instructor/timesheets",
        json={"week_start_date": monday.isoformat(), "total_hours": 3},
    )
    assert dup.status_code == 409


@pytest.mark.parametrize(
    "offset,hours",
    [(1, 10), (0, 169), (0, -1)],
)
def test_submit_timesheet_validation(app, client, instructor, login, offset, hours):
    login(client, instructor)
    week = _monday() + timedelta(days=offset)
    resp = client.post(
        "/api/v1/instructor/timesheets",
        json={"week_start_date": week.isoformat(), "total_hours": hours},
    )
    assert resp.status_code == 400


def _sheet(instructor, status="pending"):
    monday = _monday()
    sheet = Timesheet(
        instructor_id=instructor.id,
        week_start_date=monday,
        week_end_date=monday + timedelta(days=6),
        total_hours=8,
        status=status,
    )
    db.session.add(sheet)
    db.session.commit()
    return sheet


def test_revise_only_while_pending(app, client, instructor, login):
    sheet = _sheet(instructor)
    login(client, instructor)
    resp = client.put(f"/api/v1/instructor/timesheets/{sheet.id}", json={"total_hours": 9})
    assert resp.get_json()["timesheet"]["total_hours"] == 9.0
    sheet.status = "approved"
    db.session.commit()
    resp = client.put(f"/api/v1/instructor/timesheets/{sheet.id}", json={"total_hours": 7})
    assert resp.status_code == 400


def test_instructor_cannot_see_other_timesheets(app, client, instructor, login, make_user):
    sheet = _sheet(make_user(role="instructor"))
    login(client, instructor)
    resp = client.put(f"/api/v1/instructor/timesheets/{sheet.id}", json={"total_hours": 1})
    assert resp.status_code == 404
    assert client.get("/api/v1/instructor/timesheets").get_json()["timesheets"] == []


def test_hr_approve_and_reject(app, client, instructor, login, make_user):
    hr = make_user(role="hr")
    sheet = _sheet(instructor)
    login(client, hr)

    listed = client.get("/api/v1/hr/timesheets?status=pending").get_json()["timesheets"]
    assert [s["id"] for s in listed] == [sheet.id]
    assert listed[0]["instructor_name"] == "Tess Hours"

    resp = client.post(f"/api/v1/hr/timesheets/{sheet.id}/reject", json={})
    assert resp.status_code == 400

    resp = client.post(f"/api/v1/hr/timesheets/{sheet.id}/approve", json={"comment": "fine"})
    data = resp.get_json()["timesheet"]
    assert data["status"] == "approved"
    assert data["approved_by"] == hr.id
    assert data["approved_at"] is not None

    again = client.post(f"/api/v1/hr/timesheets/{sheet.id}/reject", json={"comment": "no"})
    assert again.status_code == 400


def test_hr_dashboard(app, client, instructor, login, make_user):
    _sheet(instructor)
    login(client, make_user(role="hr"))
    data = client.get("/api/v1/hr/dashboard").get_json()
    assert data["timesheets"] == {"pending": 1, "approved": 0, "rejected": 0}
    assert data["active_instructors"] == 1


def test_hr_role_required(app, client, instructor, login):
    login(client, instructor)
    assert client.get("/api/v1/hr/timesheets").status_code == 403

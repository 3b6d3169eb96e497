from datetime import timedelta

import pytest

from cprportal.app import db
from cprportal.models import ProfileChange, User
from cprportal.shared.time import today


@pytest.fixture
def instructor(make_user):
    return make_user(role="instructor", first_name="Pat", last_name="Old", phone="555-0100")


def _request(client, **payload):
    return client.post("/api/v1/profile-changes", json=payload)


def test_instructor_requests_change(app, client, instructor, login):
    login(client, instructor)
    resp = _request(client, field_name="last_name", new_value="Newman")
    assert resp.status_code == 201
    change = resp.get_json()["change"]
    assert change["status"] == "pending"
    assert change["change_type"] == "instructor"
    assert change["old_value"] == "Old"
    assert db.session.get(User, instructor.id).last_name == "Old"

    dup = _request(client, field_name="last_name", new_value="Other")
    assert dup.status_code == 409

    listed = client.get("/api/v1/profile-changes").get_json()["changes"]
    assert [c["id"] for c in listed] == [change["id"]]


@pytest.mark.parametrize(
    "payload",
    [
        {"field_name": "role", "new_value": "sysadmin"},
        {"field_name": "phone"},
        {"field_name": "email", "new_value": "not-an-email"},
        {"field_name": "phone", "new_value": "555", "target_user_id": 1},
    ],
)
def test_request_validation(app, client, instructor, login, payload):
    login(client, instructor)
    assert _request(client, **payload).status_code == 400
    assert db.session.query(ProfileChange).count() == 0


def test_email_change_to_taken_address(app, client, instructor, login, make_user):
    make_user(role="hr", email="taken@example.com")
    login(client, instructor)
    resp = _request(client, field_name="email", new_value="Taken@Example.com")
    assert resp.status_code == 409


def test_students_cannot_request_changes(app, client, login, make_user):
    login(client, make_user(role="student"))
    assert _request(client, field_name="phone", new_value="1").status_code == 403


def test_hr_approves_and_rejects(app, client, instructor, login, make_user):
    login(client, instructor)
    phone = _request(client, field_name="phone", new_value="555-0199").get_json()["change"]
    name = _request(client, field_name="first_name", new_value="Patricia").get_json()["change"]

    hr = make_user(role="hr")
    login(client, hr)
    pending = client.get("/api/v1/hr/profile-changes").get_json()["changes"]
    assert [c["id"] for c in pending] == [phone["id"], name["id"]]
    assert pending[0]["user_name"] == "Pat Old"
    assert client.get("/api/v1/hr/dashboard").get_json()["pending_profile_changes"] == 2

    resp = client.post(
        f"/api/v1/hr/profile-changes/{phone['id']}/approve", json={"comment": "ok"}
    )
    data = resp.get_json()["change"]
    assert data["status"] == "approved"
    assert data["reviewed_by"] == hr.id
    assert data["reviewed_at"] is not None
    assert db.session.get(User, instructor.id).phone == "555-0199"

    reject_url = f"/api/v1/hr/profile-changes/{name['id']}/reject"
    assert client.post(reject_url, json={}).status_code == 400
    resp = client.post(reject_url, json={"comment": "Use your legal name"})
    assert resp.get_json()["change"]["status"] == "rejected"
    assert db.session.get(User, instructor.id).first_name == "Pat"

    again = client.post(f"/api/v1/hr/profile-changes/{phone['id']}/approve", json={})
    assert again.status_code == 400
    assert len(client.get("/api/v1/hr/profile-changes?status=all").get_json()["changes"]) == 2
    assert client.get("/api/v1/hr/profile-changes?status=bogus").status_code == 400


def test_email_rechecked_when_approved(app, client, instructor, login, make_user):
    login(client, instructor)
    change = _request(client, field_name="email", new_value="fresh@example.com").get_json()
    change_id = change["change"]["id"]
    make_user(role="admin", email="fresh@example.com")

    login(client, make_user(role="hr"))
    resp = client.post(f"/api/v1/hr/profile-changes/{change_id}/approve", json={})
    assert resp.status_code == 409
    assert db.session.get(ProfileChange, change_id).status == "pending"
    assert db.session.get(User, instructor.id).email != "fresh@example.com"


def test_hr_files_change_for_organization_user(app, client, login, make_user, make_org):
    contact = make_user(role="organization", organization_id=make_org().id)
    hr = make_user(role="hr")
    login(client, hr)
    assert _request(client, field_name="mobile", new_value="555-0001").status_code == 400
    missing = _request(
        client, field_name="mobile", new_value="555-0001", target_user_id=999999
    )
    assert missing.status_code == 404

    resp = _request(
        client, field_name="mobile", new_value="555-0001", target_user_id=contact.id
    )
    change = resp.get_json()["change"]
    assert change["change_type"] == "organization"
    assert change["user_id"] == contact.id
    assert change["requested_by"] == hr.id


def test_hr_instructor_directory(
    app, client, instructor, login, make_user, make_org, make_course_type, make_course
):
    org, course_type = make_org(), make_course_type()
    for days, status in ((-3, "completed"), (-10, "completed"), (2, "confirmed")):
        make_course(
            org,
            course_type,
            status=status,
            instructor_id=instructor.id,
            confirmed_date=today() + timedelta(days=days),
        )
    other = make_user(role="instructor", first_name="Quinn", last_name="Zed")
    login(client, make_user(role="hr"))

    listed = client.get("/api/v1/hr/instructors").get_json()["instructors"]
    by_id = {row["id"]: row for row in listed}
    assert by_id[instructor.id]["total_courses"] == 3
    assert by_id[instructor.id]["completed_courses"] == 2
    assert by_id[instructor.id]["active_courses"] == 1
    assert by_id[instructor.id]["last_course_date"] == (today() - timedelta(days=3)).isoformat()
    assert by_id[other.id]["total_courses"] == 0
    assert by_id[other.id]["last_course_date"] is None

    found = client.get("/api/v1/hr/instructors?search=quinn").get_json()["instructors"]
    assert [row["id"] for row in found] == [other.id]

    detail = client.get(f"/api/v1/hr/users/{instructor.id}").get_json()
    assert len(detail["recent_courses"]) == 3
    assert detail["course_stats"]["completed_courses"] == 2
    assert detail["profile_changes"] == []
    assert detail["user"]["organization_name"] is None
    assert client.get("/api/v1/hr/users/999999").status_code == 404

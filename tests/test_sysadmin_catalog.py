import pytest

from cprportal.app import db
from cprportal.models import (
    ClassType,
    EmailTemplate,
    Organization,
    OrganizationLocation,
    Vendor,
)


@pytest.fixture
def admin_client(app, client, make_user, login):
    login(client, make_user(role="sysadmin"))
    return client


# course types


def test_course_type_crud(app, admin_client):
    resp = admin_client.post(
        "/api/v1/sysadmin/courses",
        json={"name": "Standard First Aid", "duration_minutes": 480, "course_code": "sfa"},
    )
    assert resp.status_code == 201
    course = resp.get_json()["course"]
    assert course["course_code"] == "SFA"

    resp = admin_client.put(
        f"/api/v1/sysadmin/courses/{course['id']}", json={"max_students": 12}
    )
    assert resp.get_json()["course"]["max_students"] == 12
    assert resp.get_json()["course"]["name"] == "Standard First Aid"

    resp = admin_client.delete(f"/api/v1/sysadmin/courses/{course['id']}")
    assert resp.status_code == 200
    assert db.session.get(ClassType, course["id"]).is_active is False


def test_course_type_validation(app, admin_client, make_course_type):
    make_course_type(name="CPR C")
    resp = admin_client.post(
        "/api/v1/sysadmin/courses", json={"name": "cpr c", "duration_minutes": 60}
    )
    assert resp.status_code == 409
    resp = admin_client.post(
        "/api/v1/sysadmin/courses", json={"name": "Other", "duration_minutes": 0}
    )
    assert resp.status_code == 400
    resp = admin_client.post("/api/v1/sysadmin/courses", json={"duration_minutes": 60})
    assert resp.status_code == 400


# organizations and locations


def test_organization_crud(app, admin_client):
    resp = admin_client.post(
        "/api/v1/sysadmin/organizations",
        json={"name": "Northside Clinic", "contact_email": "ops@example.com"},
    )
    assert resp.status_code == 201
    org_id = resp.get_json()["organization"]["id"]

    resp = admin_client.post(
        "/api/v1/sysadmin/organizations", json={"name": "northside clinic"}
    )
    assert resp.status_code == 409

    resp = admin_client.put(
        f"/api/v1/sysadmin/organizations/{org_id}", json={"contact_phone": "555-0100"}
    )
    org = resp.get_json()["organization"]
    assert org["contact_phone"] == "555-0100"
    assert org["contact_email"] == "ops@example.com"

    listing = admin_client.get("/api/v1/sysadmin/organizations").get_json()
    assert listing["organizations"][0]["location_count"] == 0

    assert admin_client.delete(f"/api/v1/sysadmin/organizations/{org_id}").status_code == 200
    assert db.session.get(Organization, org_id) is None


def test_organization_rejects_bad_email(app, admin_client):
    resp = admin_client.post(
        "/api/v1/sysadmin/organizations",
        json={"name": "Bad Mail", "contact_email": "nope"},
    )
    assert resp.status_code == 400


def test_organization_delete_blocked_when_referenced(app, admin_client, make_org, make_user):
    org = make_org()
    make_user(role="organization", organization_id=org.id)
    resp = admin_client.delete(f"/api/v1/sysadmin/organizations/{org.id}")
    assert resp.status_code == 409
    assert db.session.get(Organization, org.id) is not None


def test_locations_lifecycle(app, admin_client, make_org):
    org = make_org()
    url = f"/api/v1/sysadmin/organizations/{org.id}/locations"
    resp = admin_client.post(url, json={"location_name": "Downtown", "city": "Toronto"})
    assert resp.status_code == 201
    loc_id = resp.get_json()["location"]["id"]

    assert admin_client.post(url, json={"location_name": "downtown"}).status_code == 409
    assert admin_client.post(url, json={"city": "Nowhere"}).status_code == 400

    resp = admin_client.put(f"/api/v1/sysadmin/locations/{loc_id}", json={"city": "Ottawa"})
    assert resp.get_json()["location"]["city"] == "Ottawa"
    assert resp.get_json()["location"]["location_name"] == "Downtown"

    admin_client.delete(f"/api/v1/sysadmin/locations/{loc_id}")
    assert admin_client.get(url).get_json()["locations"] == []
    inactive = admin_client.get(f"{url}?include_inactive=1").get_json()["locations"]
    assert [loc["id"] for loc in inactive] == [loc_id]
    assert db.session.get(OrganizationLocation, loc_id).is_active is False


def test_organization_delete_cascades_locations(app, admin_client, make_org):
    org = make_org()
    admin_client.post(
        f"/api/v1/sysadmin/organizations/{org.id}/locations",
        json={"location_name": "Annex"},
    )
    admin_client.delete(f"/api/v1/sysadmin/organizations/{org.id}")
    assert db.session.query(OrganizationLocation).count() == 0


# vendors


def test_vendor_crud(app, admin_client):
    resp = admin_client.post(
        "/api/v1/sysadmin/vendors",
        json={"name": "Manuals Ltd", "contact_email": "Billing@Example.com"},
    )
    assert resp.status_code == 201
    vendor = resp.get_json()["vendor"]
    assert vendor["contact_email"] == "billing@example.com"

    assert (
        admin_client.post("/api/v1/sysadmin/vendors", json={"name": "manuals ltd"}).status_code
        == 409
    )
    assert (
        admin_client.post(
            "/api/v1/sysadmin/vendors", json={"name": "X", "contact_email": "bad"}
        ).status_code
        == 400
    )

    resp = admin_client.put(
        f"/api/v1/sysadmin/vendors/{vendor['id']}", json={"vendor_type": "printing"}
    )
    assert resp.get_json()["vendor"]["vendor_type"] == "printing"

    admin_client.delete(f"/api/v1/sysadmin/vendors/{vendor['id']}")
    assert db.session.get(Vendor, vendor["id"]).is_active is False


# email templates


def test_email_template_lifecycle(app, admin_client):
    payload = {
        "name": "Course confirmed",
        "key": "course_confirmed",
        "category": "course",
        "subject": "Your course is confirmed",
        "body": "See you there.",
    }
    resp = admin_client.post("/api/v1/sysadmin/email-templates", json=payload)
    assert resp.status_code == 201
    template_id = resp.get_json()["template"]["id"]
    assert admin_client.post("/api/v1/sysadmin/email-templates", json=payload).status_code == 409

    resp = admin_client.put(
        f"/api/v1/sysadmin/email-templates/{template_id}", json={"subject": "Confirmed!"}
    )
    assert resp.get_json()["template"]["subject"] == "Confirmed!"

    admin_client.delete(f"/api/v1/sysadmin/email-templates/{template_id}")
    assert admin_client.get("/api/v1/sysadmin/email-templates").get_json()["templates"] == []
    assert db.session.get(EmailTemplate, template_id).deleted_at is not None


def test_system_template_cannot_be_deleted(app, admin_client):
    template = EmailTemplate(
        name="Reset", key="reset", category="auth", subject="s", body="b", is_system=True
    )
    db.session.add(template)
    db.session.commit()
    resp = admin_client.delete(f"/api/v1/sysadmin/email-templates/{template.id}")
    assert resp.status_code == 400


def test_email_template_requires_fields(app, admin_client):
    resp = admin_client.post(
        "/api/v1/sysadmin/email-templates", json={"name": "Partial", "key": "partial"}
    )
    assert resp.status_code == 400


@pytest.mark.parametrize("field,value", [("name", "Welcome"), ("key", "welcome")])
def test_email_template_rename_to_taken_value(app, admin_client, field, value):
    for name, key in (("Welcome", "welcome"), ("Reminder", "reminder")):
        db.session.add(
            EmailTemplate(name=name, key=key, category="course", subject="s", body="b")
        )
    db.session.commit()
    reminder = db.session.query(EmailTemplate).filter_by(key="reminder").one()

    resp = admin_client.put(
        f"/api/v1/sysadmin/email-templates/{reminder.id}", json={field: value}
    )
    assert resp.status_code == 409
    assert resp.get_json()["error"] == f"An email template with this {field} exists"
    assert db.session.get(EmailTemplate, reminder.id).key == "reminder"

import pytest

from cprportal.app import db
from cprportal.models import AuditLog, User, Vendor


@pytest.fixture
def admin_client(app, client, make_user, login):
    admin = make_user(role="sysadmin", username="root", email="root@example.com")
    login(client, admin)
    client.admin = admin
    return client


def _new_user(**overrides):
    payload = {
        "username": "jdoe",
        "email": "jdoe@example.com",
        "password": "password123",
        "role": "instructor",
        "first_name": "Jane",
        "last_name": "Doe",
    }
    payload.update(overrides)
    return payload


def test_create_user_and_fetch(app, admin_client):
    resp = admin_client.post("/api/v1/sysadmin/users", json=_new_user())
    assert resp.status_code == 201
    created = resp.get_json()["user"]
    assert created["email"] == "jdoe@example.com"
    assert created["full_name"] == "Jane Doe"
    assert "password_hash" not in created

    fetched = admin_client.get(f"/api/v1/sysadmin/users/{created['id']}").get_json()
    assert fetched["user"]["username"] == "jdoe"
    assert db.session.query(AuditLog).filter_by(action="user_create").count() == 1


def test_create_user_duplicate_username_and_email(app, admin_client):
    admin_client.post("/api/v1/sysadmin/users", json=_new_user())
    resp = admin_client.post(
        "/api/v1/sysadmin/users", json=_new_user(email="other@example.com")
    )
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Username already exists"
    resp = admin_client.post(
        "/api/v1/sysadmin/users", json=_new_user(username="other", email="JDOE@example.com")
    )
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Email address already exists"


@pytest.mark.parametrize(
    "overrides",
    [
        {"email": "not-an-email"},
        {"role": "wizard"},
        {"password": "short"},
        {"username": ""},
    ],
)
def test_create_user_validation(app, admin_client, overrides):
    resp = admin_client.post("/api/v1/sysadmin/users", json=_new_user(**overrides))
    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False


def test_organization_user_requires_org(app, admin_client, make_org):
    resp = admin_client.post(
        "/api/v1/sysadmin/users", json=_new_user(role="organization")
    )
    assert resp.status_code == 400
    org = make_org()
    resp = admin_client.post(
        "/api/v1/sysadmin/users",
        json=_new_user(role="organization", organization_id=org.id),
    )
    assert resp.status_code == 201
    assert resp.get_json()["user"]["organization_id"] == org.id


def test_vendor_user_requires_vendor(app, admin_client):
    resp = admin_client.post("/api/v1/sysadmin/users", json=_new_user(role="vendor"))
    assert resp.status_code == 400
    vendor = Vendor(name="Supplies Inc")
    db.session.add(vendor)
    db.session.commit()
    resp = admin_client.post(
        "/api/v1/sysadmin/users", json=_new_user(role="vendor", vendor_id=vendor.id)
    )
    assert resp.status_code == 201


@pytest.mark.parametrize("key", ["organization_id", "vendor_id", "location_id"])
def test_update_user_rejects_unknown_links(app, admin_client, make_user, key):
    user = make_user(role="instructor")
    resp = admin_client.put(f"/api/v1/sysadmin/users/{user.id}", json={key: 987654})
    assert resp.status_code == 400
    assert getattr(db.session.get(User, user.id), key) is None


def test_update_user_changes_only_given_fields(app, admin_client, make_user):
    user = make_user(role="instructor", first_name="Old", last_name="Name", phone="555")
    resp = admin_client.put(
        f"/api/v1/sysadmin/users/{user.id}", json={"first_name": "New"}
    )
    assert resp.status_code == 200
    data = resp.get_json()["user"]
    assert data["first_name"] == "New"
    assert data["last_name"] == "Name"
    assert data["phone"] == "555"


def test_update_user_password(app, admin_client, make_user):
    user = make_user(role="hr")
    resp = admin_client.put(
        f"/api/v1/sysadmin/users/{user.id}", json={"password": "changed12345"}
    )
    assert resp.status_code == 200
    assert db.session.get(User, user.id).check_password("changed12345")


def test_update_user_rejects_taken_email(app, admin_client, make_user):
    make_user(email="taken@example.com")
    user = make_user()
    resp = admin_client.put(
        f"/api/v1/sysadmin/users/{user.id}", json={"email": "taken@example.com"}
    )
    assert resp.status_code == 409


def test_deactivate_user(app, admin_client, make_user):
    user = make_user(role="instructor")
    resp = admin_client.delete(f"/api/v1/sysadmin/users/{user.id}")
    assert resp.status_code == 200
    assert db.session.get(User, user.id).status == "inactive"
    active = admin_client.get("/api/v1/sysadmin/users?status=active").get_json()["users"]
    assert user.id not in [u["id"] for u in active]


def test_cannot_deactivate_self(app, admin_client):
    resp = admin_client.delete(f"/api/v1/sysadmin/users/{admin_client.admin.id}")
    assert resp.status_code == 400


def test_list_users_by_role(app, admin_client, make_user):
    make_user(role="instructor")
    make_user(role="accountant")
    users = admin_client.get("/api/v1/sysadmin/users?role=instructor").get_json()["users"]
    assert {u["role"] for u in users} == {"instructor"}


def test_missing_user_is_404(app, admin_client):
    assert admin_client.get("/api/v1/sysadmin/users/9999").status_code == 404


def test_dashboard_counts(app, admin_client, make_user, make_org):
    make_user(role="instructor")
    make_org()
    data = admin_client.get("/api/v1/sysadmin/dashboard").get_json()
    assert data["users_by_role"]["instructor"] == 1
    assert data["users_by_role"]["sysadmin"] == 1
    assert data["organizations"] == 1

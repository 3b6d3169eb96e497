from cprportal.app import db
from cprportal.models import AuditLog, User
from cprportal.shared.passwords import make_reset_token


def test_login_with_username_sets_session(app, client, make_user):
    user = make_user(role="instructor", username="teach", email="teach@example.com")
    resp = client.post(
        "/api/v1/auth/login", json={"username": "teach", "password": "password123"}
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["user"]["username"] == "teach"
    assert "password_hash" not in body["user"]
    with client.session_transaction() as sess:
        assert sess["user_id"] == user.id
        assert sess["role"] == "instructor"
    assert db.session.get(User, user.id).last_login is not None


def test_login_with_email_is_case_insensitive(app, client, make_user):
    make_user(role="hr", email="people@example.com")
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": "People@Example.com", "password": "password123"},
    )
    assert resp.status_code == 200


def test_login_rejects_bad_password(app, client, make_user):
    make_user(username="someone")
    resp = client.post(
        "/api/v1/auth/login", json={"username": "someone", "password": "wrong-pass"}
    )
    assert resp.status_code == 401
    assert resp.get_json() == {"ok": False, "error": "Invalid credentials"}


def test_login_inactive_account(app, client, make_user):
    make_user(username="gone", status="inactive")
    resp = client.post(
        "/api/v1/auth/login", json={"username": "gone", "password": "password123"}
    )
    assert resp.status_code == 403


def test_login_requires_fields(app, client):
    resp = client.post("/api/v1/auth/login", json={"username": "x"})
    assert resp.status_code == 400


def test_me_requires_session(app, client):
    resp = client.get("/api/v1/auth/me")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "Authentication required"


def test_me_and_logout(app, client, make_user, login):
    user = make_user(role="accountant")
    login(client, user)
    resp = client.get("/api/v1/auth/me")
    assert resp.get_json()["user"]["id"] == user.id
    client.post("/api/v1/auth/logout")
    assert client.get("/api/v1/auth/me").status_code == 401


def test_change_password(app, client, make_user, login):
    user = make_user(role="instructor")
    login(client, user)
    resp = client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "nope-nope", "new_password": "newpassword1"},
    )
    assert resp.status_code == 400
    resp = client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "password123", "new_password": "short"},
    )
    assert resp.status_code == 400
    resp = client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "password123", "new_password": "newpassword1"},
    )
    assert resp.status_code == 200
    assert db.session.get(User, user.id).check_password("newpassword1")
    assert (
        db.session.query(AuditLog).filter_by(action="password_change").count() == 1
    )


def test_forgot_password_always_ok(app, client, make_user):
    make_user(email="known@example.com")
    for email in ("known@example.com", "unknown@example.com", "not-an-email"):
        resp = client.post("/api/v1/auth/forgot-password", json={"email": email})
        assert resp.status_code == 200
        assert resp.get_json()["ok"] is True


def test_reset_password_with_token(app, client, make_user):
    user = make_user(email="reset@example.com")
    token = make_reset_token(app.secret_key, "reset@example.com")
    resp = client.post(
        "/api/v1/auth/reset-password", json={"token": token, "password": "brandnew123"}
    )
    assert resp.status_code == 200
    assert db.session.get(User, user.id).check_password("brandnew123")


def test_reset_password_rejects_bad_token(app, client):
    resp = client.post(
        "/api/v1/auth/reset-password", json={"token": "garbage", "password": "brandnew123"}
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Invalid or expired token"


def test_role_mismatch_is_forbidden(app, client, make_user, login):
    login(client, make_user(role="instructor"))
    resp = client.get("/api/v1/sysadmin/users")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "Insufficient permissions"


def test_course_types_catalog_lists_active_only(app, client, make_user, make_course_type, login):
    make_course_type(name="Standard First Aid")
    make_course_type(name="Retired Course", is_active=False)
    login(client, make_user(role="organization", organization_id=None))
    resp = client.get("/api/v1/course-types")
    names = [t["name"] for t in resp.get_json()["course_types"]]
    assert names == ["Standard First Aid"]


def test_health(app, client):
    assert client.get("/api/v1/health").get_json()["ok"] is True

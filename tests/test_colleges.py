import pytest

from cprportal.app import db
from cprportal.models import College


@pytest.fixture
def admin_client(app, client, make_user, login):
    login(client, make_user(role="admin"))
    return client


def test_college_crud(app, admin_client):
    resp = admin_client.post("/api/v1/colleges", json={"name": "Humber College"})
    assert resp.status_code == 201
    humber = resp.get_json()["college"]
    assert humber["is_active"] is True

    assert admin_client.post("/api/v1/colleges", json={"name": "humber college"}).status_code == 409
    assert admin_client.post("/api/v1/colleges", json={}).status_code == 400

    other = admin_client.post("/api/v1/colleges", json={"name": "Algonquin"}).get_json()["college"]
    url = f"/api/v1/colleges/{other['id']}"
    resp = admin_client.put(url, json={"is_active": False})
    assert resp.get_json()["college"]["is_active"] is False
    assert admin_client.put(url, json={}).status_code == 400
    assert admin_client.put(url, json={"name": "Humber College"}).status_code == 409
    assert admin_client.put(url, json={"is_active": "maybe"}).status_code == 400

    listed = admin_client.get("/api/v1/colleges").get_json()["colleges"]
    assert listed == [{"id": humber["id"], "name": "Humber College"}]
    everything = admin_client.get("/api/v1/colleges/all").get_json()["colleges"]
    assert [c["name"] for c in everything] == ["Algonquin", "Humber College"]

    assert admin_client.delete(url).status_code == 200
    assert db.session.get(College, other["id"]) is None
    assert admin_client.delete(url).status_code == 404
    assert admin_client.put("/api/v1/colleges/999999", json={"name": "X"}).status_code == 404


def test_lookup_open_to_signed_in_users(app, client, make_user, login):
    assert client.get("/api/v1/colleges").status_code == 401
    login(client, make_user(role="instructor"))
    assert client.get("/api/v1/colleges").status_code == 200
    assert client.get("/api/v1/colleges/all").status_code == 403
    assert client.post("/api/v1/colleges", json={"name": "Seneca"}).status_code == 403

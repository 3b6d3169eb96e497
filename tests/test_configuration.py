from datetime import timedelta

import pytest

from cprportal.app import db, load_session_lifetime_safely
from cprportal.models import SystemConfiguration
from cprportal.services import system_config


@pytest.fixture
def seeded(app):
    system_config.seed_default_configurations()
    return app


@pytest.fixture
def admin(make_user):
    return make_user(role="sysadmin")


def test_seed_is_idempotent(app):
    first = system_config.seed_default_configurations()
    second = system_config.seed_default_configurations()
    assert first == len(system_config.DEFAULT_CONFIGURATIONS)
    assert second == 0


def test_defaults_without_rows(app):
    assert system_config.get_int("invoice_due_days", 30) == 30
    assert system_config.get_config("company_name") == "CPR Training System"


def test_set_config_updates_cache(seeded, admin):
    assert system_config.get_int("invoice_due_days", 30) == 30
    system_config.set_config("invoice_due_days", "45", admin)
    assert system_config.get_int("invoice_due_days", 30) == 45
    row = db.session.query(SystemConfiguration).filter_by(config_key="invoice_due_days").one()
    assert row.updated_by == admin.id


def test_env_override_wins(seeded, monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    assert system_config.smtp_settings()["host"] == "smtp.example.com"


def test_grouped_listing_masks_password(seeded, client, admin, login):
    system_config.set_config("email_smtp_pass", "hunter2hunter2", admin)
    login(client, admin)
    data = client.get("/api/v1/sysadmin/configurations").get_json()
    email_rows = {row["config_key"]: row for row in data["configurations"]["email"]}
    assert email_rows["email_smtp_pass"]["config_value"] == "********"
    assert set(data["configurations"]) == {"billing", "email", "general", "payroll", "security"}


def test_categories_and_category_listing(seeded, client, admin, login):
    login(client, admin)
    cats = client.get("/api/v1/sysadmin/configurations/categories").get_json()["categories"]
    assert cats == ["general", "billing", "payroll", "email", "security"]
    billing = client.get("/api/v1/sysadmin/configurations/category/billing").get_json()
    keys = [row["config_key"] for row in billing["configurations"]]
    assert keys == ["invoice_due_days", "invoice_late_fee_percent", "invoice_tax_percent"]


def test_get_and_put_configuration(seeded, client, admin, login):
    login(client, admin)
    resp = client.get("/api/v1/sysadmin/configurations/company_name")
    assert resp.get_json()["configuration"]["config_value"] == "CPR Training System"

    resp = client.put(
        "/api/v1/sysadmin/configurations/company_name", json={"value": "Lifeline Training"}
    )
    assert resp.status_code == 200
    assert system_config.get_config("company_name") == "Lifeline Training"

    assert client.put("/api/v1/sysadmin/configurations/company_name", json={}).status_code == 400
    assert client.get("/api/v1/sysadmin/configurations/nope").status_code == 404
    assert (
        client.put("/api/v1/sysadmin/configurations/nope", json={"value": "1"}).status_code
        == 404
    )


@pytest.mark.parametrize("value", ["-1", "abc"])
def test_numeric_configuration_validation(seeded, client, admin, login, value):
    login(client, admin)
    resp = client.put(
        "/api/v1/sysadmin/configurations/invoice_due_days", json={"value": value}
    )
    assert resp.status_code == 400


def test_invoice_shortcuts(seeded, client, admin, login):
    login(client, admin)
    assert client.get("/api/v1/sysadmin/configurations/invoice/due-days").get_json()[
        "due_days"
    ] == 30
    assert client.get("/api/v1/sysadmin/configurations/invoice/late-fee").get_json()[
        "late_fee_percent"
    ] == 1.5


def test_validate_smtp(seeded, client, admin, login):
    login(client, admin)
    data = client.post("/api/v1/sysadmin/configurations/validate-smtp").get_json()
    assert data["valid"] is False
    assert "SMTP host is not configured" in data["issues"]

    system_config.set_config("email_smtp_host", "mail.example.com", admin)
    data = client.post("/api/v1/sysadmin/configurations/validate-smtp").get_json()
    assert data == {"ok": True, "valid": True, "issues": []}


def test_session_timeout_update_applies_immediately(seeded, client, admin, login):
    assert seeded.permanent_session_lifetime == timedelta(minutes=60)
    login(client, admin)
    resp = client.put(
        "/api/v1/sysadmin/configurations/session_timeout_minutes", json={"value": "15"}
    )
    assert resp.status_code == 200
    assert seeded.permanent_session_lifetime == timedelta(minutes=15)

    client.post("/api/v1/auth/logout")
    client.post(
        "/api/v1/auth/login", json={"username": admin.username, "password": "password123"}
    )
    assert seeded.permanent_session_lifetime == timedelta(minutes=15)


def test_session_timeout_loaded_at_startup(seeded, admin):
    system_config.set_config("session_timeout_minutes", "20", admin)
    seeded.permanent_session_lifetime = timedelta(minutes=60)
    load_session_lifetime_safely(seeded)
    assert seeded.permanent_session_lifetime == timedelta(minutes=20)

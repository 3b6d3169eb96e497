from datetime import timedelta
from decimal import Decimal

import pytest

from cprportal.app import db
from cprportal.models import CourseRequest, CourseStudent, Invoice, Payment
from cprportal.services import billing
from cprportal.shared.time import now_utc, today


@pytest.fixture
def books(app, client, make_user, make_org, make_course_type, make_course, login):
    accountant = make_user(role="accountant", username="ledger")
    org = make_org(contact_email="pay@example.com")
    course_type = make_course_type(name="Basic Life Support")
    course = make_course(
        org,
        course_type,
        status="completed",
        ready_for_billing=True,
        completed_at=now_utc(),
    )
    db.session.add_all(
        [
            CourseStudent(course_request_id=course.id, first_name="A", last_name="A", attended=True),
            CourseStudent(course_request_id=course.id, first_name="B", last_name="B", attended=True),
            CourseStudent(course_request_id=course.id, first_name="C", last_name="C", attended=False),
        ]
    )
    db.session.commit()
    login(client, accountant)
    return {"accountant": accountant, "org": org, "type": course_type, "course": course}


def _price(client, books, price="50.00"):
    return client.post(
        "/api/v1/accounting/course-pricing",
        json={
            "organization_id": books["org"].id,
            "course_type_id": books["type"].id,
            "price_per_student": price,
        },
    )


def _create_invoice(client, books):
    _price(client, books)
    resp = client.post("/api/v1/accounting/invoices", json={"course_id": books["course"].id})
    assert resp.status_code == 201
    return resp.get_json()["invoice"]


def test_pricing_replaces_previous_active_row(app, client, books):
    _price(client, books, "40.00")
    _price(client, books, "55.00")
    rows = client.get("/api/v1/accounting/course-pricing").get_json()["pricing"]
    assert [r["price_per_student"] for r in rows] == [55.0]
    assert _price(client, books, "0").status_code == 400

    pricing_id = rows[0]["id"]
    resp = client.put(
        f"/api/v1/accounting/course-pricing/{pricing_id}", json={"price_per_student": "60"}
    )
    assert resp.get_json()["pricing"]["price_per_student"] == 60.0
    client.delete(f"/api/v1/accounting/course-pricing/{pricing_id}")
    assert client.get("/api/v1/accounting/course-pricing").get_json()["pricing"] == []


def test_billing_queue_shows_rate(app, client, books):
    queue = client.get("/api/v1/accounting/billing-queue").get_json()["courses"]
    assert queue[0]["rate_per_student"] is None
    _price(client, books)
    queue = client.get("/api/v1/accounting/billing-queue").get_json()["courses"]
    assert queue[0]["attended_count"] == 2
    assert queue[0]["estimated_base_cost"] == 100.0


def test_create_invoice_math_and_numbering(app, client, books):
    invoice = _create_invoice(client, books)
    assert invoice["base_cost"] == 100.0
    assert invoice["tax_amount"] == 13.0
    assert invoice["amount"] == 113.0
    assert invoice["students_billed"] == 2
    assert invoice["invoice_number"] == f"INV-{today().year}-{invoice['id']:06d}"
    assert invoice["due_date"] == (today() + timedelta(days=30)).isoformat()
    assert db.session.get(CourseRequest, books["course"].id).invoiced is True

    again = client.post("/api/v1/accounting/invoices", json={"course_id": books["course"].id})
    assert again.status_code == 409


def test_create_invoice_requires_pricing_and_attendance(app, client, books, make_course):
    resp = client.post("/api/v1/accounting/invoices", json={"course_id": books["course"].id})
    assert resp.status_code == 400
    _price(client, books)
    empty = make_course(books["org"], books["type"], status="completed", ready_for_billing=True)
    resp = client.post("/api/v1/accounting/invoices", json={"course_id": empty.id})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "No attended students to bill"
    not_ready = make_course(books["org"], books["type"], status="completed")
    resp = client.post("/api/v1/accounting/invoices", json={"course_id": not_ready.id})
    assert resp.status_code == 400


def test_post_to_org_once(app, client, books):
    invoice = _create_invoice(client, books)
    url = f"/api/v1/accounting/invoices/{invoice['id']}/post-to-org"
    resp = client.post(url)
    assert resp.status_code == 200
    assert resp.get_json()["invoice"]["posted_to_org"] is True
    assert resp.get_json()["email_sent"] is False
    assert client.post(url).status_code == 400


def test_update_invoice(app, client, books):
    invoice = _create_invoice(client, books)
    url = f"/api/v1/accounting/invoices/{invoice['id']}"
    new_due = (today() + timedelta(days=45)).isoformat()
    resp = client.put(url, json={"notes": "Net 45", "due_date": new_due})
    data = resp.get_json()["invoice"]
    assert data["notes"] == "Net 45"
    assert data["due_date"] == new_due
    resp = client.put(url, json={"due_date": "1999-01-01"})
    assert resp.status_code == 400


def test_record_payment_marks_paid(app, client, books):
    invoice = _create_invoice(client, books)
    url = f"/api/v1/accounting/invoices/{invoice['id']}/payments"
    assert client.post(url, json={"amount": "200.00"}).status_code == 400
    resp = client.post(url, json={"amount": "13.00", "payment_method": "cheque"})
    assert resp.get_json()["invoice"]["status"] == "pending"
    assert resp.get_json()["invoice"]["balance_due"] == 100.0
    resp = client.post(url, json={"amount": "100.00", "payment_method": "cheque"})
    body = resp.get_json()
    assert body["invoice"]["status"] == "paid"
    assert body["invoice"]["paid_date"] == today().isoformat()
    assert len(client.get(url).get_json()["payments"]) == 2


def test_verify_and_reject_submitted_payments(app, client, books):
    invoice_data = _create_invoice(client, books)
    invoice = db.session.get(Invoice, invoice_data["id"])
    billing.post_to_org(invoice)
    first = billing.submit_payment(invoice, Decimal("113.00"), today(), "eft", "R1", None)

    queue = client.get("/api/v1/accounting/payment-verifications").get_json()["payments"]
    assert [p["id"] for p in queue] == [first.id]

    resp = client.post(f"/api/v1/accounting/payments/{first.id}/verify", json={"action": "reject"})
    assert resp.status_code == 400
    resp = client.post(
        f"/api/v1/accounting/payments/{first.id}/verify",
        json={"action": "reject", "notes": "bounced"},
    )
    body = resp.get_json()
    assert body["payment"]["status"] == "rejected"
    assert body["payment"]["notes"] == "Rejected by ledger: bounced"
    assert body["invoice"]["status"] == "pending"

    second = billing.submit_payment(invoice, Decimal("113.00"), today(), "eft", "R2", None)
    resp = client.post(
        f"/api/v1/accounting/payments/{second.id}/verify",
        json={"action": "approve", "notes": "cleared"},
    )
    body = resp.get_json()
    assert body["payment"]["status"] == "verified"
    assert body["payment"]["verified_by_accounting_at"] is not None
    assert body["invoice"]["status"] == "paid"

    again = client.post(
        f"/api/v1/accounting/payments/{second.id}/verify", json={"action": "approve"}
    )
    assert again.status_code == 400


def test_reverse_payment_window(app, client, books):
    invoice_data = _create_invoice(client, books)
    url = f"/api/v1/accounting/invoices/{invoice_data['id']}/payments"
    payment_id = client.post(url, json={"amount": "113.00"}).get_json()["payment"]["id"]

    resp = client.post(f"/api/v1/accounting/payments/{payment_id}/reverse", json={})
    assert resp.status_code == 400

    resp = client.post(
        f"/api/v1/accounting/payments/{payment_id}/reverse", json={"reason": "Duplicate"}
    )
    body = resp.get_json()
    assert body["payment"]["status"] == "reversed"
    assert body["payment"]["reversal_reason"] == "Duplicate"
    assert body["invoice"]["status"] == "pending"
    assert body["invoice"]["paid_date"] is None

    stale_id = client.post(url, json={"amount": "113.00"}).get_json()["payment"]["id"]
    stale = db.session.get(Payment, stale_id)
    stale.verified_by_accounting_at = now_utc() - timedelta(hours=49)
    db.session.commit()
    resp = client.post(
        f"/api/v1/accounting/payments/{stale_id}/reverse", json={"reason": "Too late"}
    )
    assert resp.status_code == 400


def test_overdue_sweep_and_late_fee(app, client, books):
    invoice_data = _create_invoice(client, books)
    invoice = db.session.get(Invoice, invoice_data["id"])
    invoice.invoice_date = today() - timedelta(days=40)
    invoice.due_date = today() - timedelta(days=10)
    db.session.commit()

    resp = client.post("/api/v1/accounting/trigger-overdue-update")
    assert resp.get_json() == {"ok": True, "updated": 1}
    detail = client.get(f"/api/v1/accounting/invoices/{invoice.id}").get_json()["invoice"]
    assert detail["status"] == "overdue"
    assert detail["late_fee"] == 1.7

    aging = client.get("/api/v1/accounting/reports/aging").get_json()
    assert aging["buckets"]["1_30"] == 113.0
    assert aging["counts"]["1_30"] == 1


def test_dashboard_and_revenue(app, client, books):
    invoice = _create_invoice(client, books)
    client.post(
        f"/api/v1/accounting/invoices/{invoice['id']}/payments",
        json={"amount": "50.00", "payment_date": today().isoformat()},
    )
    summary = client.get("/api/v1/accounting/dashboard").get_json()["summary"]
    assert summary["total_invoiced"] == 113.0
    assert summary["total_received"] == 50.0
    assert summary["outstanding"] == 63.0
    assert summary["billing_queue_count"] == 0

    report = client.get(f"/api/v1/accounting/reports/revenue?year={today().year}").get_json()
    month = report["months"][today().month - 1]
    assert month == {"month": today().month, "invoiced": 113.0, "received": 50.0}
    assert len(report["months"]) == 12


def test_invoice_list_filters(app, client, books):
    _create_invoice(client, books)
    assert len(client.get("/api/v1/accounting/invoices?status=pending").get_json()["invoices"]) == 1
    assert client.get("/api/v1/accounting/invoices?status=paid").get_json()["invoices"] == []
    assert client.get("/api/v1/accounting/invoices?status=bogus").status_code == 400
    resp = client.get(f"/api/v1/accounting/invoices?organization_id={books['org'].id}")
    assert len(resp.get_json()["invoices"]) == 1


def test_accountant_role_required(app, client, make_user, login):
    login(client, make_user(role="instructor"))
    assert client.get("/api/v1/accounting/dashboard").status_code == 403


def test_pending_submissions_hold_the_balance(app, client, books):
    invoice_data = _create_invoice(client, books)
    invoice = db.session.get(Invoice, invoice_data["id"])
    billing.post_to_org(invoice)
    billing.submit_payment(invoice, Decimal("100.00"), today(), "eft", "R1", None)

    with pytest.raises(billing.BillingValidationError):
        billing.submit_payment(invoice, Decimal("100.00"), today(), "eft", "R2", None)
    db.session.rollback()
    billing.submit_payment(invoice, Decimal("13.00"), today(), "eft", "R3", None)

    url = f"/api/v1/accounting/invoices/{invoice.id}/payments"
    assert client.post(url, json={"amount": "1.00"}).status_code == 400


def test_approval_cannot_overpay_invoice(app, client, books):
    invoice_data = _create_invoice(client, books)
    invoice = db.session.get(Invoice, invoice_data["id"])
    doubles = [
        Payment(
            invoice_id=invoice.id,
            amount=Decimal("113.00"),
            payment_date=today(),
            status="pending_verification",
            submitted_by_org_at=now_utc(),
        )
        for _ in range(2)
    ]
    db.session.add_all(doubles)
    db.session.commit()
    first_id, second_id = doubles[0].id, doubles[1].id

    resp = client.post(
        f"/api/v1/accounting/payments/{first_id}/verify", json={"action": "approve"}
    )
    assert resp.get_json()["invoice"]["status"] == "paid"
    resp = client.post(
        f"/api/v1/accounting/payments/{second_id}/verify", json={"action": "approve"}
    )
    assert resp.status_code == 400
    assert db.session.get(Payment, second_id).status == "pending_verification"
    refreshed = db.session.get(Invoice, invoice.id)
    assert refreshed.amount_paid == Decimal("113.00")

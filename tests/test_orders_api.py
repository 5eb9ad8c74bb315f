import base64

import pytest
import requests
from sqlalchemy import select

from order.models import PageVisit, db

from conftest import FakeResponse

ORDER = {
    "customerEmail": "jana@example.sk",
    "customerName": "Jana <Nováková>",
    "items": [{"name": "Torta #1", "qty": 2, "unitPrice": 16.0, "lineTotal": 32.0}],
    "total": 32.0,
}


def _visits(app):
    with app.app_context():
        return db.session.scalars(select(PageVisit)).all()


@pytest.fixture
def geolocation(monkeypatch):
    calls = []

    def fake_get(url, timeout=None):
        calls.append(url)
        return FakeResponse(200, {"status": "success", "city": "Košice", "country": "Slovakia"})

    monkeypatch.setattr("admin_portal.orders_api.requests.get", fake_get)
    return calls


# ---- log-visit
def test_log_visit_records_forwarded_ip_and_location(admin_app, geolocation):
    resp = admin_app.test_client().post(
        "/functions/v1/log-visit",
        json={"path": "/objednavka"},
        headers={"X-Forwarded-For": "8.8.8.8, 10.0.0.1", "User-Agent": "pytest"},
    )
    assert resp.status_code == 201
    assert resp.get_json() == {"success": True}
    assert resp.headers["Access-Control-Allow-Origin"] == "*"

    [visit] = _visits(admin_app)
    assert (visit.path, visit.ip, visit.user_agent) == ("/objednavka", "8.8.8.8", "pytest")
    assert (visit.city, visit.country) == ("Košice", "Slovakia")
    assert geolocation == ["http://ip-api.com/json/8.8.8.8?fields=status,city,country"]


def test_log_visit_skips_lookup_for_private_ips(admin_app, geolocation):
    admin_app.test_client().post("/functions/v1/log-visit", json={"path": "/"},
                                 headers={"X-Real-IP": "192.168.1.10"})
    [visit] = _visits(admin_app)
    assert visit.ip == "192.168.1.10"
    assert visit.city is None
    assert geolocation == []


def test_log_visit_without_ip_headers(admin_app, geolocation):
    admin_app.test_client().post("/functions/v1/log-visit", json={"path": "/"})
    [visit] = _visits(admin_app)
    assert visit.ip == "unknown"
    assert visit.user_agent


@pytest.mark.parametrize("body", [{"path": "/" + "x" * 250}, {"path": 42}, None])
def test_log_visit_falls_back_to_root_path(admin_app, geolocation, body):
    client = admin_app.test_client()
    if body is None:
        resp = client.post("/functions/v1/log-visit", data="not json", content_type="text/plain")
    else:
        resp = client.post("/functions/v1/log-visit", json=body)
    assert resp.status_code == 201
    assert _visits(admin_app)[0].path == "/"


def test_failed_geolocation_still_logs_visit(admin_app, monkeypatch):
    def broken_get(url, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr("admin_portal.orders_api.requests.get", broken_get)
    resp = admin_app.test_client().post("/functions/v1/log-visit", json={"path": "/"},
                                        headers={"X-Forwarded-For": "8.8.8.8"})
    assert resp.status_code == 201
    assert _visits(admin_app)[0].city is None


def test_preflight(admin_app):
    resp = admin_app.test_client().options("/functions/v1/send-order-email")
    assert resp.status_code == 200
    assert "content-type" in resp.headers["Access-Control-Allow-Headers"]


# ---- send-order-email
def test_send_order_email_notifies_admin_and_customer(admin_app, smtp):
    resp = admin_app.test_client().post("/functions/v1/send-order-email", json=ORDER)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["customerError"] is None
    assert body["adminId"] and body["customerId"]

    admin_msg, customer_msg = smtp.sent
    assert admin_msg["To"] == "owner@torty.test"
    assert admin_msg["From"] == "shop@torty.test"
    assert "Jana <Nováková>" in admin_msg["Subject"]
    html = admin_msg.get_body(preferencelist=("html",)).get_content()
    assert "Jana &lt;Nováková&gt;" in html
    assert "32.00 €" in html
    assert customer_msg["To"] == "jana@example.sk"


def test_pdf_is_attached_to_both_emails(admin_app, smtp):
    payload = dict(ORDER, pdfBase64=base64.b64encode(b"%PDF-1.4 test").decode(), pdfFilename="objednavka.pdf")
    assert admin_app.test_client().post("/functions/v1/send-order-email", json=payload).status_code == 200
    for msg in smtp.sent:
        [attachment] = list(msg.iter_attachments())
        assert attachment.get_filename() == "objednavka.pdf"
        assert attachment.get_content() == b"%PDF-1.4 test"


def test_customer_email_failure_is_reported(admin_app, smtp):
    smtp.fail_for = {"jana@example.sk"}
    body = admin_app.test_client().post("/functions/v1/send-order-email", json=ORDER).get_json()
    assert body["success"] is True
    assert "mailbox unavailable" in body["customerError"]
    assert body["customerId"] is None
    assert len(smtp.sent) == 1


def test_admin_email_failure_is_an_error(admin_app, smtp):
    smtp.fail_for = {"owner@torty.test"}
    resp = admin_app.test_client().post("/functions/v1/send-order-email", json=ORDER)
    assert resp.status_code == 500
    assert resp.get_json()["success"] is False


def test_missing_smtp_host(admin_app, smtp, monkeypatch):
    monkeypatch.delenv("SMTP_HOST", raising=False)
    admin_app.config["SMTP_HOST"] = None
    resp = admin_app.test_client().post("/functions/v1/send-order-email", json=ORDER)
    assert resp.status_code == 500
    assert "SMTP_HOST" in resp.get_json()["error"]
    assert smtp.sent == []


@pytest.mark.parametrize("payload", [
    dict(ORDER, customerEmail=""),
    dict(ORDER, pdfBase64="***", pdfFilename="x.pdf"),
])
def test_bad_requests_fail(admin_app, smtp, payload):
    resp = admin_app.test_client().post("/functions/v1/send-order-email", json=payload)
    assert resp.status_code == 500
    assert smtp.sent == []

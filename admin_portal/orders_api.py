from __future__ import annotations

# =========================================
# orders_api.py
# Serverless-style endpoints called by the storefront
# =========================================
# - POST /functions/v1/send-order-email : admin + customer emails
# - POST /functions/v1/log-visit        : one page_visits row per call
# Both answer CORS preflights and carry CORS headers.
# =========================================

import base64
import binascii
import ipaddress

import requests
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from admin_portal.email_utils import send_order_emails
from order.models import PageVisit, db

orders_api = Blueprint("orders_api", __name__, url_prefix="/functions/v1")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

MAX_PATH_LENGTH = 200


@orders_api.after_request
def _add_cors_headers(response):
    for k, v in CORS_HEADERS.items():
        response.headers[k] = v
    return response


def _is_private(ip: str) -> bool:
    if ip in {"unknown", "localhost"}:
        return True
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return addr.is_private or addr.is_loopback or addr.is_link_local


def _client_ip() -> str:
    raw = request.headers.get("X-Forwarded-For") or request.headers.get("X-Real-IP") or "unknown"
    return raw.split(",")[0].strip() or "unknown"


def _locate(ip: str) -> dict | None:
    """City/country for a public IP; None on any failure."""
    if _is_private(ip):
        return None
    url = current_app.config["GEOLOCATION_URL"].format(ip=ip)
    try:
        resp = requests.get(url, timeout=current_app.config.get("GEOLOCATION_TIMEOUT", 3.0))
        if not resp.ok:
            return None
        data = resp.json()
    except (requests.RequestException, ValueError):
        current_app.logger.warning("Geolocation lookup failed for %s", ip)
        return None
    if data.get("status") != "success":
        return None
    return {"city": data.get("city") or None, "country": data.get("country") or None}


@orders_api.route("/log-visit", methods=["POST", "OPTIONS"])
def log_visit():
    if request.method == "OPTIONS":
        return "ok", 200

    payload = request.get_json(silent=True)
    path = payload.get("path") if isinstance(payload, dict) else "/"
    if not isinstance(path, str) or len(path) > MAX_PATH_LENGTH:
        path = "/"
    path = path.strip() or "/"

    ip = _client_ip()
    user_agent = request.headers.get("User-Agent") or "unknown"
    location = _locate(ip) or {}

    try:
        db.session.add(PageVisit(
            path=path,
            ip=ip,
            user_agent=user_agent,
            city=location.get("city"),
            country=location.get("country"),
        ))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("Visit insert failed")
        return jsonify({"success": False, "error": str(e)}), 500

    return jsonify({"success": True}), 201


@orders_api.route("/send-order-email", methods=["POST", "OPTIONS"])
def send_order_email():
    """
    POST /functions/v1/send-order-email
    JSON: customerEmail, customerName, items[{name, qty, unitPrice, lineTotal}],
          total, pdfBase64 (optional), pdfFilename (optional)
    """
    if request.method == "OPTIONS":
        return "ok", 200

    data = request.get_json(silent=True) or {}
    customer_email = (data.get("customerEmail") or "").strip()
    customer_name = (data.get("customerName") or "").strip()
    items = [row for row in (data.get("items") or []) if isinstance(row, dict)]

    try:
        total = float(data.get("total") or 0)
        if not customer_email:
            raise ValueError("customerEmail is required")

        pdf_bytes = None
        pdf_filename = data.get("pdfFilename") or None
        if data.get("pdfBase64") and pdf_filename:
            pdf_bytes = base64.b64decode(data["pdfBase64"], validate=True)

        result = send_order_emails(
            customer_email=customer_email,
            customer_name=customer_name,
            items=items,
            total=total,
            pdf_bytes=pdf_bytes,
            pdf_filename=pdf_filename,
        )
    except (ValueError, binascii.Error, RuntimeError, OSError) as e:
        # smtplib errors are OSError subclasses
        current_app.logger.exception("Error sending emails")
        return jsonify({"success": False, "error": str(e)}), 500

    customer_error = result.get("customerError")
    if customer_error:
        current_app.logger.warning("Customer confirmation failed: %s", customer_error)
    return jsonify({
        "success": True,
        "message": "Admin email sent; customer email may have failed" if customer_error else "Emails sent successfully",
        "adminId": result.get("adminId"),
        "customerId": result.get("customerId"),
        "customerError": customer_error,
    }), 200

from __future__ import annotations

# =========================================
# config.py
# Shared settings for the storefront and the admin portal
# =========================================
# Values come from the environment (a local .env is loaded first).
# Both app factories do app.config.from_object(Config).
# =========================================

import os

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
PROJECT_ROOT = os.path.dirname(BASE_DIR)


def _as_float(val, default: float) -> float:
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")

    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", "sqlite:///" + os.path.join(PROJECT_ROOT, "torty.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Serverless functions (hosted by the admin portal under /functions/v1)
    FUNCTIONS_BASE_URL = os.getenv("FUNCTIONS_BASE_URL", "http://localhost:5001/functions/v1")
    FUNCTIONS_TOKEN = os.getenv("FUNCTIONS_TOKEN", "")
    FUNCTIONS_TIMEOUT = _as_float(os.getenv("FUNCTIONS_TIMEOUT"), 10.0)
    VISIT_LOG_TIMEOUT = _as_float(os.getenv("VISIT_LOG_TIMEOUT"), 2.0)

    # Admin gate
    ADMIN_CHECK_TIMEOUT = _as_float(os.getenv("ADMIN_CHECK_TIMEOUT"), 5.0)
    ADMIN_USER = os.getenv("ADMIN_USER", "admin@example.com")
    ADMIN_PASS = os.getenv("ADMIN_PASS", "admin123")

    # Section ordering fallback for databases without section_meta.sort_order
    SECTION_ORDER_FILE = os.getenv(
        "SECTION_ORDER_FILE", os.path.join(PROJECT_ROOT, "section_order.json")
    )

    # Seconds before the catalog is re-read even without a local write notice
    CATALOG_MAX_AGE = _as_float(os.getenv("CATALOG_MAX_AGE"), 10.0)

    # PDF export
    PDF_FONT_PATH = os.getenv("PDF_FONT_PATH", "")
    PDF_FONT_BOLD_PATH = os.getenv("PDF_FONT_BOLD_PATH", "")

    # Visit logging
    GEOLOCATION_URL = os.getenv("GEOLOCATION_URL", "http://ip-api.com/json/{ip}?fields=status,city,country")
    GEOLOCATION_TIMEOUT = _as_float(os.getenv("GEOLOCATION_TIMEOUT"), 3.0)

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true")
    SMTP_USE_SSL = os.getenv("SMTP_USE_SSL", "false")
    FROM_EMAIL = os.getenv("FROM_EMAIL", os.getenv("SMTP_USER"))
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
    BCC_EMAIL = os.getenv("BCC_EMAIL")


def configure_app(app, overrides: dict | None = None):
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    return app

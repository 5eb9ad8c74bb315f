from __future__ import annotations

import pytest
from sqlalchemy import text

from admin_portal.app import create_app as create_admin_app
from order.app import create_app as create_storefront_app
from order.models import (
    Admin,
    DiameterMultiplierRow,
    Ingredient,
    Recipe,
    RecipeIngredient,
    SectionMeta,
    SectionOptionRow,
    User,
    db,
)

LEGACY_SECTION_META = "CREATE TABLE section_meta (section VARCHAR(120) PRIMARY KEY, description VARCHAR(240))"


def _settings(tmp_path, name: str) -> dict:
    return {
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / (name + '.db')}",
        "SECTION_ORDER_FILE": str(tmp_path / "section_order.json"),
        "CATALOG_MAX_AGE": 0,
        "FUNCTIONS_BASE_URL": "http://functions.test/functions/v1",
        "FUNCTIONS_TOKEN": "anon-key",
        "ADMIN_CHECK_TIMEOUT": 2.0,
        "SMTP_HOST": "smtp.test",
        "SMTP_PORT": 587,
        "SMTP_USER": None,
        "SMTP_PASS": None,
        "FROM_EMAIL": "shop@torty.test",
        "ADMIN_EMAIL": "owner@torty.test",
        "BCC_EMAIL": None,
    }


def _build(factory, tmp_path, name, legacy=False):
    app = factory(_settings(tmp_path, name))
    with app.app_context():
        if legacy:
            db.session.execute(text(LEGACY_SECTION_META))
            db.session.commit()
        db.create_all()
    return app


# Storefront tests run inside one app context so they can touch db.session
# directly; the storefront keeps nothing in ``g``.
@pytest.fixture
def storefront(tmp_path):
    app = _build(create_storefront_app, tmp_path, "shop")
    with app.app_context():
        yield app


@pytest.fixture
def legacy_storefront(tmp_path):
    app = _build(create_storefront_app, tmp_path, "legacy", legacy=True)
    with app.app_context():
        yield app


# Admin apps are not wrapped: Flask-Login and the admin check cache per app
# context, so every request needs its own.
@pytest.fixture
def admin_app(tmp_path):
    return _build(create_admin_app, tmp_path, "admin")


@pytest.fixture
def legacy_admin_app(tmp_path):
    return _build(create_admin_app, tmp_path, "legacy_admin", legacy=True)


def make_user(email="admin@torty.test", password="secret", is_admin=True) -> User:
    user = User(email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    if is_admin:
        db.session.add(Admin(user_id=user.id))
    db.session.commit()
    return user


def login(client, email="admin@torty.test", password="secret"):
    return client.post("/auth/login", json={"email": email, "password": password})


@pytest.fixture
def admin_client(admin_app):
    with admin_app.app_context():
        make_user()
    client = admin_app.test_client()
    resp = login(client)
    assert resp.status_code == 200
    return client


def add_section(key, options, description="", required=False, sort_order=None, legacy=False):
    """Insert one section; options are (name, price) or (name, price, linked_recipe_id)."""
    if legacy:
        db.session.execute(
            text("INSERT INTO section_meta (section, description) VALUES (:s, :d)"),
            {"s": key, "d": description},
        )
    else:
        db.session.add(SectionMeta(section=key, description=description, required=required, sort_order=sort_order))
    rows = []
    for idx, opt in enumerate(options):
        name, price = opt[0], opt[1]
        linked = opt[2] if len(opt) > 2 else None
        row = SectionOptionRow(section=key, name=name, price=price, sort_order=idx, linked_recipe_id=linked)
        db.session.add(row)
        rows.append(row)
    db.session.commit()
    return {r.name: r.id for r in rows}


def add_recipe(name, lines):
    """lines: (quantity, unit_price, package_size, indivisible)"""
    recipe = Recipe(name=name, description="")
    db.session.add(recipe)
    db.session.flush()
    for i, (qty, price, pkg, indivisible) in enumerate(lines):
        ing = Ingredient(name=f"{name} ingredient {i}", unit="g", price=price,
                         package_size=pkg, indivisible=indivisible)
        db.session.add(ing)
        db.session.flush()
        db.session.add(RecipeIngredient(recipe_id=recipe.id, ingredient_id=ing.id, quantity=qty))
    db.session.commit()
    return recipe.id


def add_multipliers(section_key, values: dict, base_option_id=None):
    for option_id, value in values.items():
        db.session.add(DiameterMultiplierRow(
            section_key=section_key, option_id=option_id, multiplier=value, base_option_id=base_option_id))
    db.session.commit()


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        return self._payload


@pytest.fixture
def function_calls(monkeypatch):
    """Records storefront -> function calls; set .response to change the answer."""

    class Recorder(list):
        response = FakeResponse(200, {"success": True, "adminId": "a-1"})

    calls = Recorder()

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return calls.response

    monkeypatch.setattr("order.functions_client.requests.post", fake_post)
    return calls


class FakeSMTP:
    sent: list = []
    fail_for: set = set()

    def __init__(self, host, port):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        if msg["To"] in FakeSMTP.fail_for:
            raise OSError(f"mailbox unavailable: {msg['To']}")
        FakeSMTP.sent.append(msg)


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail_for = set()
    monkeypatch.setattr("admin_portal.email_utils.smtplib.SMTP", FakeSMTP)
    return FakeSMTP

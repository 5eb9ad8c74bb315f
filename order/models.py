from __future__ import annotations

# =========================================
# models.py
# Relations shared by the storefront and the admin portal
# =========================================
# Also hosts the change feed: after each successful commit the names of the
# tables that were written are published to the app's subscribers.
# =========================================

import uuid
from datetime import datetime, timezone

from flask import current_app, has_app_context
from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

db = SQLAlchemy()

INGREDIENT_UNITS = ("ml", "g", "l", "kg", "ks")


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # naive UTC; SQLite drops tzinfo anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


# -------------------- Catalog --------------------
class SectionMeta(db.Model):
    __tablename__ = "section_meta"

    section = db.Column(db.String(120), primary_key=True)
    description = db.Column(db.String(240), nullable=True)
    # Both columns are missing on older databases; see snapshot.probe_capabilities
    required = db.Column(db.Boolean, nullable=True)
    sort_order = db.Column(db.Integer, nullable=True)


class SectionOptionRow(db.Model):
    __tablename__ = "section_options"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    section = db.Column(db.String(120), nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False, default="")
    price = db.Column(db.Float, nullable=False, default=0.0)
    description = db.Column(db.String(240), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    linked_recipe_id = db.Column(db.String(36), nullable=True)


class DiameterMultiplierRow(db.Model):
    __tablename__ = "diameter_multipliers"

    id = db.Column(db.Integer, primary_key=True)
    section_key = db.Column(db.String(120), nullable=False, index=True)
    option_id = db.Column(db.String(36), nullable=False)
    base_option_id = db.Column(db.String(36), nullable=True)
    multiplier = db.Column(db.Float, nullable=False, default=1.0)


class Ingredient(db.Model):
    __tablename__ = "ingredients"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(160), nullable=False)
    unit = db.Column(db.String(8), nullable=False, default="g")
    price = db.Column(db.Float, nullable=False, default=0.0)
    package_size = db.Column(db.Float, nullable=False, default=1.0)
    indivisible = db.Column(db.Boolean, nullable=False, default=False)


class Recipe(db.Model):
    __tablename__ = "recipes"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class RecipeIngredient(db.Model):
    __tablename__ = "recipe_ingredients"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    recipe_id = db.Column(db.String(36), db.ForeignKey("recipes.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.String(36), db.ForeignKey("ingredients.id"), nullable=False)
    quantity = db.Column(db.Float, nullable=False, default=0.0)

    ingredient = db.relationship("Ingredient", lazy="joined")


# -------------------- Orders / visits --------------------
class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(160), nullable=False)
    items = db.Column(db.JSON, nullable=False)
    total = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class PageVisit(db.Model):
    __tablename__ = "page_visits"

    id = db.Column(db.Integer, primary_key=True)
    path = db.Column(db.String(200), nullable=False, default="/")
    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(400), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    country = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)


# -------------------- Auth --------------------
class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(160), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    def set_password(self, raw: str):
        self.password_hash = generate_password_hash(raw)

    def check_password(self, raw: str) -> bool:
        return check_password_hash(self.password_hash, raw)


class Admin(db.Model):
    __tablename__ = "admins"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)


# -------------------- Change feed --------------------
class ChangeFeed:
    """Publishes the set of table names written by each committed transaction."""

    def __init__(self):
        self._subscribers = []

    def subscribe(self, tables, callback):
        self._subscribers.append((frozenset(tables), callback))

    def publish(self, tables):
        changed = frozenset(tables)
        for watched, callback in list(self._subscribers):
            hit = watched & changed
            if hit:
                callback(hit)


def init_change_feed(app) -> ChangeFeed:
    feed = app.extensions.get("change_feed")
    if feed is None:
        feed = ChangeFeed()
        app.extensions["change_feed"] = feed
    return feed


def _pending_tables(session) -> set:
    return session.info.setdefault("changed_tables", set())


@event.listens_for(Session, "after_flush")
def _collect_flushed_tables(session, flush_context):
    pending = _pending_tables(session)
    for obj in list(session.new) + list(session.dirty) + list(session.deleted):
        name = getattr(obj, "__tablename__", None)
        if name:
            pending.add(name)


@event.listens_for(Session, "do_orm_execute")
def _collect_statement_tables(orm_execute_state):
    if not (orm_execute_state.is_insert or orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    table = getattr(orm_execute_state.statement, "table", None)
    name = getattr(table, "name", None)
    if name:
        _pending_tables(orm_execute_state.session).add(name)


@event.listens_for(Session, "after_commit")
def _publish_committed_tables(session):
    tables = session.info.pop("changed_tables", None)
    if not tables or not has_app_context():
        return
    feed = current_app.extensions.get("change_feed")
    if feed is not None:
        feed.publish(tables)


@event.listens_for(Session, "after_rollback")
def _discard_pending_tables(session):
    session.info.pop("changed_tables", None)

import math
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import timedelta
from functools import wraps

import click
from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask_login import (
    LoginManager,
    current_user,
    login_required,
    login_user,
    logout_user,
)
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from admin_portal.orders_api import orders_api
from admin_portal.reorder import apply_drop_order
from order.catalog import IngredientLine, Option
from order.config import configure_app
from order.models import (
    INGREDIENT_UNITS,
    Admin,
    DiameterMultiplierRow,
    Ingredient,
    PageVisit,
    Recipe,
    RecipeIngredient,
    SectionMeta,
    SectionOptionRow,
    User,
    db,
    init_change_feed,
    new_id,
    utcnow,
)
from order.pricing import DEFAULT_MULTIPLIER, area_multipliers, ingredient_cost, is_linked, round_half_up
from order.sections import slugify_label
from order.snapshot import get_snapshot_cache, init_snapshot_cache

admin = Blueprint("admin", __name__)

login_manager = LoginManager()

_admin_check_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="admin-check")

# Default catalog written by `flask seed-sections`
SEED_SECTIONS = [
    ("diameter", [("15 cm", 4), ("18 cm", 5), ("26 cm", 6)]),
    ("height", [("4 korpusy", 5), ("6 korpusov", 8)]),
    ("inner_cream", [
        ("krém z tmavej čokolády", 5), ("kokosovo-mandľový krém", 5), ("makový krém", 5),
        ("krém z bielej čokolády", 5), ("cream cheese s bielou čokoládou", 5), ("karamelový krém", 5),
    ]),
    ("outer_cream", [("ganache z bielej čokolády", 4), ("ganache z tmavej čokolády", 4), ("mascarpone krém", 4)]),
    ("extra", [("karamel", 5), ("praliné", 5)]),
    ("fruit", [("lesné ovocie", 3), ("maliny", 3), ("mango", 3)]),
    ("logistics", [("krabica", 2), ("podložka", 2)]),
]
SEED_DESCRIPTION = "spodny popis sekcie"


# -------------------- Auth --------------------
@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({"ok": False, "error": "Login required"}), 401


def _lookup_admin(app, user_id) -> bool:
    with app.app_context():
        return db.session.get(Admin, user_id) is not None


def check_admin_status(user_id) -> bool:
    """Admin-row lookup raced against ADMIN_CHECK_TIMEOUT; timeout or error means no."""
    app = current_app._get_current_object()
    future = _admin_check_pool.submit(_lookup_admin, app, user_id)
    try:
        return bool(future.result(timeout=app.config["ADMIN_CHECK_TIMEOUT"]))
    except FuturesTimeout:
        app.logger.warning("Admin check timed out for user %s", user_id)
    except SQLAlchemyError:
        app.logger.exception("Admin check failed for user %s", user_id)
    return False


def _is_admin() -> bool:
    if not current_user.is_authenticated:
        return False
    if "is_admin" not in g:
        g.is_admin = check_admin_status(current_user.id)
    return g.is_admin


def admin_required(fn):
    @wraps(fn)
    @login_required
    def wrapper(*a, **kw):
        if not _is_admin():
            return jsonify({"ok": False, "error": "Forbidden"}), 403
        return fn(*a, **kw)
    return wrapper


# -------------------- Helpers --------------------
def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _write_failed(what: str):
    db.session.rollback()
    current_app.logger.exception("%s failed", what)
    return jsonify({"ok": False, "error": f"{what} failed"}), 500


def _number(value, default=None):
    """float(value), or default for anything unparsable or non-finite."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _upsert_meta(caps, key: str, description=None, required=None, sort_order=None):
    """Write only the section_meta columns this database has."""
    table = SectionMeta.__table__
    values = {}
    if description is not None:
        values["description"] = description
    if required is not None and caps.supports_required:
        values["required"] = bool(required)
    if sort_order is not None and caps.supports_explicit_order:
        values["sort_order"] = int(sort_order)

    exists = db.session.execute(select(table.c.section).where(table.c.section == key)).first()
    if exists:
        if values:
            db.session.execute(update(table).where(table.c.section == key).values(**values))
    else:
        db.session.execute(insert(table).values(section=key, **values))


def _stage_order(keys: list[str]):
    """Queue sort_order writes; a no-op when the schema has no such column."""
    caps = get_snapshot_cache().capabilities
    if caps.supports_explicit_order:
        for idx, key in enumerate(keys):
            _upsert_meta(caps, key, sort_order=idx)


def _remember_fallback_order(keys: list[str]):
    # Legacy schemas keep the order in a local file, written only after the commit
    cache = get_snapshot_cache()
    if not cache.capabilities.supports_explicit_order:
        cache.ordering.remember_order(keys)
        cache.invalidate()


def _section_option_rows(key: str) -> list[SectionOptionRow]:
    stmt = select(SectionOptionRow).where(SectionOptionRow.section == key).order_by(SectionOptionRow.sort_order)
    return list(db.session.scalars(stmt))


def _multiplier_rows(key: str) -> list[DiameterMultiplierRow]:
    stmt = select(DiameterMultiplierRow).where(DiameterMultiplierRow.section_key == key)
    return list(db.session.scalars(stmt.order_by(DiameterMultiplierRow.id)))


def _as_options(rows) -> list[Option]:
    return [Option(id=r.id, name=r.name, price=r.price) for r in rows]


def _recipe_lines(recipe_id: str) -> list[RecipeIngredient]:
    stmt = select(RecipeIngredient).where(RecipeIngredient.recipe_id == recipe_id)
    return list(db.session.scalars(stmt))


def _line_payload(ri: RecipeIngredient) -> dict:
    ing = ri.ingredient
    line = IngredientLine(
        quantity=ri.quantity or 0,
        unit_price=ing.price if ing else 0,
        package_size=ing.package_size if ing else 0,
        indivisible=bool(ing and ing.indivisible),
    )
    return {
        "id": ri.id,
        "recipe_id": ri.recipe_id,
        "ingredient_id": ri.ingredient_id,
        "ingredientName": ing.name if ing else "",
        "unit": ing.unit if ing else "",
        "quantity": ri.quantity,
        "price": line.unit_price,
        "packageSize": line.package_size,
        "indivisible": line.indivisible,
        "cost": ingredient_cost(line),
    }


def _ingredient_payload(it: Ingredient) -> dict:
    return {
        "id": it.id,
        "name": it.name,
        "unit": it.unit,
        "price": it.price,
        "packageSize": it.package_size,
        "indivisible": bool(it.indivisible),
    }


# -------------------- Auth routes --------------------
@admin.post("/auth/signup")
def signup():
    data = _json()
    email = (data.get("email") or "").strip().lower()
    password = (data.get("password") or "").strip()
    if not email or not password:
        return jsonify({"ok": False, "errors": {"email": "Email and password required."}}), 400
    if db.session.scalar(select(User).where(User.email == email)):
        return jsonify({"ok": False, "errors": {"email": "That email is already registered."}}), 409
    try:
        user = User(email=email)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Sign up")
    return jsonify({"ok": True, "user": {"id": user.id, "email": user.email}}), 201


@admin.post("/auth/login")
def login():
    data = _json()
    email = (data.get("email") or "").strip().lower()
    password = (data.get("password") or "").strip()

    user = db.session.scalar(select(User).where(User.email == email))
    if not user or not user.check_password(password):
        return jsonify({"ok": False, "error": "Invalid login."}), 401

    login_user(user)
    return jsonify({"ok": True, "user": {"id": user.id, "email": user.email}, "isAdmin": _is_admin()})


@admin.post("/auth/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@admin.get("/auth/session")
def auth_session():
    if not current_user.is_authenticated:
        return jsonify({"user": None, "isAdmin": False})
    return jsonify({"user": {"id": current_user.id, "email": current_user.email}, "isAdmin": _is_admin()})


# -------------------- Sections --------------------
@admin.get("/api/sections")
@admin_required
def list_sections():
    cache = get_snapshot_cache()
    snap = cache.get()
    index = snap.multipliers
    recipe_names = snap.recipe_names

    sections = []
    for s in snap.sections:
        prefix = f"{s.key}:"
        multipliers = {k[len(prefix):]: v for k, v in index.by_key.items() if k.startswith(prefix)}
        sections.append({
            "key": s.key,
            "label": s.label,
            "description": s.description,
            "required": s.required,
            "diameter": {
                "enabled": index.is_managed(s.key),
                "baseOptionId": index.base_by_section.get(s.key),
                "multipliers": multipliers,
            },
            "options": [
                {
                    "id": o.id,
                    "name": o.name,
                    "price": o.price,
                    "description": o.description,
                    "linkedRecipeId": o.linked_recipe_id,
                    "linked": is_linked(o, recipe_names),
                }
                for o in s.options
            ],
        })
    caps = cache.capabilities
    return jsonify({
        "sections": sections,
        "capabilities": {
            "supportsExplicitOrder": caps.supports_explicit_order,
            "supportsRequired": caps.supports_required,
        },
    })


@admin.post("/api/sections")
@admin_required
def add_section():
    label = (_json().get("label") or "").strip()
    key = slugify_label(label)
    if not label or not key:
        return jsonify({"ok": False, "errors": {"label": "Zadajte názov sekcie."}}), 400

    cache = get_snapshot_cache()
    snap = cache.get()
    if key in snap.sections:
        return jsonify({"ok": False, "errors": {"label": "Sekcia s týmto kľúčom už existuje!"}}), 409

    try:
        _upsert_meta(cache.capabilities, key, description=label, required=False, sort_order=len(snap.sections))
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Add section")
    current_app.logger.info("Section %s created", key)
    return jsonify({"ok": True, "key": key, "label": label}), 201


@admin.put("/api/sections/<key>/label")
@admin_required
def rename_section(key):
    """Only the display label changes; the key is permanent."""
    label = (_json().get("label") or "").strip()
    if not label:
        return jsonify({"ok": False, "errors": {"label": "Zadajte názov sekcie."}}), 400
    cache = get_snapshot_cache()
    if key not in cache.get().sections:
        return jsonify({"ok": False, "error": "Section not found"}), 404
    try:
        _upsert_meta(cache.capabilities, key, description=label)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Rename section")
    return jsonify({"ok": True, "key": key, "label": label})


def _validate_sections_payload(sections, recipes) -> dict:
    errors = {}
    seen = set()
    for i, sec in enumerate(sections):
        key = (sec.get("key") or "").strip() if isinstance(sec, dict) else ""
        if not key:
            errors[f"sections[{i}].key"] = "Missing section key."
            continue
        if key in seen:
            errors[f"sections[{i}].key"] = "Duplicate section key."
        seen.add(key)
        for j, opt in enumerate(sec.get("options") or []):
            where = f"sections[{i}].options[{j}]"
            if not isinstance(opt, dict):
                errors[where] = "Invalid option."
                continue
            linked = opt.get("linkedRecipeId")
            if linked and linked not in recipes:
                errors[f"{where}.linkedRecipeId"] = "Unknown recipe."
            elif not linked:
                price = _number(opt.get("price"), -1)
                if price < 0:
                    errors[f"{where}.price"] = "Cena nemôže byť záporná."
    return errors


@admin.put("/api/sections")
@admin_required
def save_all():
    """
    PUT /api/sections  {sections: [{key, description, required, options: [...]}, ...]}
    The payload is the full editor state: sections not listed are deleted.
    """
    sections = _json().get("sections")
    if not isinstance(sections, list):
        return jsonify({"ok": False, "errors": {"sections": "Expected a list."}}), 400

    cache = get_snapshot_cache()
    caps = cache.capabilities
    snap = cache.get()
    errors = _validate_sections_payload(sections, snap.recipes)
    if errors:
        return jsonify({"ok": False, "errors": errors}), 400

    try:
        existing_keys = set(db.session.scalars(select(SectionMeta.section)))
        existing_keys |= set(db.session.scalars(select(SectionOptionRow.section).distinct()))

        payload_keys = []
        for sec in sections:
            key = sec["key"].strip()
            payload_keys.append(key)
            _upsert_meta(caps, key, description=sec.get("description") or "",
                         required=bool(sec.get("required")))

            current = {r.id: r for r in _section_option_rows(key)}
            kept = []
            for pos, opt in enumerate(sec.get("options") or []):
                row = current.get(opt.get("id")) if opt.get("id") else None
                if row is None:
                    row = SectionOptionRow(id=new_id(), section=key)
                    db.session.add(row)
                linked = opt.get("linkedRecipeId") or None
                row.name = (opt.get("name") or "").strip()
                row.description = opt.get("description") or ""
                row.linked_recipe_id = linked
                row.price = snap.recipes[linked].total_cost if linked else round_half_up(_number(opt.get("price"), 0))
                row.sort_order = pos
                kept.append(row)

            kept_ids = {r.id for r in kept}
            for row_id, row in current.items():
                if row_id not in kept_ids:
                    db.session.delete(row)

            mult_rows = _multiplier_rows(key)
            if mult_rows:
                for m in mult_rows:
                    if m.option_id not in kept_ids:
                        db.session.delete(m)
                covered = {m.option_id for m in mult_rows}
                base_id = next((m.base_option_id for m in mult_rows if m.base_option_id), None)
                if base_id not in kept_ids:
                    base_id = None
                scaled = area_multipliers(_as_options(kept), base_id) if base_id else {}
                for row in kept:
                    if row.id not in covered:
                        db.session.add(DiameterMultiplierRow(
                            section_key=key,
                            option_id=row.id,
                            base_option_id=base_id,
                            multiplier=scaled.get(row.id, DEFAULT_MULTIPLIER),
                        ))

        for key in existing_keys - set(payload_keys):
            db.session.execute(delete(SectionOptionRow).where(SectionOptionRow.section == key))
            db.session.execute(delete(SectionMeta).where(SectionMeta.section == key))
            db.session.execute(delete(DiameterMultiplierRow).where(DiameterMultiplierRow.section_key == key))

        _stage_order(payload_keys)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Save sections")
    try:
        _remember_fallback_order(payload_keys)
    except OSError:
        return _write_failed("Save section order")

    current_app.logger.info("Saved %d sections", len(payload_keys))
    return jsonify({"ok": True, "keys": payload_keys})


@admin.put("/api/sections/order")
@admin_required
def reorder_sections():
    """Persist the sibling order read back at drop time."""
    dropped = _json().get("keys")
    if not isinstance(dropped, list):
        return jsonify({"ok": False, "errors": {"keys": "Expected a list."}}), 400
    snap = get_snapshot_cache().get()
    final = apply_drop_order(snap.sections.keys(), dropped)
    try:
        _stage_order(final)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Reorder sections")
    try:
        _remember_fallback_order(final)
    except OSError:
        return _write_failed("Reorder sections")
    return jsonify({"ok": True, "keys": final})


# -------------------- Diameter multipliers --------------------
@admin.post("/api/diameter/<key>")
@admin_required
def enable_diameter(key):
    rows = [r for r in _section_option_rows(key) if r.id]
    if not rows:
        return jsonify({"ok": False, "error": "Section has no saved options"}), 404
    existing = _multiplier_rows(key)
    if existing:
        return jsonify({"ok": True, "multipliers": {m.option_id: m.multiplier for m in existing}})
    try:
        for row in rows:
            db.session.add(DiameterMultiplierRow(section_key=key, option_id=row.id, multiplier=DEFAULT_MULTIPLIER))
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Enable diameter")
    return jsonify({"ok": True, "multipliers": {r.id: DEFAULT_MULTIPLIER for r in rows}}), 201


@admin.delete("/api/diameter/<key>")
@admin_required
def disable_diameter(key):
    try:
        db.session.execute(delete(DiameterMultiplierRow).where(DiameterMultiplierRow.section_key == key))
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Disable diameter")
    return jsonify({"ok": True})


@admin.put("/api/diameter/<key>/base")
@admin_required
def set_diameter_base(key):
    base_id = _json().get("optionId")
    rows = _section_option_rows(key)
    if not any(r.id == base_id for r in rows):
        return jsonify({"ok": False, "errors": {"optionId": "Unknown option."}}), 400

    scaled = area_multipliers(_as_options(rows), base_id)
    try:
        by_option = {m.option_id: m for m in _multiplier_rows(key)}
        for option_id, value in scaled.items():
            m = by_option.get(option_id)
            if m is None:
                m = DiameterMultiplierRow(section_key=key, option_id=option_id)
                db.session.add(m)
            m.multiplier = value
            m.base_option_id = base_id
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Set diameter base")
    return jsonify({"ok": True, "baseOptionId": base_id, "multipliers": scaled})


@admin.put("/api/diameter/<key>/<option_id>")
@admin_required
def set_multiplier(key, option_id):
    value = _number(_json().get("multiplier"))
    if value is None or value <= 0:
        return jsonify({"ok": False, "errors": {"multiplier": "Násobok musí byť kladné číslo."}}), 400
    if not any(r.id == option_id for r in _section_option_rows(key)):
        return jsonify({"ok": False, "error": "Option not found"}), 404
    try:
        m = db.session.scalar(select(DiameterMultiplierRow).where(
            DiameterMultiplierRow.section_key == key, DiameterMultiplierRow.option_id == option_id))
        if m is None:
            m = DiameterMultiplierRow(section_key=key, option_id=option_id)
            db.session.add(m)
        m.multiplier = value
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Set multiplier")
    return jsonify({"ok": True, "optionId": option_id, "multiplier": value})


# -------------------- Ingredients --------------------
def _validate_ingredient(data: dict) -> tuple[dict, dict]:
    errors = {}
    name = (data.get("name") or "").strip()
    unit = data.get("unit") or "g"
    price = _number(data.get("price"), -1)
    package_size = _number(data.get("packageSize"), 0)
    if not name:
        errors["name"] = "Zadajte názov."
    if unit not in INGREDIENT_UNITS:
        errors["unit"] = "Neznáma jednotka."
    if price < 0:
        errors["price"] = "Cena nemôže byť záporná."
    if package_size <= 0:
        errors["packageSize"] = "Veľkosť balenia musí byť kladná."
    values = {
        "name": name,
        "unit": unit,
        "price": round_half_up(max(price, 0)),
        "package_size": round_half_up(max(package_size, 0)),
        "indivisible": bool(data.get("indivisible")),
    }
    return values, errors


@admin.get("/api/ingredients")
@admin_required
def list_ingredients():
    rows = db.session.scalars(select(Ingredient).order_by(Ingredient.name))
    return jsonify({"ingredients": [_ingredient_payload(it) for it in rows]})


@admin.post("/api/ingredients")
@admin_required
def create_ingredient():
    values, errors = _validate_ingredient(_json())
    if errors:
        return jsonify({"ok": False, "errors": errors}), 400
    try:
        it = Ingredient(**values)
        db.session.add(it)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Create ingredient")
    return jsonify({"ok": True, "ingredient": _ingredient_payload(it)}), 201


@admin.put("/api/ingredients/<ingredient_id>")
@admin_required
def update_ingredient(ingredient_id):
    it = db.session.get(Ingredient, ingredient_id)
    if it is None:
        return jsonify({"ok": False, "error": "Ingredient not found"}), 404
    values, errors = _validate_ingredient(_json())
    if errors:
        return jsonify({"ok": False, "errors": errors}), 400
    try:
        for k, v in values.items():
            setattr(it, k, v)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Update ingredient")
    return jsonify({"ok": True, "ingredient": _ingredient_payload(it)})


@admin.delete("/api/ingredients/<ingredient_id>")
@admin_required
def delete_ingredient(ingredient_id):
    it = db.session.get(Ingredient, ingredient_id)
    if it is None:
        return jsonify({"ok": False, "error": "Ingredient not found"}), 404
    in_use = db.session.scalar(
        select(func.count()).select_from(RecipeIngredient).where(RecipeIngredient.ingredient_id == ingredient_id))
    if in_use:
        return jsonify({"ok": False, "error": "Ingredient is used by a recipe"}), 409
    try:
        db.session.delete(it)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Delete ingredient")
    return jsonify({"ok": True})


# -------------------- Recipes --------------------
@admin.get("/api/recipes")
@admin_required
def list_recipes():
    costs = get_snapshot_cache().get().recipes
    recipes = []
    for r in db.session.scalars(select(Recipe).order_by(Recipe.created_at.desc())):
        cost = costs.get(r.id)
        recipes.append({
            "id": r.id,
            "name": r.name,
            "description": r.description or "",
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "totalCost": cost.total_cost if cost else 0.0,
            "ingredients": [_line_payload(ri) for ri in _recipe_lines(r.id)],
        })
    return jsonify({"recipes": recipes})


@admin.post("/api/recipes")
@admin_required
def create_recipe():
    data = _json()
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"ok": False, "errors": {"name": "Zadajte názov receptu."}}), 400
    try:
        recipe = Recipe(name=name, description=(data.get("description") or "").strip())
        db.session.add(recipe)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Create recipe")
    return jsonify({"ok": True, "recipe": {"id": recipe.id, "name": recipe.name,
                                           "description": recipe.description, "totalCost": 0.0}}), 201


@admin.delete("/api/recipes/<recipe_id>")
@admin_required
def delete_recipe(recipe_id):
    recipe = db.session.get(Recipe, recipe_id)
    if recipe is None:
        return jsonify({"ok": False, "error": "Recipe not found"}), 404
    cost = get_snapshot_cache().get().recipes.get(recipe_id)
    unlinked = {"linked_recipe_id": None}
    if cost is not None:
        # options keep their last derived price
        unlinked["price"] = cost.total_cost
    try:
        db.session.execute(delete(RecipeIngredient).where(RecipeIngredient.recipe_id == recipe_id))
        db.session.execute(update(SectionOptionRow)
                           .where(SectionOptionRow.linked_recipe_id == recipe_id)
                           .values(**unlinked))
        db.session.delete(recipe)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Delete recipe")
    return jsonify({"ok": True})


@admin.post("/api/recipes/<recipe_id>/ingredients")
@admin_required
def add_recipe_ingredient(recipe_id):
    if db.session.get(Recipe, recipe_id) is None:
        return jsonify({"ok": False, "error": "Recipe not found"}), 404
    data = _json()
    errors = {}
    ingredient_id = data.get("ingredientId")
    if not ingredient_id or db.session.get(Ingredient, ingredient_id) is None:
        errors["ingredientId"] = "Vyberte ingredienciu."
    quantity = _number(data.get("quantity"), 0)
    if quantity <= 0:
        errors["quantity"] = "Množstvo musí byť kladné."
    if errors:
        return jsonify({"ok": False, "errors": errors}), 400
    try:
        ri = RecipeIngredient(recipe_id=recipe_id, ingredient_id=ingredient_id, quantity=quantity)
        db.session.add(ri)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Add recipe ingredient")
    return jsonify({"ok": True, "line": _line_payload(ri)}), 201


@admin.delete("/api/recipes/<recipe_id>/ingredients/<line_id>")
@admin_required
def remove_recipe_ingredient(recipe_id, line_id):
    ri = db.session.get(RecipeIngredient, line_id)
    if ri is None or ri.recipe_id != recipe_id:
        return jsonify({"ok": False, "error": "Recipe ingredient not found"}), 404
    try:
        db.session.delete(ri)
        db.session.commit()
    except SQLAlchemyError:
        return _write_failed("Remove recipe ingredient")
    return jsonify({"ok": True})


# -------------------- Visit statistics --------------------
def load_visit_stats(now=None) -> dict:
    now = now or utcnow()
    total = db.session.scalar(select(func.count()).select_from(PageVisit)) or 0
    last24h = db.session.scalar(
        select(func.count()).select_from(PageVisit).where(PageVisit.created_at >= now - timedelta(hours=24))) or 0
    unique_ips = db.session.scalar(
        select(func.count(func.distinct(PageVisit.ip))).where(PageVisit.ip.isnot(None))) or 0

    recent = db.session.scalars(
        select(PageVisit.created_at).where(PageVisit.created_at >= now - timedelta(days=7)))
    per_day = Counter(ts.date().isoformat() for ts in recent)
    by_day = [{"day": day, "count": count} for day, count in sorted(per_day.items(), reverse=True)]

    city_rows = db.session.execute(
        select(PageVisit.city, PageVisit.country, func.count().label("n"))
        .where(PageVisit.city.isnot(None), PageVisit.country.isnot(None))
        .group_by(PageVisit.city, PageVisit.country)
        .order_by(func.count().desc())
        .limit(20)
    )
    by_city = [{"city": f"{city}, {country}", "country": country, "count": n} for city, country, n in city_rows]

    return {"total": total, "last24h": last24h, "uniqueIps": unique_ips, "byDay": by_day, "byCity": by_city}


@admin.get("/api/stats")
@admin_required
def visit_stats():
    try:
        return jsonify(load_visit_stats())
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error loading visit stats")
        return jsonify({"total": 0, "last24h": 0, "uniqueIps": 0, "byDay": [], "byCity": []})


# -------------------- One-time init --------------------
def seed_admin_user(email: str, password: str) -> bool:
    """Create the admin account if missing; returns True when created."""
    email = email.strip().lower()
    user = db.session.scalar(select(User).where(User.email == email))
    created = False
    if user is None:
        user = User(email=email)
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        created = True
    if db.session.get(Admin, user.id) is None:
        db.session.add(Admin(user_id=user.id))
    db.session.commit()
    return created


def seed_sections() -> int:
    """Upsert the default sections and replace their options."""
    caps = get_snapshot_cache().capabilities
    for key, options in SEED_SECTIONS:
        _upsert_meta(caps, key, description=SEED_DESCRIPTION)
        db.session.execute(delete(SectionOptionRow).where(SectionOptionRow.section == key))
        for idx, (name, price) in enumerate(options):
            db.session.add(SectionOptionRow(section=key, name=name, price=float(price), sort_order=idx))
    db.session.commit()
    return len(SEED_SECTIONS)


@admin.route("/init-db")
def init_db():
    db.create_all()
    cfg = current_app.config
    if seed_admin_user(cfg["ADMIN_USER"], cfg["ADMIN_PASS"]):
        return f"DB initialized. Admin user created: {cfg['ADMIN_USER']}"
    return "DB initialized. Admin user already exists."


# -------------------- App factory --------------------
def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    configure_app(app, overrides)

    db.init_app(app)
    login_manager.init_app(app)
    feed = init_change_feed(app)
    init_snapshot_cache(app, feed)

    app.register_blueprint(admin)
    app.register_blueprint(orders_api)

    @app.cli.command("seed-sections")
    def seed_sections_command():
        """Write the default cake sections."""
        count = seed_sections()
        click.echo(f"Seeded {count} sections.")

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)

import base64
import re
from io import BytesIO

from flask import Blueprint, Flask, current_app, jsonify, request, send_file, session
from sqlalchemy.exc import SQLAlchemyError

from order.cart import Cart
from order.config import configure_app
from order.functions_client import FunctionError, invoke_function, log_visit
from order.models import Order, db, init_change_feed
from order.pdf_utils import build_cart_pdf_bytes
from order.pricing import compute_line_total, line_breakdown, round_half_up
from order.snapshot import get_snapshot_cache, init_snapshot_cache

storefront = Blueprint("storefront", __name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CART_KEY = "cart"
PDF_FILENAME = "tortova-objednavka.pdf"


# --- Session cart ------------------------------------------------------------
def _load_cart() -> Cart:
    return Cart.from_dict(session.get(CART_KEY))


def _save_cart(cart: Cart):
    session[CART_KEY] = cart.to_dict()


def _priced_cart(cart: Cart, snap) -> dict:
    """Every price is re-derived from the snapshot; nothing is patched in place."""
    missing = cart.missing_required(snap.sections)
    items = []
    for it in cart.items:
        rows = line_breakdown(it, snap.sections, snap.multipliers, snap.recipe_names, cart.current_selection)
        unit = compute_line_total(it, snap.sections, snap.multipliers, snap.recipe_names, cart.current_selection)
        details = [
            {"section": r.section_key, "label": f"{r.label}:", "value": r.option_name,
             "price": round_half_up(r.price), "multiplier": r.multiplier}
            for r in rows
        ]
        if it.reward > 0:
            details.append({"section": None, "label": "Odmena pre tvorcu:", "value": "",
                            "price": round_half_up(it.reward), "multiplier": 1.0})
        items.append({
            **it.to_dict(),
            "details": details,
            "unitPrice": round_half_up(unit),
            "lineTotal": round_half_up(unit * it.quantity),
            "missingRequired": missing.get(it.id, []),
        })
    total = round_half_up(sum(i["lineTotal"] for i in items))
    return {
        "items": items,
        "activeItemId": cart.active_item_id,
        "currentSelection": dict(cart.current_selection),
        "total": total,
    }


def _sections_payload(snap) -> list[dict]:
    return [
        {
            "key": s.key,
            "label": s.label,
            "description": s.description,
            "required": s.required,
            "options": [
                {"id": o.id, "name": o.name, "price": o.price, "description": o.description}
                for o in s.options
            ],
        }
        for s in snap.sections
    ]


# --- Pages -------------------------------------------------------------------
@storefront.get("/")
def index():
    log_visit(request.path)
    snap = get_snapshot_cache().get()
    cart = _load_cart()
    return jsonify({"sections": _sections_payload(snap), "cart": _priced_cart(cart, snap)})


@storefront.get("/api/sections")
def list_sections():
    return jsonify({"sections": _sections_payload(get_snapshot_cache().get())})


@storefront.get("/api/cart")
def show_cart():
    return jsonify(_priced_cart(_load_cart(), get_snapshot_cache().get()))


# --- Cart editing ------------------------------------------------------------
@storefront.post("/api/cart/select")
def select_option():
    data = request.get_json(silent=True) or {}
    section_key = (data.get("section") or "").strip()
    option_id = (data.get("optionId") or "").strip()

    snap = get_snapshot_cache().get()
    section = snap.sections.get(section_key)
    if section is None:
        current_app.logger.warning("Selection for unknown section %r", section_key)
    opt = section.option_by_id(option_id) if section else None
    if opt is None:
        return jsonify({"ok": False, "errors": {"optionId": "Neznáma možnosť."}}), 400

    cart = _load_cart()
    cart.select(section_key, opt.id, opt.name)
    _save_cart(cart)
    return jsonify(_priced_cart(cart, snap))


@storefront.post("/api/cart/items")
def add_item():
    cart = _load_cart()
    cart.add_another()
    _save_cart(cart)
    return jsonify(_priced_cart(cart, get_snapshot_cache().get())), 201


@storefront.post("/api/cart/items/<item_id>/focus")
def focus_item(item_id):
    cart = _load_cart()
    if not cart.focus(item_id):
        return jsonify({"ok": False, "error": "Item not found"}), 404
    _save_cart(cart)
    return jsonify(_priced_cart(cart, get_snapshot_cache().get()))


@storefront.patch("/api/cart/items/<item_id>")
def update_item(item_id):
    data = request.get_json(silent=True) or {}
    cart = _load_cart()
    if cart.get(item_id) is None:
        return jsonify({"ok": False, "error": "Item not found"}), 404
    errors = cart.update_item(
        item_id,
        quantity=data.get("quantity"),
        reward=data.get("reward"),
        event_name=data.get("eventName"),
    )
    if errors:
        return jsonify({"ok": False, "errors": errors}), 400
    _save_cart(cart)
    return jsonify(_priced_cart(cart, get_snapshot_cache().get()))


@storefront.delete("/api/cart/items/<item_id>")
def delete_item(item_id):
    cart = _load_cart()
    if not cart.remove_item(item_id):
        return jsonify({"ok": False, "error": "Item not found"}), 404
    _save_cart(cart)
    return jsonify(_priced_cart(cart, get_snapshot_cache().get()))


@storefront.delete("/api/cart/items/<item_id>/selections/<section_key>")
def delete_selection(item_id, section_key):
    cart = _load_cart()
    if not cart.remove_selection(item_id, section_key):
        return jsonify({"ok": False, "error": "Item not found"}), 404
    _save_cart(cart)
    return jsonify(_priced_cart(cart, get_snapshot_cache().get()))


# --- PDF / checkout ----------------------------------------------------------
def _cart_pdf(priced: dict) -> bytes:
    cfg = current_app.config
    return build_cart_pdf_bytes(
        priced["items"],
        priced["total"],
        font_path=cfg.get("PDF_FONT_PATH"),
        bold_font_path=cfg.get("PDF_FONT_BOLD_PATH"),
    )


@storefront.get("/api/cart/pdf")
def export_pdf():
    cart = _load_cart()
    if not cart.items:
        return jsonify({"ok": False, "error": "Košík je prázdny – nie je čo exportovať."}), 400
    pdf_bytes = _cart_pdf(_priced_cart(cart, get_snapshot_cache().get()))
    return send_file(BytesIO(pdf_bytes), mimetype="application/pdf",
                     as_attachment=True, download_name=PDF_FILENAME)


@storefront.post("/api/checkout")
def checkout():
    """
    POST /api/checkout  {name, email, attachPdf?}
    Rejects (400) when any cake misses a required section; nothing is stored then.
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip()

    cart = _load_cart()
    if not cart.items:
        return jsonify({"ok": False, "errors": {"cart": "Košík je prázdny."}}), 400

    snap = get_snapshot_cache().get()
    errors = {}
    if not name:
        errors["name"] = "Zadajte meno."
    if not EMAIL_RE.match(email):
        errors["email"] = "Zadajte platný email."
    missing = cart.missing_required(snap.sections)
    if missing:
        errors["required"] = "Prosím, vyplňte všetky povinné polia pre každú tortu."
    if errors:
        return jsonify({"ok": False, "errors": errors, "missingRequired": missing}), 400

    priced = _priced_cart(cart, snap)
    items = [
        {
            "eventName": it["eventName"],
            "quantity": it["quantity"],
            "selections": it["dynamicSelections"],
            "reward": it["reward"],
            "unitPrice": it["unitPrice"],
            "lineTotal": it["lineTotal"],
        }
        for it in priced["items"]
    ]
    total = priced["total"]

    try:
        order = Order(email=email, items=items, total=total)
        db.session.add(order)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Order insert failed")
        return jsonify({"ok": False, "error": "Nepodarilo sa uložiť objednávku."}), 500

    payload = {
        "customerEmail": email,
        "customerName": name,
        "items": [
            {"name": it["eventName"], "qty": it["quantity"],
             "unitPrice": it["unitPrice"], "lineTotal": it["lineTotal"]}
            for it in items
        ],
        "total": total,
    }
    if data.get("attachPdf"):
        payload["pdfBase64"] = base64.b64encode(_cart_pdf(priced)).decode("ascii")
        payload["pdfFilename"] = PDF_FILENAME

    # The order is stored; an email failure is reported, not fatal
    email_sent = False
    email_error = None
    try:
        invoke_function("send-order-email", payload)
        email_sent = True
    except FunctionError as e:
        current_app.logger.warning("Order %s saved but email failed: %s", order.id, e)
        email_error = str(e)

    cart.clear()
    _save_cart(cart)

    return jsonify({
        "ok": True,
        "order_id": order.id,
        "total": total,
        "email_sent": email_sent,
        "email_error": email_error,
    }), 201


# --- App factory -------------------------------------------------------------
def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    configure_app(app, overrides)

    db.init_app(app)
    feed = init_change_feed(app)
    init_snapshot_cache(app, feed)

    app.register_blueprint(storefront)
    return app


if __name__ == "__main__":
    # flask --app order.app run --debug   (from project root), or:
    create_app().run(debug=True)

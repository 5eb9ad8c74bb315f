from __future__ import annotations

# =========================================
# email_utils.py
# Order notification emails
# =========================================
# Sends:
#  - Admin notification (to ADMIN_EMAIL); failure is raised
#  - Customer confirmation (to customer_email); best effort, error returned
# Settings come from app.config (see order.config.Config) or the
# environment: SMTP_*, FROM_EMAIL, ADMIN_EMAIL and an optional BCC_EMAIL
# copied on the admin notification.
# =========================================

import os
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from typing import Optional


def _cfg(app, key: str, default=None):
    # Prefer Flask app.config, fall back to environment
    if app and app.config.get(key) is not None:
        return app.config.get(key)
    return os.getenv(key, default)


def _as_bool(val) -> bool:
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def _money(v) -> str:
    return f"{float(v or 0):.2f} €"


def _build_items_html(customer_name: str, customer_email: str, items: list[dict], total) -> str:
    rows = "".join(
        "<tr>"
        f"<td style=\"padding: 8px; border: 1px solid #ddd;\">{escape(str(it.get('name', '')))}</td>"
        f"<td style=\"padding: 8px; border: 1px solid #ddd; text-align: center;\">{it.get('qty', '')}x</td>"
        f"<td style=\"padding: 8px; border: 1px solid #ddd; text-align: right;\">{_money(it.get('unitPrice'))}</td>"
        f"<td style=\"padding: 8px; border: 1px solid #ddd; text-align: right;\">{_money(it.get('lineTotal'))}</td>"
        "</tr>"
        for it in items
    )
    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
        "<h2>Nová objednávka</h2>"
        f"<p><strong>Meno:</strong> {escape(customer_name)}</p>"
        f"<p><strong>Email:</strong> {escape(customer_email)}</p>"
        "<h3>Položky objednávky:</h3>"
        "<table style=\"width: 100%; border-collapse: collapse; margin: 20px 0;\">"
        "<thead><tr style=\"background-color: #f5f5f5;\">"
        "<th style=\"padding: 8px; border: 1px solid #ddd; text-align: left;\">Položka</th>"
        "<th style=\"padding: 8px; border: 1px solid #ddd;\">Počet</th>"
        "<th style=\"padding: 8px; border: 1px solid #ddd;\">Cena/ks</th>"
        "<th style=\"padding: 8px; border: 1px solid #ddd;\">Spolu</th>"
        "</tr></thead>"
        f"<tbody>{rows}</tbody></table>"
        f"<p style=\"font-size: 18px; font-weight: bold; text-align: right;\">Celková suma: {_money(total)}</p>"
        "</div>"
    )


def _build_items_text(customer_name: str, customer_email: str, items: list[dict], total) -> str:
    lines = []
    lines.append("Nová objednávka")
    lines.append("")
    lines.append(f"Meno: {customer_name}")
    lines.append(f"Email: {customer_email}")
    lines.append("")
    lines.append("Položky objednávky:")
    if not items:
        lines.append("  (žiadne)")
    for i, it in enumerate(items, start=1):
        lines.append(f"  {i}. {it.get('name', '')}  {it.get('qty', '')}x  "
                     f"{_money(it.get('unitPrice'))}  = {_money(it.get('lineTotal'))}")
    lines.append("")
    lines.append(f"Celková suma: {_money(total)}")
    return "\n".join(lines)


def _send_email(
    host: str,
    port: int,
    user: Optional[str],
    password: Optional[str],
    use_tls: bool,
    use_ssl: bool,
    msg: EmailMessage,
):
    if use_ssl:
        with smtplib.SMTP_SSL(host, port) as s:
            if user and password:
                s.login(user, password)
            s.send_message(msg)
        return

    with smtplib.SMTP(host, port) as s:
        s.ehlo()
        if use_tls:
            s.starttls()
            s.ehlo()
        if user and password:
            s.login(user, password)
        s.send_message(msg)


def _new_message(subject: str, from_email: str, to: str, bcc: Optional[str], text: str, html: str,
                 pdf_bytes: Optional[bytes], pdf_filename: Optional[str]) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_email
    msg["To"] = to
    if bcc:
        msg["Bcc"] = bcc
    msg["Message-ID"] = make_msgid(domain=from_email.split("@")[-1] if "@" in from_email else None)
    msg.set_content(text)
    msg.add_alternative(html, subtype="html")
    if pdf_bytes and pdf_filename:
        msg.add_attachment(pdf_bytes, maintype="application", subtype="pdf", filename=pdf_filename)
    return msg


def send_order_emails(
    customer_email: str,
    customer_name: str,
    items: list[dict],
    total: float,
    pdf_bytes: Optional[bytes] = None,
    pdf_filename: Optional[str] = None,
) -> dict:
    """
    Sends admin + customer emails.
    Returns {"adminId", "customerId", "customerError"}; the admin email failing raises.
    """
    # Flask current_app is optional here
    try:
        from flask import current_app
        app = current_app._get_current_object()
    except RuntimeError:
        app = None

    smtp_host = _cfg(app, "SMTP_HOST")
    smtp_port = int(_cfg(app, "SMTP_PORT", 587))
    smtp_user = _cfg(app, "SMTP_USER")
    smtp_pass = _cfg(app, "SMTP_PASS")
    use_tls = _as_bool(_cfg(app, "SMTP_USE_TLS", True))
    use_ssl = _as_bool(_cfg(app, "SMTP_USE_SSL", False))

    from_email = _cfg(app, "FROM_EMAIL", smtp_user)
    admin_to = _cfg(app, "ADMIN_EMAIL")
    bcc_email = _cfg(app, "BCC_EMAIL", None)

    if not smtp_host:
        raise RuntimeError("SMTP_HOST is not configured")
    if not from_email:
        raise RuntimeError("FROM_EMAIL (or SMTP_USER) is not configured")
    if not admin_to:
        raise RuntimeError("ADMIN_EMAIL is not configured")

    smtp = dict(host=smtp_host, port=smtp_port, user=smtp_user, password=smtp_pass,
                use_tls=use_tls, use_ssl=use_ssl)

    items_html = _build_items_html(customer_name, customer_email, items, total)
    items_text = _build_items_text(customer_name, customer_email, items, total)

    # ---- Admin notification
    admin_msg = _new_message(
        f"Nová objednávka od {customer_name}", from_email, admin_to, bcc_email,
        items_text, items_html, pdf_bytes, pdf_filename,
    )
    _send_email(msg=admin_msg, **smtp)

    # ---- Customer confirmation (best effort)
    customer_id = None
    customer_error = None
    try:
        customer_msg = _new_message(
            "Potvrdenie objednávky", from_email, customer_email, None,
            f"Dobrý deň {customer_name},\n\n"
            "Vaša objednávka bola úspešne prijatá. Čoskoro Vás budeme kontaktovať.\n\n"
            f"{items_text}\n\nS pozdravom,\nVáš tím\n",
            "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
            "<h2>Ďakujeme za objednávku!</h2>"
            f"<p>Dobrý deň {escape(customer_name)},</p>"
            "<p>Vaša objednávka bola úspešne prijatá. Čoskoro Vás budeme kontaktovať.</p>"
            f"{items_html}<p>S pozdravom,<br>Váš tím</p></div>",
            pdf_bytes, pdf_filename,
        )
        _send_email(msg=customer_msg, **smtp)
        customer_id = customer_msg["Message-ID"]
    except (smtplib.SMTPException, OSError) as e:
        customer_error = str(e)

    return {
        "adminId": admin_msg["Message-ID"],
        "customerId": customer_id,
        "customerError": customer_error,
    }

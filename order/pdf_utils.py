from __future__ import annotations

# =========================================
# pdf_utils.py
# Cart summary PDF (ReportLab)
# =========================================
# One block per cake with the applied price of every chosen option,
# a grand-total band and "Strana i z n" footers.
# A Unicode TTF (PDF_FONT_PATH) is used when configured so that
# Slovak diacritics render; otherwise Helvetica.
# =========================================

import os
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas


def _safe(s) -> str:
    if s is None:
        return ""
    return str(s)


def _money(v) -> str:
    return f"{float(v or 0):.2f} €"


def _register_fonts(regular_path: str | None, bold_path: str | None) -> tuple[str, str]:
    if not regular_path or not os.path.exists(regular_path):
        return "Helvetica", "Helvetica-Bold"
    pdfmetrics.registerFont(TTFont("CakeSans", regular_path))
    bold = "CakeSans"
    if bold_path and os.path.exists(bold_path):
        pdfmetrics.registerFont(TTFont("CakeSans-Bold", bold_path))
        bold = "CakeSans-Bold"
    return "CakeSans", bold


class _NumberedCanvas(canvas.Canvas):
    """Defers page output so every footer can show the page count."""

    def __init__(self, *args, footer_font="Helvetica", **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_pages = []
        self._footer_font = footer_font

    def showPage(self):
        self._saved_pages.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        count = len(self._saved_pages)
        for state in self._saved_pages:
            self.__dict__.update(state)
            width, _ = self._pagesize
            self.setFont(self._footer_font, 8)
            self.setFillColorRGB(0.6, 0.6, 0.6)
            self.drawCentredString(width / 2, 10 * mm, f"Strana {self._pageNumber} z {count}")
            super().showPage()
        super().save()


def build_cart_pdf_bytes(lines: list[dict], grand_total: float, font_path: str | None = None,
                         bold_font_path: str | None = None) -> bytes:
    """
    Returns PDF bytes.
    lines: one dict per cake: eventName, quantity, lineTotal and
           details = [{label, value, price}, ...]
    """
    regular, bold = _register_fonts(font_path, bold_font_path)

    buf = BytesIO()
    c = _NumberedCanvas(buf, pagesize=A4, footer_font=regular)
    width, height = A4
    margin = 15 * mm

    # ---- Header band
    c.setFillColorRGB(1.0, 0.78, 0.84)
    c.rect(0, height - 40 * mm, width, 40 * mm, stroke=0, fill=1)
    c.setFillColorRGB(0.36, 0.07, 0.2)
    c.setFont(bold, 22)
    c.drawCentredString(width / 2, height - 18 * mm, "Tortová kalkulačka")
    c.setFont(regular, 12)
    c.drawCentredString(width / 2, height - 28 * mm, "Zhrnutie objednávky")

    y = height - 55 * mm

    def new_page():
        c.showPage()
        return height - 25 * mm

    for idx, line in enumerate(lines):
        if y < 50 * mm:
            y = new_page()

        # ---- Item header
        c.setFillColorRGB(0.94, 0.97, 1.0)
        c.rect(margin, y - 4 * mm, width - 2 * margin, 12 * mm, stroke=0, fill=1)
        c.setFillColorRGB(0.0, 0.34, 0.7)
        c.setFont(bold, 13)
        c.drawString(margin + 5 * mm, y, "Tvoja dokonalá torta")
        c.setFillColorRGB(0.4, 0.4, 0.4)
        c.setFont(regular, 10)
        qty = int(line.get("quantity") or 1)
        name = _safe(line.get("eventName"))
        c.drawRightString(width - margin - 5 * mm, y, f"{name} × {qty}" if qty > 1 else name)
        y -= 10 * mm

        for d in line.get("details") or []:
            if y < 30 * mm:
                y = new_page()
            c.setFont(regular, 9)
            c.setFillColorRGB(0.12, 0.12, 0.12)
            c.drawString(margin + 10 * mm, y, _safe(d.get("label")))
            if d.get("value"):
                c.drawString(margin + 60 * mm, y, _safe(d.get("value")))
            c.setFont(bold, 9)
            c.setFillColorRGB(0.06, 0.35, 0.31)
            c.drawRightString(width - margin - 5 * mm, y, _money(d.get("price")))
            y -= 6 * mm

        if qty > 1:
            c.setFont(bold, 9)
            c.setFillColorRGB(0.12, 0.12, 0.12)
            c.drawRightString(width - margin - 5 * mm, y, f"Spolu: {_money(line.get('lineTotal'))}")
            y -= 6 * mm

        y -= 4 * mm
        if idx < len(lines) - 1:
            c.setStrokeColorRGB(0.86, 0.86, 0.86)
            c.line(margin + 5 * mm, y, width - margin - 5 * mm, y)
            y -= 8 * mm

    # ---- Grand total band
    if y < 45 * mm:
        y = new_page()
    c.setFillColorRGB(1.0, 0.56, 0.69)
    c.rect(margin, y - 18 * mm, width - 2 * margin, 18 * mm, stroke=0, fill=1)
    c.setFillColorRGB(0.36, 0.07, 0.2)
    c.setFont(bold, 12)
    c.drawString(margin + 5 * mm, y - 11 * mm, "Spolu všetky položky:")
    c.setFont(bold, 14)
    c.drawRightString(width - margin - 5 * mm, y - 11 * mm, _money(grand_total))

    c.showPage()
    c.save()

    buf.seek(0)
    return buf.read()

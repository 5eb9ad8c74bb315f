from order.pdf_utils import build_cart_pdf_bytes


def _line(n, qty=1):
    return {
        "eventName": f"Torta #{n}",
        "quantity": qty,
        "lineTotal": 12.5 * qty,
        "details": [
            {"label": "Veľkosť:", "value": "26 cm", "price": 6.0},
            {"label": "Korpus:", "value": "vanilkový", "price": 6.5},
            {"label": "Odmena pre tvorcu:", "value": "", "price": 0},
        ],
    }


def test_single_cake_pdf():
    data = build_cart_pdf_bytes([_line(1)], 12.5)
    assert data.startswith(b"%PDF")
    assert data.rstrip().endswith(b"%%EOF")


def test_long_cart_spans_pages_without_font_file(tmp_path):
    lines = [_line(i, qty=i % 3 + 1) for i in range(1, 20)]
    data = build_cart_pdf_bytes(lines, 500.0, font_path=str(tmp_path / "missing.ttf"))
    assert data.startswith(b"%PDF")
    assert len(data) > len(build_cart_pdf_bytes([_line(1)], 12.5))

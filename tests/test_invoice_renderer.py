from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from conftest import order_payload
from order_invoicer.services.exceptions import RenderError
from order_invoicer.services.invoice_renderer import InvoiceRenderer, format_currency, format_date
from order_invoicer.services.order_source import parse_order
from order_invoicer.services.results import Failure, Success

PDF_BYTES = b"%PDF-1.4 fake invoice"


class FakeBackend:
    """PDF backend stub that captures the documents it was asked to render."""

    def __init__(self, result: bytes | Exception = PDF_BYTES, delay: float = 0.0) -> None:
        self.documents: list[str] = []
        self._result = result
        self._delay = delay

    async def render_pdf(self, document: str, *, timeout: float) -> bytes:
        self.documents.append(document)
        if self._delay:
            await asyncio.sleep(self._delay)
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


def test_format_currency_uses_greek_grouping() -> None:
    assert format_currency(1234.5, "EUR") == "1.234,50 €"
    assert format_currency(0, "USD") == "0,00 $"
    assert format_currency(12, "CHF") == "12,00 CHF"


def test_build_invoice_computes_totals(settings) -> None:
    renderer = InvoiceRenderer(settings, FakeBackend())
    invoice = renderer.build_invoice(parse_order(order_payload("1001")))

    assert invoice.invoice_number == "1001"
    assert invoice.invoice_date == "14/03/2026"
    assert invoice.customer_name == "Maria Papadopoulou"
    assert invoice.vat_number == "GR123456789"
    assert invoice.net_total == pytest.approx(33.0)
    assert invoice.vat_total == pytest.approx(7.92)
    assert invoice.grand_total == pytest.approx(40.92)
    assert invoice.vat_rate_percent == 24
    assert invoice.items[0].code == "OIL-1"
    assert invoice.items[1].code == "ITEM-2"
    assert invoice.items[1].unit == "τμχ"


def test_build_invoice_uses_generic_customer_without_full_name(settings) -> None:
    renderer = InvoiceRenderer(settings, FakeBackend())
    order = parse_order(order_payload("1002", customerInfo={"firstName": "Nikos"}))

    assert renderer.build_invoice(order).customer_name == "Customer"


def test_render_writes_pdf(settings) -> None:
    backend = FakeBackend()
    renderer = InvoiceRenderer(settings, backend)

    result = asyncio.run(renderer.render(parse_order(order_payload("1001"))))

    assert isinstance(result, Success)
    assert result.value == settings.output_dir / "invoice-1001.pdf"
    assert result.value.read_bytes() == PDF_BYTES
    assert "Maria Papadopoulou" in backend.documents[0]
    assert "40,92 €" in backend.documents[0]


def test_output_path_sanitises_order_number(settings) -> None:
    renderer = InvoiceRenderer(settings, FakeBackend())

    assert renderer.output_path("1001").name == "invoice-1001.pdf"
    unsafe = renderer.output_path("../A 1/2")
    assert unsafe.parent == settings.output_dir
    assert unsafe.name.startswith("invoice-.._A_1_2-")


def test_output_path_keeps_colliding_order_numbers_apart(settings) -> None:
    renderer = InvoiceRenderer(settings, FakeBackend())

    assert renderer.output_path("A/1") != renderer.output_path("A_1")
    assert renderer.output_path("A/1") == renderer.output_path("A/1")


def test_negative_price_fails_without_calling_backend(settings) -> None:
    backend = FakeBackend()
    renderer = InvoiceRenderer(settings, backend)
    payload = order_payload("1003", lineItems=[{"productName": "Refund", "quantity": 1, "unitPrice": -5}])

    result = asyncio.run(renderer.render(parse_order(payload)))

    assert isinstance(result, Failure)
    assert isinstance(result.error, RenderError)
    assert backend.documents == []
    assert not renderer.output_path("1003").exists()


def test_zero_quantity_is_rejected(settings) -> None:
    renderer = InvoiceRenderer(settings, FakeBackend())
    payload = order_payload("1004", lineItems=[{"productName": "Nothing", "quantity": 0, "unitPrice": 3}])

    with pytest.raises(RenderError):
        renderer.build_invoice(parse_order(payload))


def test_empty_pdf_is_cleaned_up(settings) -> None:
    renderer = InvoiceRenderer(settings, FakeBackend(result=b""))

    result = asyncio.run(renderer.render(parse_order(order_payload("1005"))))

    assert isinstance(result, Failure)
    assert list(settings.output_dir.iterdir()) == []


def test_backend_crash_is_wrapped_and_cleaned_up(settings) -> None:
    renderer = InvoiceRenderer(settings, FakeBackend(result=RuntimeError("browser died")))

    result = asyncio.run(renderer.render(parse_order(order_payload("1006"))))

    assert isinstance(result, Failure)
    assert "browser died" in str(result.error)
    assert list(settings.output_dir.iterdir()) == []


def test_render_timeout_becomes_render_error(make_settings) -> None:
    settings = make_settings(render_timeout=0.01)
    renderer = InvoiceRenderer(settings, FakeBackend(delay=1.0))

    result = asyncio.run(renderer.render(parse_order(order_payload("1007"))))

    assert isinstance(result, Failure)
    assert "timed out" in str(result.error)
    assert not renderer.output_path("1007").exists()


def test_custom_template_substitutes_and_escapes(make_settings, tmp_path) -> None:
    template = tmp_path / "invoice.html"
    template.write_text(
        "<html><body><h1>{{SHOP_NAME}}</h1><p>{{CUSTOMER_NAME}} / {{INVOICE_NUMBER}}</p>"
        "<table>{{#each items}}<tr><td>{{description}}</td><td>{{quantity}}</td>"
        "<td>{{total_amount}}</td></tr>{{/each}}</table><p>{{GRAND_TOTAL}}</p></body></html>",
        encoding="utf-8",
    )
    settings = make_settings(template_path=template)
    renderer = InvoiceRenderer(settings, FakeBackend())
    payload = order_payload(
        "1008",
        customerInfo={"firstName": "<b>Eve</b>", "lastName": "Doe"},
        lineItems=[{"productName": "Feta & olives", "quantity": 3, "unitPrice": 2}],
    )

    document = renderer.build_html(renderer.build_invoice(parse_order(payload)))

    assert "&lt;b&gt;Eve&lt;/b&gt; Doe / 1008" in document
    assert "<td>Feta &amp; olives</td><td>3</td><td>7,44 €</td>" in document
    assert "{{" not in document


def test_missing_template_fails_render(make_settings, tmp_path) -> None:
    settings = make_settings(template_path=tmp_path / "missing.html")
    renderer = InvoiceRenderer(settings, FakeBackend())

    result = asyncio.run(renderer.render(parse_order(order_payload("1009"))))

    assert isinstance(result, Failure)
    assert "template not found" in str(result.error)


def test_format_date() -> None:
    assert format_date(datetime(2026, 1, 5)) == "05/01/2026"

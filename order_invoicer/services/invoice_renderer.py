from __future__ import annotations

import asyncio
import hashlib
import html
import logging
import math
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Protocol

from playwright.async_api import async_playwright

from order_invoicer.config import Settings
from order_invoicer.schemas.invoice import Invoice, InvoiceLine
from order_invoicer.schemas.orders import Order
from order_invoicer.services.exceptions import RenderError
from order_invoicer.services.results import Failure, Result, Success

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}
DEFAULT_UNIT = "τμχ"

_PLACEHOLDER = re.compile(r"{{(\w+)}}")
_ITEMS_BLOCK = re.compile(r"{{#each items}}(.*?){{/each}}", re.DOTALL)
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


def format_currency(amount: float, currency: str) -> str:
    """Format ``1234.5`` as ``1.234,50 €`` (Greek grouping)."""

    grouped = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{grouped} {CURRENCY_SYMBOLS.get(currency.upper(), currency)}"


def format_date(moment: datetime) -> str:
    return moment.strftime("%d/%m/%Y")


def _format_quantity(quantity: float) -> str:
    return str(int(quantity)) if float(quantity).is_integer() else f"{quantity:g}"


def _checked_number(value: Any, label: str, *, allow_zero: bool = True) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise RenderError(f"{label} is not a number: {value!r}") from exc
    if not math.isfinite(number):
        raise RenderError(f"{label} is not finite: {value!r}")
    if number < 0 or (number == 0 and not allow_zero):
        raise RenderError(f"{label} must be {'non-negative' if allow_zero else 'positive'}: {value!r}")
    return number


class PdfBackend(Protocol):
    async def render_pdf(self, document: str, *, timeout: float) -> bytes:
        """Return the PDF bytes for a fully substituted HTML document."""


class PlaywrightPdfBackend:
    """Headless Chromium HTML-to-PDF backend."""

    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-accelerated-2d-canvas",
        "--no-first-run",
        "--no-zygote",
        "--disable-gpu",
    ]

    def __init__(self, *, headless: bool = True) -> None:
        self._headless = headless

    async def render_pdf(self, document: str, *, timeout: float) -> bytes:
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=self._headless, args=self.LAUNCH_ARGS)
            try:
                page = await browser.new_page(viewport={"width": 1200, "height": 800})
                await page.set_content(document, wait_until="networkidle", timeout=timeout * 1000)
                return await page.pdf(
                    format="A4",
                    print_background=True,
                    margin={"top": "20px", "right": "20px", "bottom": "20px", "left": "20px"},
                )
            finally:
                try:
                    await browser.close()
                except Exception as exc:
                    logger.warning("Error closing browser: %s", exc)


class InvoiceRenderer:
    """Projects an order into invoice data and renders it to a PDF file."""

    def __init__(self, settings: Settings, backend: PdfBackend) -> None:
        self._settings = settings
        self._backend = backend
        self._output_dir = Path(settings.output_dir)
        self._template_path = settings.template_path
        self._timeout = settings.render_timeout

    def output_path(self, order_number: str) -> Path:
        safe = _UNSAFE_FILENAME.sub("_", order_number)
        if safe != order_number:
            # Keep distinct order numbers from collapsing onto one file name.
            digest = hashlib.sha1(order_number.encode("utf-8")).hexdigest()[:8]
            safe = f"{safe}-{digest}"
        return self._output_dir / f"invoice-{safe}.pdf"

    async def render(self, order: Order) -> Result[Path, RenderError]:
        try:
            return Success(await self.render_to_file(order))
        except RenderError as exc:
            logger.error("Error generating PDF for order %s: %s", order.order_number, exc)
            return Failure(exc)

    async def render_to_file(self, order: Order) -> Path:
        invoice = self.build_invoice(order)
        document = self.build_html(invoice)
        pdf_path = self.output_path(order.order_number)
        part_path = pdf_path.with_name(pdf_path.name + ".part")
        logger.info("Starting invoice generation for order %s", order.order_number)

        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            pdf_bytes = await asyncio.wait_for(
                self._backend.render_pdf(document, timeout=self._timeout),
                timeout=self._timeout,
            )
            if not pdf_bytes:
                raise RenderError("Renderer backend returned an empty document")
            part_path.write_bytes(pdf_bytes)
            if part_path.stat().st_size == 0:
                raise RenderError("Generated PDF file is empty")
            os.replace(part_path, pdf_path)
        except RenderError:
            self._cleanup(part_path, pdf_path)
            raise
        except asyncio.TimeoutError as exc:
            self._cleanup(part_path, pdf_path)
            raise RenderError(f"Rendering timed out after {self._timeout}s", cause=exc) from exc
        except Exception as exc:
            self._cleanup(part_path, pdf_path)
            raise RenderError(f"Renderer failed: {exc}", cause=exc) from exc

        logger.info(
            "Generated invoice for order %s at %s (%s bytes)",
            order.order_number,
            pdf_path,
            pdf_path.stat().st_size,
        )
        return pdf_path

    def build_invoice(self, order: Order) -> Invoice:
        if not order.order_number:
            raise RenderError("Invalid order: missing orderNumber")
        if not order.line_items:
            raise RenderError(f"Invalid order {order.order_number}: missing or empty lineItems")

        settings = self._settings
        tax_rate = settings.tax_rate
        lines: List[InvoiceLine] = []
        for index, item in enumerate(order.line_items, start=1):
            label = f"Order {order.order_number} line {index}"
            quantity = _checked_number(item.quantity, f"{label} quantity", allow_zero=False)
            price = _checked_number(item.unit_price, f"{label} unit price")
            discount = _checked_number(item.discount, f"{label} discount")
            if not item.product_name:
                logger.warning("Line item %s of order %s missing productName", index, order.order_number)

            net_amount = price * quantity
            vat_amount = net_amount * tax_rate
            lines.append(
                InvoiceLine(
                    code=item.sku or item.product_id or f"ITEM-{index}",
                    description=item.product_name or "Unknown Product",
                    quantity=quantity,
                    price=price,
                    unit=item.unit or DEFAULT_UNIT,
                    discount=discount,
                    net_amount=net_amount,
                    vat_amount=vat_amount,
                    total_amount=net_amount + vat_amount,
                )
            )

        net_total = sum(line.net_amount for line in lines)
        vat_total = sum(line.vat_amount for line in lines)
        customer = order.customer
        created = order.created_on or datetime.now(timezone.utc)

        return Invoice(
            shop_name=settings.shop_name,
            shop_address=settings.shop_address,
            shop_phone=settings.shop_phone,
            shop_email=settings.shop_email,
            shop_registration_1=settings.shop_registration_1,
            shop_registration_2=settings.shop_registration_2,
            shop_logo_url=settings.shop_logo_url,
            vat_number=settings.vat_number,
            invoice_number=order.order_number,
            invoice_date=format_date(created),
            customer_name=customer.full_name if customer.first_name and customer.last_name else "Customer",
            customer_address=customer.address1 or "",
            receipt_info=order.receipt_info or "N/A",
            project_number=order.project_number or "N/A",
            items=lines,
            net_total=net_total,
            vat_total=vat_total,
            grand_total=net_total + vat_total,
            currency=settings.currency,
            vat_rate_percent=round(tax_rate * 100),
        )

    def build_html(self, invoice: Invoice) -> str:
        if self._template_path is not None:
            return self._populate_template(invoice, self._load_template())
        return self._builtin_html(invoice)

    def _load_template(self) -> str:
        path = Path(self._template_path)
        if not path.exists():
            raise RenderError(f"Invoice template not found at {path}")
        try:
            template = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RenderError(f"Cannot read invoice template {path}", cause=exc) from exc
        if "{{" not in template or len(template) < 100:
            raise RenderError("Invalid or corrupted invoice template")
        return template

    def _template_fields(self, invoice: Invoice) -> Dict[str, str]:
        currency = invoice.currency
        fields: Dict[str, Any] = invoice.model_dump(exclude={"items"})
        for key in ("net_total", "vat_total", "grand_total"):
            fields[key] = format_currency(fields[key], currency)
        return {key.upper(): str(value) for key, value in fields.items()}

    def _line_fields(self, line: InvoiceLine, currency: str) -> Dict[str, str]:
        fields: Dict[str, str] = {}
        for key, value in line.model_dump().items():
            if "amount" in key or key == "price":
                fields[key] = format_currency(value, currency)
            elif key == "quantity":
                fields[key] = _format_quantity(value)
            else:
                fields[key] = str(value)
        return fields

    def _populate_template(self, invoice: Invoice, template: str) -> str:
        def substitute(text: str, values: Dict[str, str]) -> str:
            return _PLACEHOLDER.sub(
                lambda match: html.escape(values[match.group(1)])
                if match.group(1) in values
                else match.group(0),
                text,
            )

        def render_items(match: re.Match) -> str:
            return "".join(
                substitute(match.group(1), self._line_fields(line, invoice.currency))
                for line in invoice.items
            )

        document = _ITEMS_BLOCK.sub(render_items, template)
        document = substitute(document, self._template_fields(invoice))

        unreplaced = _PLACEHOLDER.findall(document)
        if unreplaced:
            logger.warning("Unreplaced placeholders in template: %s", ", ".join(unreplaced))
        return document

    def _builtin_html(self, invoice: Invoice) -> str:
        esc = html.escape
        currency = invoice.currency
        rows: List[str] = []
        for line in invoice.items:
            fields = self._line_fields(line, currency)
            rows.append(
                "<tr>"
                + "".join(
                    f"<td>{esc(fields[key])}</td>"
                    for key in ("code", "description", "quantity", "unit", "price", "net_amount", "vat_amount", "total_amount")
                )
                + "</tr>"
            )
        rows_html = "".join(rows)
        logo = f'<img class="logo" src="{esc(invoice.shop_logo_url)}" alt="">' if invoice.shop_logo_url else ""
        registrations = " &middot; ".join(
            esc(value)
            for value in (invoice.vat_number, invoice.shop_registration_2)
            if value
        )

        return f"""<!DOCTYPE html>
<html>
    <head>
        <meta charset="UTF-8">
        <title>Invoice {esc(invoice.invoice_number)}</title>
        <style>
            body {{ font-family: Arial, sans-serif; font-size: 12px; color: #222; }}
            header {{ display: flex; justify-content: space-between; margin-bottom: 24px; }}
            .logo {{ max-height: 64px; }}
            table {{ border-collapse: collapse; width: 100%; }}
            th, td {{ border: 1px solid #ccc; padding: 6px; text-align: left; }}
            th {{ background-color: #f0f0f0; }}
            .totals td {{ text-align: right; border: none; }}
        </style>
    </head>
    <body>
        <header>
            <div>
                {logo}
                <h2>{esc(invoice.shop_name)}</h2>
                <p>{esc(invoice.shop_address)}<br>{esc(invoice.shop_phone)} {esc(invoice.shop_email)}</p>
                <p>{registrations}</p>
            </div>
            <div>
                <h1>Invoice {esc(invoice.invoice_number)}</h1>
                <p>Date: {esc(invoice.invoice_date)}<br>Page: {invoice.page_number}</p>
                <p>Receipt: {esc(invoice.receipt_info)}<br>Project: {esc(invoice.project_number)}</p>
            </div>
        </header>
        <section>
            <p><strong>{esc(invoice.customer_name)}</strong><br>{esc(invoice.customer_address)}</p>
        </section>
        <table>
            <thead>
                <tr><th>Code</th><th>Description</th><th>Qty</th><th>Unit</th><th>Price</th><th>Net</th><th>VAT {invoice.vat_rate_percent}%</th><th>Total</th></tr>
            </thead>
            <tbody>
                {rows_html}
            </tbody>
        </table>
        <table class="totals">
            <tr><td>Net total: {esc(format_currency(invoice.net_total, currency))}</td></tr>
            <tr><td>VAT total: {esc(format_currency(invoice.vat_total, currency))}</td></tr>
            <tr><td><strong>Grand total: {esc(format_currency(invoice.grand_total, currency))}</strong></td></tr>
        </table>
    </body>
</html>
"""

    @staticmethod
    def _cleanup(*paths: Path) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to clean up partial PDF file %s: %s", path, exc)

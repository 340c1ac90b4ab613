"""Invoice PDF generation.

HTML is rendered with a sandboxed Jinja2 environment and converted to PDF
by *xhtml2pdf*.  The document is built in memory and returned as bytes.
"""

from __future__ import annotations

import io
import logging

from jinja2.sandbox import SandboxedEnvironment
from xhtml2pdf import pisa  # type: ignore[import-untyped]

from errors import ExternalServiceFailure
from services.calculator import tax_breakdown
from services.money import format_money

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default template
# ---------------------------------------------------------------------------

_DEFAULT_CSS = """
body { font-family: DejaVu Sans, Arial, sans-serif; font-size: 10pt; margin: 20mm; }
h1 { font-size: 14pt; margin-bottom: 10px; }
h2 { font-size: 12pt; margin-top: 15px; }
table { width: 100%; border-collapse: collapse; margin-top: 10px; }
th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: left; }
th { background: #f0f0f0; }
.info-table td { border: none; padding: 2px 8px; vertical-align: top; }
.info-table { margin-bottom: 10px; }
.num { text-align: right; }
.total { font-size: 12pt; font-weight: bold; margin-top: 15px; }
"""

_INVOICE_HTML = """\
<h1>Invoice {{ invoice.invoice_number }}</h1>
<table class="info-table">
  <tr>
    <td>
      <strong>Issuer</strong><br>
      {{ issuer.business_name if issuer else '' }}<br>
      {% if issuer and issuer.address %}{{ issuer.address }}<br>{% endif %}
      {% if issuer and issuer.fiscal_number %}Fiscal no.: {{ issuer.fiscal_number }}<br>{% endif %}
      {% if issuer and issuer.vat_number %}VAT no.: {{ issuer.vat_number }}{% endif %}
    </td>
    <td>
      <strong>Receiver</strong><br>
      {{ receiver.business_name if receiver else '' }}<br>
      {% if receiver and receiver.address %}{{ receiver.address }}<br>{% endif %}
      {% if receiver and receiver.fiscal_number %}Fiscal no.: {{ receiver.fiscal_number }}<br>{% endif %}
      {% if receiver and receiver.vat_number %}VAT no.: {{ receiver.vat_number }}{% endif %}
    </td>
  </tr>
  <tr><td><strong>Invoice date:</strong> {{ invoice.invoice_date.strftime('%d.%m.%Y') }}</td>
      <td><strong>Due date:</strong> {{ invoice.due_date.strftime('%d.%m.%Y') }}</td></tr>
  <tr><td colspan="2"><strong>Status:</strong> {{ status }}</td></tr>
</table>
<h2>Items</h2>
<table>
  <thead>
    <tr><th>#</th><th>Description</th><th>Quantity</th><th>Unit price</th>
        <th>Subtotal</th><th>Tax</th><th>Total</th></tr>
  </thead>
  <tbody>
    {% for row in items %}
    <tr>
      <td>{{ loop.index }}</td>
      <td>{{ row.description }}</td>
      <td class="num">{{ row.quantity }}</td>
      <td class="num">{{ row.unit_price }} {{ currency }}</td>
      <td class="num">{{ row.subtotal }} {{ currency }}</td>
      <td class="num">{{ row.tax_amount }} {{ currency }} ({{ row.tax_name }})</td>
      <td class="num">{{ row.total }} {{ currency }}</td>
    </tr>
    {% endfor %}
  </tbody>
</table>
{% if breakdown %}
<h2>Tax summary</h2>
<table>
  <thead><tr><th>Tax</th><th>Base</th><th>Amount</th></tr></thead>
  <tbody>
    {% for group in breakdown %}
    <tr><td>{{ group.name }}</td><td class="num">{{ group.subtotal }} {{ currency }}</td>
        <td class="num">{{ group.tax_amount }} {{ currency }}</td></tr>
    {% endfor %}
  </tbody>
</table>
{% endif %}
<p class="total">Subtotal: {{ subtotal }} {{ currency }}</p>
<p class="total">Total: {{ total }} {{ currency }}</p>
{% if bank_accounts %}
<h2>Payment details</h2>
{% for account in bank_accounts %}
<div>{{ account.bank_name or '' }} {% if account.iban %}IBAN: {{ account.iban }}{% endif %}
  {% if account.swift %}SWIFT: {{ account.swift }}{% endif %}
  Account: {{ account.bank_account_number }}</div>
{% endfor %}
{% endif %}
"""


def _render_html(html_template: str, css: str, context: dict) -> str:
    """Render the Jinja2 HTML template wrapped in a full HTML document."""
    env = SandboxedEnvironment(autoescape=True)
    tmpl = env.from_string(html_template)
    body = tmpl.render(**context)
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
        f"<style>{css}</style></head><body>{body}</body></html>"
    )


def _html_to_pdf(full_html: str) -> bytes:
    buffer = io.BytesIO()
    status = pisa.CreatePDF(full_html, dest=buffer, encoding="utf-8")
    if status.err:
        raise ExternalServiceFailure("Failed to generate PDF")
    return buffer.getvalue()


def invoice_context(bundle, currency: str, bank_accounts=()) -> dict:
    """Template context for an ``InvoiceBundle``; amounts pre-formatted."""
    items = []
    for item in bundle.items:
        tax = bundle.taxes.get(item.tax_id) if item.tax_id else None
        items.append({
            "description": item.description,
            "quantity": format_money(item.quantity),
            "unit_price": format_money(item.unit_price),
            "subtotal": format_money(item.subtotal),
            "tax_amount": format_money(item.tax_amount),
            "tax_name": tax.name if tax else "No tax",
            "total": format_money(item.total),
        })
    breakdown = [
        {
            "name": group["name"],
            "subtotal": format_money(group["subtotal"]),
            "tax_amount": format_money(group["tax_amount"]),
        }
        for group in tax_breakdown(bundle.items, bundle.taxes)
    ]
    return {
        "invoice": bundle.invoice,
        "issuer": bundle.issuer,
        "receiver": bundle.receiver,
        "status": bundle.status.code if bundle.status else "",
        "items": items,
        "breakdown": breakdown,
        "subtotal": format_money(bundle.invoice.subtotal),
        "total": format_money(bundle.invoice.total),
        "currency": currency,
        "bank_accounts": list(bank_accounts),
    }


def generate_invoice_pdf(bundle, app_cfg, bank_accounts=()) -> bytes:
    """Render the invoice in *bundle* and return the PDF document."""
    full_html = _render_html(
        _INVOICE_HTML, _DEFAULT_CSS, invoice_context(bundle, app_cfg.base_currency, bank_accounts)
    )
    try:
        return _html_to_pdf(full_html)
    except ExternalServiceFailure:
        logger.error("PDF generation failed for invoice %s", bundle.invoice.id)
        raise
    except Exception as exc:
        logger.exception("PDF generation failed for invoice %s", bundle.invoice.id)
        raise ExternalServiceFailure(f"Failed to generate PDF: {exc}")

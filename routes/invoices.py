"""Invoice and invoice item routes."""

import io
import logging

from flask import Blueprint, current_app, jsonify, request, send_file

from models import BankAccount
from services import invoice as invoice_service
from services.auth import current_actor, login_required
from services.excel import CONTENT_TYPE as EXCEL_CONTENT_TYPE
from services.excel import export_invoices
from services.pdf import generate_invoice_pdf
from services.serialization import invoice_to_dict, item_to_dict
from utils import format_date, json_body, safe_int, utc_now

logger = logging.getLogger(__name__)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api")


def _view(bundle, with_items: bool = True):
    return invoice_to_dict(bundle, request.host_url, with_items=with_items)


def _excel_response(invoices, filename_prefix: str):
    bundles = invoice_service.load_invoices_with_items(invoices)
    content = export_invoices(bundles)
    return send_file(
        io.BytesIO(content),
        as_attachment=True,
        download_name=f"{filename_prefix}-{format_date(utc_now().date())}.xlsx",
        mimetype=EXCEL_CONTENT_TYPE,
    )


# ---------------------------------------------------------------------------
# Invoices of one issuer business
# ---------------------------------------------------------------------------

@invoices_bp.route("/businesses/<int:business_id>/invoices", methods=["GET"])
@login_required
def list_invoices(business_id: int):
    invoices = invoice_service.list_invoices(
        current_actor(), business_id, request.args.get("status")
    )
    bundles = invoice_service.load_invoices_with_items(invoices)
    return jsonify([_view(b) for b in bundles])


@invoices_bp.route("/businesses/<int:business_id>/invoices/export/excel", methods=["GET"])
@login_required
def export_business_invoices(business_id: int):
    invoices = invoice_service.list_invoices(
        current_actor(), business_id, request.args.get("status")
    )
    return _excel_response(invoices, f"invoices-business-{business_id}")


@invoices_bp.route("/businesses/<int:business_id>/invoices/<int:invoice_id>", methods=["GET"])
@login_required
def get_invoice(business_id: int, invoice_id: int):
    return jsonify(_view(invoice_service.get_invoice(current_actor(), business_id, invoice_id)))


@invoices_bp.route("/businesses/<int:business_id>/invoices", methods=["POST"])
@login_required
def create_invoice(business_id: int):
    bundle = invoice_service.create_invoice(current_actor(), business_id, json_body())
    return jsonify(_view(bundle)), 201


@invoices_bp.route(
    "/businesses/<int:business_id>/invoices/<int:invoice_id>", methods=["PUT", "PATCH"]
)
@login_required
def update_invoice(business_id: int, invoice_id: int):
    bundle = invoice_service.update_invoice(current_actor(), business_id, invoice_id, json_body())
    return jsonify(_view(bundle))


@invoices_bp.route("/businesses/<int:business_id>/invoices/<int:invoice_id>", methods=["DELETE"])
@login_required
def delete_invoice(business_id: int, invoice_id: int):
    invoice_service.delete_invoice(current_actor(), business_id, invoice_id)
    return jsonify({"message": "Invoice deleted successfully"})


@invoices_bp.route("/businesses/<int:business_id>/invoices/<int:invoice_id>/pdf", methods=["GET"])
@login_required
def invoice_pdf(business_id: int, invoice_id: int):
    bundle = invoice_service.get_invoice(current_actor(), business_id, invoice_id)
    accounts = (
        BankAccount.query.filter_by(business_id=bundle.invoice.issuer_id)
        .order_by(BankAccount.id)
        .all()
    )
    content = generate_invoice_pdf(bundle, current_app.config["APP_CONFIG"], accounts)
    return send_file(
        io.BytesIO(content),
        as_attachment=True,
        download_name=f"invoice-{bundle.invoice.invoice_number}.pdf",
        mimetype="application/pdf",
    )


# ---------------------------------------------------------------------------
# Cross-tenant views (admin tenants)
# ---------------------------------------------------------------------------

@invoices_bp.route("/invoices", methods=["GET"])
@login_required
def list_all_invoices():
    invoices = invoice_service.list_all_invoices(
        current_actor(),
        safe_int(request.args.get("business_id")) or None,
        request.args.get("status"),
    )
    bundles = invoice_service.load_invoices_with_items(invoices)
    return jsonify([_view(b, with_items=False) for b in bundles])


@invoices_bp.route("/invoices/export/excel", methods=["GET"])
@login_required
def export_all_invoices():
    invoices = invoice_service.list_all_invoices(
        current_actor(),
        safe_int(request.args.get("business_id")) or None,
        request.args.get("status"),
    )
    return _excel_response(invoices, "invoices")


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

def _item_view(item, bundle):
    return {
        "item": item_to_dict(item, bundle.taxes, bundle.articles),
        "invoice": _view(bundle, with_items=False),
    }


@invoices_bp.route("/invoices/<int:invoice_id>/items", methods=["GET"])
@login_required
def list_items(invoice_id: int):
    bundle = invoice_service.list_items(current_actor(), invoice_id)
    return jsonify([item_to_dict(i, bundle.taxes, bundle.articles) for i in bundle.items])


@invoices_bp.route("/invoices/<int:invoice_id>/items/<int:item_id>", methods=["GET"])
@login_required
def get_item(invoice_id: int, item_id: int):
    item, bundle = invoice_service.get_item(current_actor(), invoice_id, item_id)
    return jsonify(item_to_dict(item, bundle.taxes, bundle.articles))


@invoices_bp.route("/invoices/<int:invoice_id>/items", methods=["POST"])
@login_required
def create_item(invoice_id: int):
    item, bundle = invoice_service.add_item(current_actor(), invoice_id, json_body())
    return jsonify(_item_view(item, bundle)), 201


@invoices_bp.route("/invoices/<int:invoice_id>/items/reorder", methods=["POST", "PUT"])
@login_required
def reorder_items(invoice_id: int):
    bundle = invoice_service.reorder_items(
        current_actor(), invoice_id, json_body().get("item_ids")
    )
    return jsonify(_view(bundle))


@invoices_bp.route("/invoices/<int:invoice_id>/items/<int:item_id>", methods=["PUT", "PATCH"])
@login_required
def update_item(invoice_id: int, item_id: int):
    item, bundle = invoice_service.update_item(current_actor(), invoice_id, item_id, json_body())
    return jsonify(_item_view(item, bundle))


@invoices_bp.route("/invoices/<int:invoice_id>/items/<int:item_id>", methods=["DELETE"])
@login_required
def delete_item(invoice_id: int, item_id: int):
    bundle = invoice_service.delete_item(current_actor(), invoice_id, item_id)
    return jsonify({"message": "Invoice item deleted successfully", "invoice": _view(bundle)})

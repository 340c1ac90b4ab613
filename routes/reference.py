"""Tax and invoice status routes (platform reference data)."""

from flask import Blueprint, jsonify

from services import reference
from services.auth import current_actor, login_required
from services.serialization import status_to_dict, tax_to_dict
from utils import json_body

reference_bp = Blueprint("reference", __name__, url_prefix="/api")


# ---------------------------------------------------------------------------
# Taxes
# ---------------------------------------------------------------------------

@reference_bp.route("/taxes", methods=["GET"])
@login_required
def list_taxes():
    return jsonify([tax_to_dict(t) for t in reference.list_taxes(current_actor())])


@reference_bp.route("/taxes/<int:tax_id>", methods=["GET"])
@login_required
def get_tax(tax_id: int):
    return jsonify(tax_to_dict(reference.get_tax(current_actor(), tax_id)))


@reference_bp.route("/taxes", methods=["POST"])
@login_required
def create_tax():
    return jsonify(tax_to_dict(reference.create_tax(current_actor(), json_body()))), 201


@reference_bp.route("/taxes/<int:tax_id>", methods=["PUT", "PATCH"])
@login_required
def update_tax(tax_id: int):
    return jsonify(tax_to_dict(reference.update_tax(current_actor(), tax_id, json_body())))


@reference_bp.route("/taxes/<int:tax_id>", methods=["DELETE"])
@login_required
def delete_tax(tax_id: int):
    reference.delete_tax(current_actor(), tax_id)
    return jsonify({"message": "Tax deleted successfully"})


# ---------------------------------------------------------------------------
# Invoice statuses
# ---------------------------------------------------------------------------

@reference_bp.route("/invoice-statuses", methods=["GET"])
@login_required
def list_statuses():
    return jsonify([status_to_dict(s) for s in reference.list_statuses(current_actor())])


@reference_bp.route("/invoice-statuses/<int:status_id>", methods=["GET"])
@login_required
def get_status(status_id: int):
    return jsonify(status_to_dict(reference.get_status(current_actor(), status_id)))


@reference_bp.route("/invoice-statuses", methods=["POST"])
@login_required
def create_status():
    return jsonify(status_to_dict(reference.create_status(current_actor(), json_body()))), 201


@reference_bp.route("/invoice-statuses/<int:status_id>", methods=["PUT", "PATCH"])
@login_required
def update_status(status_id: int):
    status = reference.update_status(current_actor(), status_id, json_body())
    return jsonify(status_to_dict(status))


@reference_bp.route("/invoice-statuses/<int:status_id>", methods=["DELETE"])
@login_required
def delete_status(status_id: int):
    reference.delete_status(current_actor(), status_id)
    return jsonify({"message": "Invoice status deleted successfully"})

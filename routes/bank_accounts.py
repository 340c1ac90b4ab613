"""Bank account routes, nested under a business."""

from flask import Blueprint, jsonify

from services import bank_account as account_service
from services.auth import current_actor, login_required
from services.serialization import bank_account_to_dict
from utils import json_body

bank_accounts_bp = Blueprint(
    "bank_accounts", __name__, url_prefix="/api/businesses/<int:business_id>/bank-accounts"
)


@bank_accounts_bp.route("", methods=["GET"])
@login_required
def list_accounts(business_id: int):
    accounts = account_service.list_accounts(current_actor(), business_id)
    return jsonify([bank_account_to_dict(a) for a in accounts])


@bank_accounts_bp.route("/<int:account_id>", methods=["GET"])
@login_required
def get_account(business_id: int, account_id: int):
    account = account_service.get_account(current_actor(), business_id, account_id)
    return jsonify(bank_account_to_dict(account))


@bank_accounts_bp.route("", methods=["POST"])
@login_required
def create_account(business_id: int):
    account = account_service.create_account(current_actor(), business_id, json_body())
    return jsonify(bank_account_to_dict(account)), 201


@bank_accounts_bp.route("/<int:account_id>", methods=["PUT", "PATCH"])
@login_required
def update_account(business_id: int, account_id: int):
    account = account_service.update_account(
        current_actor(), business_id, account_id, json_body()
    )
    return jsonify(bank_account_to_dict(account))


@bank_accounts_bp.route("/<int:account_id>", methods=["DELETE"])
@login_required
def delete_account(business_id: int, account_id: int):
    account_service.delete_account(current_actor(), business_id, account_id)
    return jsonify({"message": "Bank account deleted successfully"})

"""Tenant management routes."""

from flask import Blueprint, jsonify

from services import tenant as tenant_service
from services.auth import current_actor, login_required
from services.serialization import tenant_to_dict
from utils import json_body

tenant_bp = Blueprint("tenant", __name__, url_prefix="/api/tenants")


@tenant_bp.route("", methods=["GET"])
@login_required
def list_tenants():
    tenants = tenant_service.list_tenants(current_actor())
    return jsonify([tenant_to_dict(t) for t in tenants])


@tenant_bp.route("/<int:tenant_id>", methods=["GET"])
@login_required
def get_tenant(tenant_id: int):
    return jsonify(tenant_to_dict(tenant_service.get_tenant(current_actor(), tenant_id)))


@tenant_bp.route("/<int:tenant_id>", methods=["PUT", "PATCH"])
@login_required
def update_tenant(tenant_id: int):
    tenant = tenant_service.update_tenant(current_actor(), tenant_id, json_body())
    return jsonify(tenant_to_dict(tenant))


@tenant_bp.route("/<int:tenant_id>", methods=["DELETE"])
@login_required
def delete_tenant(tenant_id: int):
    tenant_service.delete_tenant(current_actor(), tenant_id)
    return jsonify({"message": "Tenant deleted successfully"})

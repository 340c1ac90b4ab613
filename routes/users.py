"""User management routes, including invitations."""

from flask import Blueprint, jsonify, request

from services import user as user_service
from services.auth import current_actor, login_required
from services.serialization import user_to_dict
from utils import json_body, safe_int

users_bp = Blueprint("users", __name__, url_prefix="/api")


@users_bp.route("/users", methods=["GET"])
@login_required
def list_users():
    tenant_id = safe_int(request.args.get("tenant_id")) or None
    users = user_service.list_users(current_actor(), tenant_id)
    return jsonify([user_to_dict(u) for u in users])


@users_bp.route("/users/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id: int):
    return jsonify(user_to_dict(user_service.get_user(current_actor(), user_id)))


@users_bp.route("/users", methods=["POST"])
@login_required
def create_user():
    user = user_service.create_user(current_actor(), json_body())
    return jsonify(user_to_dict(user)), 201


@users_bp.route("/users/invite", methods=["POST"])
@login_required
def invite_user():
    user = user_service.invite_user(current_actor(), json_body())
    return jsonify({"message": "Invitation sent", "user": user_to_dict(user)}), 201


@users_bp.route("/accept-invitation", methods=["POST"])
def accept_invitation():
    data = json_body()
    user = user_service.accept_invitation(data.get("token"), data.get("password"))
    return jsonify({"message": "Invitation accepted", "user": user_to_dict(user)})


@users_bp.route("/users/<int:user_id>", methods=["PUT", "PATCH"])
@login_required
def update_user(user_id: int):
    user = user_service.update_user(current_actor(), user_id, json_body())
    return jsonify(user_to_dict(user))


@users_bp.route("/users/<int:user_id>", methods=["DELETE"])
@login_required
def delete_user(user_id: int):
    user_service.delete_user(current_actor(), user_id)
    return jsonify({"message": "User deleted successfully"})

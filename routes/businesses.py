"""Business routes, logo uploads included."""

import os

from flask import Blueprint, current_app, jsonify, request, send_from_directory

from services import business as business_service
from services.auth import current_actor, login_required
from services.business import LOGO_SUBDIR
from services.serialization import business_to_dict
from utils import request_data

businesses_bp = Blueprint("businesses", __name__)


def _upload_dir() -> str:
    return current_app.config["APP_CONFIG"].upload_dir


def _view(business):
    return business_to_dict(business, request.host_url)


@businesses_bp.route("/api/businesses", methods=["GET"])
@login_required
def list_businesses():
    return jsonify([_view(b) for b in business_service.list_businesses(current_actor())])


@businesses_bp.route("/api/businesses/<int:business_id>", methods=["GET"])
@login_required
def get_business(business_id: int):
    return jsonify(_view(business_service.get_business(current_actor(), business_id)))


@businesses_bp.route("/api/businesses", methods=["POST"])
@login_required
def create_business():
    business = business_service.create_business(
        current_actor(),
        request_data(),
        logo=request.files.get("logo"),
        upload_dir=_upload_dir(),
    )
    return jsonify(_view(business)), 201


# Multipart clients that cannot send PUT post to the same URL.
@businesses_bp.route("/api/businesses/<int:business_id>", methods=["PUT", "PATCH", "POST"])
@login_required
def update_business(business_id: int):
    business = business_service.update_business(
        current_actor(),
        business_id,
        request_data(),
        logo=request.files.get("logo"),
        upload_dir=_upload_dir(),
    )
    return jsonify(_view(business))


@businesses_bp.route("/api/businesses/<int:business_id>", methods=["DELETE"])
@login_required
def delete_business(business_id: int):
    business_service.delete_business(current_actor(), business_id, upload_dir=_upload_dir())
    return jsonify({"message": "Business deleted successfully"})


@businesses_bp.route("/uploads/logos/<path:filename>", methods=["GET"])
def uploaded_logo(filename: str):
    return send_from_directory(os.path.abspath(os.path.join(_upload_dir(), LOGO_SUBDIR)), filename)

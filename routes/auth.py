"""Authentication routes."""

import logging

from flask import Blueprint, g, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from errors import AccessDenied
from extensions import db, limiter
from models import Tenant
from services import auth as auth_service
from services.audit import log_action
from services.auth import current_actor, get_current_user, login_required
from services.policy import Actor
from services.serialization import user_to_dict
from services.tenant import issuer_business
from utils import json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api")

REMEMBER_ME_COOKIE = "remember_me"
REMEMBER_ME_MAX_AGE = 30 * 24 * 3600


def _user_view(user):
    tenant = db.session.get(Tenant, user.tenant_id)
    return user_to_dict(user, tenant, issuer_business(tenant) if tenant else None)


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("5 per minute")
def register():
    data = json_body()
    if data.get("tenant_id") is not None:
        raise AccessDenied("Existing tenants can only be joined by invitation")
    user = auth_service.register(data.get("email"), data.get("password"))
    return (
        jsonify({
            "message": "Registration successful. Please check your email to verify your account.",
            "user": _user_view(user),
        }),
        201,
    )


@auth_bp.route("/verify-email", methods=["GET", "POST"])
def verify_email():
    token = request.args.get("token") or json_body().get("token")
    user, already_verified = auth_service.verify_email(token)
    message = "Email already verified" if already_verified else "Email verified successfully"
    return jsonify({"message": message, "user": _user_view(user)})


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    data = json_body()
    user = auth_service.authenticate(data.get("email"), data.get("password"))
    if user is None:
        return jsonify({"error": "Invalid credentials"}), 401

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    tenant = db.session.get(Tenant, user.tenant_id)
    log_action(Actor.from_user(user, tenant), "login", "user", user.id, "user logged in")
    db.session.commit()

    response = jsonify({"message": "Login successful", "user": _user_view(user)})
    if data.get("remember_me"):
        token = auth_service.issue_remember_me_token(user)
        response.set_cookie(
            REMEMBER_ME_COOKIE,
            token,
            max_age=REMEMBER_ME_MAX_AGE,
            httponly=True,
            samesite="Lax",
            secure=request.is_secure,
        )
    logger.info("User %s logged in", user.id)
    return response


@auth_bp.route("/logout", methods=["POST"])
def logout():
    user = get_current_user()
    if user:
        user.remember_me_token = None
        log_action(current_actor(), "logout", "user", user.id, "user logged out")
        db.session.commit()
    session.clear()
    g.current_user = None
    response = jsonify({"message": "Logged out"})
    response.delete_cookie(REMEMBER_ME_COOKIE)
    return response


@auth_bp.route("/user", methods=["GET"])
@login_required
def current_user():
    return jsonify(_user_view(get_current_user()))

"""Application factory and entry point for the Flask application."""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from flask_wtf.csrf import CSRFError
from sqlalchemy import event

from commands import register_commands
from config import enable_sqlite_fks, load_config
from errors import AppError
from extensions import csrf, db, limiter
from models import Tenant, User
from routes import register_blueprints
from routes.auth import REMEMBER_ME_COOKIE
from services.auth import ensure_admin_user, user_for_remember_me_token
from services.calculator import register_calculation_guards
from services.reference import seed_reference_data

load_dotenv()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Logo uploads are capped at 5 MB; leave room for the multipart envelope.
MAX_CONTENT_LENGTH = 6 * 1024 * 1024


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(overrides: Optional[dict] = None):
    """Create and configure the Flask application.

    *overrides* is applied to ``app.config`` before the extensions are
    initialised (tests use it to switch off CSRF and rate limiting).
    """
    app_cfg, email_cfg, db_uri = load_config()

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.secret_key = app_cfg.secret_key
    app.config["APP_CONFIG"] = app_cfg
    app.config["EMAIL_CONFIG"] = email_cfg
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH

    # Session security
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = (
        os.environ.get("FLASK_ENV", "") != "development"
    )
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)

    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    csrf.init_app(app)
    limiter.init_app(app)
    db.init_app(app)

    # SQLite foreign key enforcement
    if "sqlite" in db_uri:
        with app.app_context():
            event.listen(db.engine, "connect", enable_sqlite_fks)

    with app.app_context():
        db.create_all()
        seed_reference_data()
        ensure_admin_user()

    register_calculation_guards(app)
    register_blueprints(app)
    register_commands(app)

    # ------------------------------------------------------------------
    # Request hooks
    # ------------------------------------------------------------------

    @app.before_request
    def load_current_user_and_tenant():
        """Set ``g.current_user`` and ``g.current_tenant`` from the session."""
        g.current_user = None
        g.current_tenant = None

        user = None
        user_id = session.get("user_id")
        if user_id:
            user = db.session.get(User, user_id)
        elif request.cookies.get(REMEMBER_ME_COOKIE):
            user = user_for_remember_me_token(request.cookies.get(REMEMBER_ME_COOKIE))
            if user:
                session["user_id"] = user.id
                session.permanent = True
                logger.info("User %s restored from remember-me cookie", user.id)

        if user is None:
            if user_id:
                session.clear()
            return
        if not user.is_active:
            logger.warning("Inactive user %s dropped from session", user.id)
            session.clear()
            return
        g.current_user = user
        g.current_tenant = db.session.get(Tenant, user.tenant_id)

    # ------------------------------------------------------------------
    # Security headers
    # ------------------------------------------------------------------

    @app.after_request
    def set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "0"
        response.headers["Referrer-Policy"] = (
            "strict-origin-when-cross-origin"
        )
        response.headers["Permissions-Policy"] = (
            "geolocation=(), camera=(), microphone=()"
        )
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; img-src 'self'; frame-ancestors 'none'"
        )
        if os.environ.get("FLASK_ENV") == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # ------------------------------------------------------------------
    # Error handlers
    # ------------------------------------------------------------------

    @app.errorhandler(AppError)
    def app_error(error):
        if error.status_code >= 500:
            logger.error("%s: %s", type(error).__name__, error.message)
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        return jsonify({"error": error.description}), 400

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(413)
    def too_large(_error):
        return jsonify({"error": "Uploaded file is too large"}), 413

    @app.errorhandler(429)
    def ratelimit_handler(_error):
        return jsonify({"error": "Too many attempts. Please try again later."}), 429

    @app.errorhandler(500)
    def server_error(_error):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    return app


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "false").lower() in (
        "true",
        "1",
        "yes",
    )
    host = os.environ.get("FLASK_HOST", "127.0.0.1")
    port = int(os.environ.get("FLASK_PORT", 5000))
    logger.info("Starting application on %s:%s (debug=%s)", host, port, debug_mode)
    app.run(host=host, port=port, debug=debug_mode)

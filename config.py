"""Configuration loading: YAML file + environment-variable overrides."""

from __future__ import annotations

import logging
import os
import secrets

import yaml

from config_models import AppConfig, EmailConfig

logger = logging.getLogger(__name__)


def _env_bool(name: str, fallback) -> bool:
    return os.environ.get(name, str(fallback)).lower() in ("true", "1", "yes")


def load_config():
    """Load configuration from *config.yaml* with env-var overrides.

    Environment variables take precedence over config.yaml values.
    Returns (AppConfig, EmailConfig, database_uri).
    """
    config_path = os.environ.get("CONFIG_PATH", "config.yaml")
    raw: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    app_cfg = raw.get("app", {})
    email_cfg = raw.get("email", {})
    invoice_cfg = raw.get("invoices", {})
    db_cfg = raw.get("database", {})

    secret_key = os.environ.get("APP_SECRET_KEY", app_cfg.get("secret_key", ""))
    if not secret_key or secret_key == "change-me":
        secret_key = secrets.token_hex(32)
        logger.warning(
            "Using auto-generated secret key. Set APP_SECRET_KEY env var "
            "or app.secret_key in config.yaml for stable sessions across restarts."
        )

    return (
        AppConfig(
            name=app_cfg.get("name", "Faturimi"),
            secret_key=secret_key,
            base_currency=os.environ.get(
                "APP_CURRENCY", app_cfg.get("base_currency", "EUR")
            ),
            frontend_url=os.environ.get(
                "FRONTEND_URL", app_cfg.get("frontend_url", "http://localhost:3000")
            ),
            upload_dir=os.environ.get(
                "UPLOAD_DIR", app_cfg.get("upload_dir", "uploads")
            ),
            invoice_number_max_attempts=int(
                os.environ.get(
                    "INVOICE_NUMBER_MAX_ATTEMPTS",
                    invoice_cfg.get("number_max_attempts", 5),
                )
            ),
        ),
        EmailConfig(
            enabled=_env_bool("EMAIL_ENABLED", email_cfg.get("enabled", False)),
            smtp_host=os.environ.get("SMTP_HOST", email_cfg.get("smtp_host", "")),
            smtp_port=int(os.environ.get("SMTP_PORT", email_cfg.get("smtp_port", 587))),
            smtp_user=os.environ.get("SMTP_USER", email_cfg.get("smtp_user", "")),
            smtp_password=os.environ.get("SMTP_PASSWORD", email_cfg.get("smtp_password", "")),
            sender=os.environ.get("EMAIL_SENDER", email_cfg.get("sender", "")),
            sender_name=os.environ.get(
                "EMAIL_SENDER_NAME", email_cfg.get("sender_name", "Faturimi")
            ),
        ),
        os.environ.get("DATABASE_URI", db_cfg.get("uri", "sqlite:///invoicing.db")),
    )


def enable_sqlite_fks(dbapi_conn, _connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

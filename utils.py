"""Utility / helper functions used across the application."""

from __future__ import annotations

import datetime
import logging
import secrets
from datetime import timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import request

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Datetime helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime.datetime:
    """Return current UTC datetime.  Used as SQLAlchemy column default."""
    return datetime.datetime.now(timezone.utc)


def parse_date(raw) -> Optional[datetime.date]:
    """Parse ``YYYY-MM-DD`` (a trailing time part is ignored)."""
    if not raw:
        return None
    if isinstance(raw, datetime.date):
        return raw
    try:
        return datetime.datetime.strptime(str(raw).strip()[:10], "%Y-%m-%d").date()
    except (ValueError, TypeError):
        logger.warning("Could not parse date: %r", raw)
        return None


def format_date(value: Optional[datetime.date]) -> Optional[str]:
    return value.strftime("%Y-%m-%d") if value else None


def format_datetime(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Safe type conversions
# ---------------------------------------------------------------------------

def safe_int(value, default: int = 0) -> int:
    """Safely convert *value* to ``int``, returning *default* on failure."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning("Could not convert %r to int, using default %s", value, default)
        return default


def is_numeric(value) -> bool:
    """True for ints, floats, decimals and numeric strings (not booleans)."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return Decimal(str(value).strip()).is_finite()
    except (InvalidOperation, ValueError, TypeError):
        return False


def new_token(nbytes: int = 32) -> str:
    """Random hex token for e-mail verification, invitations and remember-me."""
    return secrets.token_hex(nbytes)


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def json_body() -> dict:
    """Return the request's JSON object, or an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def request_data() -> dict:
    """JSON body, or form fields for multipart requests (logo uploads)."""
    if request.mimetype == "multipart/form-data":
        return request.form.to_dict()
    return json_body()

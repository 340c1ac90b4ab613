"""Invoice numbering.

Numbers have the form ``INV-{issuer_id}-{n}`` and are unique per issuing
business.  The next number is derived from the issuer's most recently
created invoice (highest id).  When that invoice does not carry a number in
this format, numbering restarts at 1.

Allocation is serialised per issuer inside the process and, where the
database supports it, by a row lock on the issuer's latest invoice.  The
``(issuer_id, invoice_number)`` unique constraint catches anything that
slips through; ``allocate`` then rolls back and retries with a higher
candidate.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from errors import Conflict
from extensions import db
from models import Invoice

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5

_locks_guard = threading.Lock()
_issuer_locks: dict[int, threading.Lock] = {}


def _issuer_lock(issuer_id: int) -> threading.Lock:
    with _locks_guard:
        lock = _issuer_locks.get(issuer_id)
        if lock is None:
            lock = _issuer_locks[issuer_id] = threading.Lock()
        return lock


def format_invoice_number(issuer_id: int, sequence: int) -> str:
    return f"INV-{issuer_id}-{sequence}"


def parse_sequence(issuer_id: int, invoice_number: Optional[str]) -> Optional[int]:
    """Return the counter of *invoice_number* or None if it is not ours."""
    if not invoice_number:
        return None
    match = re.match(rf"^INV-{issuer_id}-(\d+)$", invoice_number)
    return int(match.group(1)) if match else None


def next_invoice_number(issuer_id: int) -> str:
    """Return the next number for *issuer_id* without reserving it."""
    last = (
        Invoice.query.filter_by(issuer_id=issuer_id)
        .order_by(Invoice.id.desc())
        .with_for_update()
        .first()
    )
    sequence = parse_sequence(issuer_id, last.invoice_number) if last else None
    return format_invoice_number(issuer_id, (sequence or 0) + 1)


def _number_taken(issuer_id: int, invoice_number: str) -> bool:
    return (
        db.session.query(Invoice.id)
        .filter_by(issuer_id=issuer_id, invoice_number=invoice_number)
        .first()
        is not None
    )


def allocate(
    issuer_id: int,
    persist: Callable[[str], Invoice],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Invoice:
    """Persist a new invoice under a freshly allocated number.

    *persist* receives the candidate number, adds the invoice (and anything
    belonging to it) to the session and flushes.  It must build everything
    from scratch on each call because a collision rolls the session back.

    Raises ``Conflict`` once *max_attempts* candidates have collided.
    """
    max_attempts = max(1, int(max_attempts))
    with _issuer_lock(issuer_id):
        previous: Optional[int] = None
        for attempt in range(1, max_attempts + 1):
            candidate = parse_sequence(issuer_id, next_invoice_number(issuer_id))
            if previous is not None and candidate <= previous:
                candidate = previous + 1
            number = format_invoice_number(issuer_id, candidate)
            try:
                invoice = persist(number)
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                if not _number_taken(issuer_id, number):
                    raise
                logger.warning(
                    "Invoice number %s already taken (attempt %d/%d)",
                    number, attempt, max_attempts,
                )
                previous = candidate
                continue
            logger.info("Allocated invoice number %s", number)
            return invoice
    raise Conflict(
        f"Could not allocate a unique invoice number after {max_attempts} attempts"
    )

"""Fixed-point money arithmetic.

All operations work on ``Decimal`` and truncate toward zero to the target
scale.  Money amounts use two decimal places; rate division keeps four so
that ``subtotal * (rate / 100)`` is cut only once more at the end.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext

from errors import ValidationError

MONEY_SCALE = 2
RATE_SCALE = 4

ZERO = Decimal("0.00")
# Largest amount a NUMERIC(10, 2) column holds.
MAX_AMOUNT = Decimal("99999999.99")


def to_decimal(value, field: str | None = None) -> Decimal:
    """Convert *value* to ``Decimal``; floats go through ``str`` first."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{value!r} is not a number", field=field)
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"{value!r} is not a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{value!r} is not a number", field=field)
    return result


def truncate(value, scale: int = MONEY_SCALE, field: str | None = None) -> Decimal:
    """Cut *value* to *scale* places without rounding."""
    exponent = Decimal(1).scaleb(-scale)
    with localcontext() as ctx:
        ctx.prec = 50
        try:
            return to_decimal(value, field).quantize(exponent, rounding=ROUND_DOWN)
        except InvalidOperation:
            raise ValidationError(f"{value!r} is out of range", field=field)


def bounded(value, field: str | None = None) -> Decimal:
    """Truncate a stored amount and reject it when the column cannot hold it."""
    amount = truncate(value, MONEY_SCALE, field)
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(
            f"Value must not exceed {MAX_AMOUNT}", field=field
        )
    return amount


def add(a, b, scale: int = MONEY_SCALE) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 50
        return truncate(to_decimal(a) + to_decimal(b), scale)


def multiply(a, b, scale: int = MONEY_SCALE) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 50
        return truncate(to_decimal(a) * to_decimal(b), scale)


def divide(a, b, scale: int = RATE_SCALE) -> Decimal:
    divisor = to_decimal(b)
    if divisor == 0:
        raise ValidationError("Division by zero")
    with localcontext() as ctx:
        ctx.prec = 50
        return truncate(to_decimal(a) / divisor, scale)


def format_money(value) -> str:
    """Render *value* as a two-place decimal string, e.g. ``"19.00"``."""
    if value is None:
        value = ZERO
    return str(truncate(value, MONEY_SCALE))

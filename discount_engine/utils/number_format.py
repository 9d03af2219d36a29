"""Number parsing utilities for monetary amounts and quantities."""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal('0.01')
ZERO = Decimal('0')

HHMM_PATTERN = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")


def to_decimal(value) -> Decimal:
    """
    Coerce an input amount to a finite, non-negative Decimal.

    Used for every monetary or quantity input reaching the calculator:
    - None, empty strings and unparseable values become 0
    - NaN and infinities become 0
    - Negative values become 0
    """
    if value is None or value == '':
        return ZERO

    if isinstance(value, Decimal):
        num = value
    else:
        try:
            num = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            return ZERO

    if not num.is_finite():
        return ZERO
    if num < 0:
        return ZERO
    return num


def to_money(value) -> Decimal:
    """Coerce to a non-negative Decimal rounded to cents (ROUND_HALF_UP)."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_decimal_field(value, field_name: str, allow_none: bool = True):
    """
    Parse a decimal field from a rule payload.

    Unlike to_decimal, this is strict: it is used when rules are written,
    where garbage must be rejected rather than silently zeroed.

    Raises:
        ValueError: if the value is not a finite, non-negative number.
    """
    if value is None or value == '':
        if allow_none:
            return None
        raise ValueError(f'{field_name} is required')

    try:
        num = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f'{field_name} must be a number')

    if not num.is_finite():
        raise ValueError(f'{field_name} must be a number')
    if num < 0:
        raise ValueError(f'{field_name} cannot be negative')

    return num


def parse_hhmm(value: str, field_name: str) -> str:
    """
    Validate a zero-padded "HH:MM" time-of-day string.

    Time windows are compared lexicographically, so the padding matters.

    Raises:
        ValueError: if the value is not a valid "HH:MM" string.
    """
    cleaned = (value or '').strip()
    if not HHMM_PATTERN.match(cleaned):
        raise ValueError(f'{field_name} must use the HH:MM format')
    return cleaned

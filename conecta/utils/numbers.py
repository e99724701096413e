from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def to_numeric_or_none(value: Any) -> Optional[Decimal]:
    """Normalize form input for money and rate fields.

    Empty strings, ``None``, booleans and anything that does not parse as a
    finite number become ``None``; never ``0`` and never NaN.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if value.startswith("$"):
            value = value[1:]
        if not value:
            return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value

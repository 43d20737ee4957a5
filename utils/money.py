import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

_STRIP = re.compile(r"[$,\s]")


def parse_money(value: Any) -> Optional[Decimal]:
    """
    Parse user-entered money. "$1,250.00" -> Decimal("1250.00").
    Empty, non-numeric, or non-finite input yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        parsed = Decimal(str(value))
        return parsed if parsed.is_finite() else None
    normalized = _STRIP.sub("", str(value)).strip()
    if not normalized:
        return None
    try:
        parsed = Decimal(normalized)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def require_money(value: Any) -> Optional[Decimal]:
    """
    Strict variant for amounts a caller submits. Blank means "no amount";
    anything else that does not parse raises ``ValueError``.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_money(value)
    if parsed is None:
        raise ValueError(f"invalid money amount: {value!r}")
    return parsed

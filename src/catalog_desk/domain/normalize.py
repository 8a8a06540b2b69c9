import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..logging import get_logger

_LOG = get_logger("normalize")


def now_iso() -> str:
    return datetime.now().isoformat(timespec="milliseconds")


def cell_text(value: Any) -> str:
    """Render a spreadsheet or form value as the string stored on records.

    - None becomes "".
    - Integral floats lose their ".0" (Excel hands back 120.0 for "120").
    - Everything else is str() and stripped.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def to_number(value: Any) -> float:
    """Lenient numeric parse used by reports; unparsable values count as 0."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    s = str(value).strip().replace(",", "")
    if not s:
        return 0.0
    m = re.search(r"-?\d+(?:\.\d+)?", s)
    if not m:
        return 0.0
    try:
        return float(Decimal(m.group(0)))
    except InvalidOperation:
        return 0.0


def parse_quantity(value: Any, default: int = 1) -> int:
    """Return a positive integer quantity; blank input yields the default."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        qty = int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        raise ValueError(f"quantity must be a positive integer, got {value!r}")
    if qty <= 0:
        raise ValueError(f"quantity must be a positive integer, got {value!r}")
    return qty


def timestamp_day(timestamp: Optional[str]) -> Optional[date]:
    """Return the calendar day of an ISO timestamp, or None if unparsable."""
    if not timestamp:
        return None
    try:
        dt = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
    except ValueError:
        _LOG.debug(f"Unparsable timestamp: {timestamp!r}")
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt.date()


def parse_day(value: str | date | None) -> date:
    """Accept a date, an ISO YYYY-MM-DD string, or None for today."""
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def size_sort_key(size: str):
    """Numeric sizes first in numeric order, then the rest lexically."""
    try:
        return (0, float(size), "")
    except (TypeError, ValueError):
        return (1, 0.0, str(size))

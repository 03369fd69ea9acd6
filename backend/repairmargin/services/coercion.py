"""Tolerant numeric/locale coercion for values read from valuation documents.

Everything here is best-effort: a value that cannot be read degrades to ``0``
(or ``None`` for dates) instead of raising, because a human verification step
follows extraction. The ``coerce_*`` helpers record every degraded field in a
warning list so the reviewer can see what was defaulted.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

MAX_MONEY = 999_999.99
MAX_HOURS = 9_999.99

_STRIP_RE = re.compile(r"[^\d,.\-]")
_TWO_DECIMALS = Decimal("0.01")

# Current plates: 4 digits + 3 consonants (no vowels, Ñ or Q).
_PLATE_CURRENT_RE = re.compile(r"^\d{4}[BCDFGHJKLMNPRSTVWXYZ]{3}$")
# Provincial plates: 1-2 letter province, 4 digits, 1-2 letters.
_PLATE_PROVINCIAL_RE = re.compile(r"^[A-Z]{1,2}\d{4}[A-Z]{1,2}$")

_DATE_FORMATS = (
    re.compile(r"^(?P<d>\d{1,2})[/.\-](?P<m>\d{1,2})[/.\-](?P<y>\d{4})$"),
    re.compile(r"^(?P<y>\d{4})-(?P<m>\d{1,2})-(?P<d>\d{1,2})$"),
)


def round_money(value: float | Decimal) -> float:
    """Round to cents with ROUND_HALF_UP (``2.675`` → ``2.68``)."""
    try:
        dec = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return 0.0
    return float(dec.quantize(_TWO_DECIMALS, rounding=ROUND_HALF_UP))


def _normalize_separators(cleaned: str) -> str:
    """Turn ``1.234,56`` / ``1,234.56`` / ``12,5`` into a dot-decimal string."""
    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma >= 0 and last_dot >= 0:
        if last_comma > last_dot:
            return cleaned.replace(".", "").replace(",", ".")
        return cleaned.replace(",", "")
    if last_comma >= 0:
        # Several commas can only be thousands separators ("1,234,567").
        if cleaned.count(",") > 1:
            return cleaned.replace(",", "")
        return cleaned.replace(",", ".")
    if cleaned.count(".") > 1:
        head, _, tail = cleaned.rpartition(".")
        if len(tail) == 3:
            return cleaned.replace(".", "")
        return head.replace(".", "") + "." + tail
    return cleaned


def _to_decimal(raw: Any, *, decimal_comma: bool = False) -> Decimal | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float, Decimal)):
        try:
            dec = Decimal(str(raw))
        except InvalidOperation:
            return None
        return dec if dec.is_finite() else None
    cleaned = _STRIP_RE.sub("", str(raw))
    if not cleaned or cleaned in {"-", ".", ","}:
        return None
    if decimal_comma:
        # Spanish notation: every dot groups thousands, the comma is the decimal.
        normalized = cleaned.replace(".", "").replace(",", ".", 1)
    else:
        normalized = _normalize_separators(cleaned)
    try:
        dec = Decimal(normalized)
    except InvalidOperation:
        return None
    return dec if dec.is_finite() else None


def parse_decimal(raw: Any, *, decimal_comma: bool = False) -> Decimal | None:
    """Read a number without defaulting; ``None`` when it cannot be read.

    With ``decimal_comma`` a string is read as Spanish notation, so ``"1.500"``
    is fifteen hundred rather than one and a half.
    """
    return _to_decimal(raw, decimal_comma=decimal_comma)


def parse_amount(raw: Any) -> float:
    """Parse a currency amount; negative or unreadable input yields ``0.0``."""
    dec = _to_decimal(raw)
    if dec is None or dec < 0:
        return 0.0
    return float(dec)


def parse_percentage(raw: Any) -> float:
    """Parse a percentage such as ``"21%"`` or ``"10,5"``; values above 100 are invalid."""
    value = parse_amount(raw)
    if value > 100:
        return 0.0
    return value


def coerce_amount(raw: Any, field: str, warnings: list[str]) -> float:
    dec = _to_decimal(raw)
    if dec is None:
        if raw not in (None, ""):
            warnings.append(f"{field}: unreadable value {raw!r}, defaulted to 0")
        else:
            warnings.append(f"{field}: missing, defaulted to 0")
        return 0.0
    if dec < 0:
        warnings.append(f"{field}: negative value {raw!r} rejected, defaulted to 0")
        return 0.0
    value = round_money(dec)
    if value > MAX_MONEY:
        warnings.append(f"{field}: value {value} exceeds {MAX_MONEY}")
    return value


def coerce_quantity(raw: Any, field: str, warnings: list[str]) -> float:
    """Like :func:`coerce_amount` but bounded by :data:`MAX_HOURS`."""
    dec = _to_decimal(raw)
    if dec is None or dec < 0:
        if raw not in (None, ""):
            warnings.append(f"{field}: invalid quantity {raw!r}, defaulted to 0")
        else:
            warnings.append(f"{field}: missing, defaulted to 0")
        return 0.0
    return round_money(dec)


def coerce_count(raw: Any, field: str, warnings: list[str]) -> int:
    dec = _to_decimal(raw)
    if dec is None or dec < 0:
        warnings.append(f"{field}: missing or invalid count, defaulted to 0")
        return 0
    return int(dec.to_integral_value(rounding=ROUND_HALF_UP))


def coerce_percentage(raw: Any, field: str, warnings: list[str]) -> float:
    dec = _to_decimal(raw)
    if dec is None or dec < 0:
        warnings.append(f"{field}: missing or invalid percentage, defaulted to 0")
        return 0.0
    if dec > 100:
        warnings.append(f"{field}: percentage {raw!r} above 100 rejected, defaulted to 0")
        return 0.0
    return round_money(dec)


def clean_text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def parse_valuation_date(raw: Any) -> str | None:
    """Return an ISO ``YYYY-MM-DD`` string for the supported formats, else ``None``."""
    text = clean_text(raw)
    if not text:
        return None
    for pattern in _DATE_FORMATS:
        match = pattern.match(text)
        if not match:
            continue
        try:
            parsed = date(int(match["y"]), int(match["m"]), int(match["d"]))
        except ValueError:
            return None
        return parsed.isoformat()
    return None


def normalize_plate(raw: Any) -> str:
    return re.sub(r"[\s\-]", "", clean_text(raw)).upper()


def is_valid_plate(raw: Any) -> bool:
    plate = normalize_plate(raw)
    if not plate:
        return False
    return bool(_PLATE_CURRENT_RE.match(plate) or _PLATE_PROVINCIAL_RE.match(plate))


def _decimal_places(value: float | Decimal | str) -> int:
    exponent = Decimal(str(value)).normalize().as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def check_money_bounds(value: float, field: str) -> float:
    """Raise ``ValueError`` unless ``0 <= value <= MAX_MONEY`` with at most two decimals."""
    if value < 0:
        raise ValueError(f"{field} cannot be negative")
    if value > MAX_MONEY:
        raise ValueError(f"{field} exceeds the maximum of {MAX_MONEY}")
    if _decimal_places(value) > 2:
        raise ValueError(f"{field} cannot have more than 2 decimals")
    return value


def check_hours_bounds(value: float, field: str) -> float:
    if value < 0:
        raise ValueError(f"{field} cannot be negative")
    if value > MAX_HOURS:
        raise ValueError(f"{field} exceeds the maximum of {MAX_HOURS} hours")
    if _decimal_places(value) > 2:
        raise ValueError(f"{field} cannot have more than 2 decimals")
    return value

"""Billing-time unit detection and conversion to clock hours.

Valuation systems quote labor either in "UT" (unidades de tiempo, a billing
unit) or in literal hours. ``UT_PER_HOUR`` is the single conversion ratio used
across the codebase: 10 UT = 1 hour.

TODO: confirm the ratio with the valuation domain owner. An older call site
documented a x0.6 multiplier for the same conversion; only the /10 ratio is
applied anywhere in this service.
"""

from __future__ import annotations

import logging
import re
from enum import StrEnum
from typing import Any

from repairmargin.services.coercion import round_money

logger = logging.getLogger(__name__)

UT_PER_HOUR = 10

_UT_MARKERS = re.compile(r"(?<![a-z])ut(?![a-z])|unidades de tiempo")
_HOUR_MARKERS = re.compile(r"hora|(?<![a-z])hr(?![a-z])|(?<![a-z])h\.")

_FAMILY_ALIASES = {
    "UT": "UT",
    "HORAS": "HOURS",
    "HOURS": "HOURS",
    "MIXTO": "MIXED",
    "MIXED": "MIXED",
}


class UnitFamily(StrEnum):
    UT = "UT"
    HOURS = "HOURS"
    MIXED = "MIXED"


def coerce_unit_family(raw: Any) -> UnitFamily | None:
    """Map a model-reported family (``"UT"``, ``"HORAS"``, ``"MIXTO"``...) to :class:`UnitFamily`."""
    if not isinstance(raw, str):
        return None
    alias = _FAMILY_ALIASES.get(raw.strip().upper())
    return UnitFamily(alias) if alias else None


def detect_unit_family(document_signals: str | list[str] | None, *, reported: Any = None) -> UnitFamily:
    """Classify the time-unit convention used by a document.

    ``reported`` is the family the model claimed, and wins when recognizable.
    Otherwise case-insensitive markers in ``document_signals`` decide; with no
    marker at all the conservative default is UT.
    """
    explicit = coerce_unit_family(reported)
    if explicit is not None:
        return explicit

    if isinstance(document_signals, list):
        text = " ".join(str(item) for item in document_signals)
    else:
        text = document_signals or ""
    text = text.lower()

    has_ut = bool(_UT_MARKERS.search(text))
    has_hours = bool(_HOUR_MARKERS.search(text))

    if has_ut and has_hours:
        return UnitFamily.MIXED
    if has_hours:
        return UnitFamily.HOURS
    return UnitFamily.UT


def to_hours(raw_quantity: float, family: Any, warnings: list[str] | None = None) -> float:
    """Convert a labor quantity to hours. Never raises."""
    try:
        quantity = float(raw_quantity or 0)
    except (TypeError, ValueError):
        quantity = 0.0
    if quantity <= 0:
        return 0.0

    resolved = family if isinstance(family, UnitFamily) else coerce_unit_family(family)

    if resolved == UnitFamily.HOURS:
        return quantity

    if resolved == UnitFamily.MIXED:
        _warn(
            warnings,
            f"Mixed time units detected: {quantity} assumed to be UT and converted at {UT_PER_HOUR} UT/hour",
        )
    elif resolved is None:
        _warn(
            warnings,
            f"Unrecognized time unit {family!r}: {quantity} assumed to be UT and converted at {UT_PER_HOUR} UT/hour",
        )

    return round_money(quantity / UT_PER_HOUR)


def _warn(warnings: list[str] | None, message: str) -> None:
    logger.warning("Time unit conversion: %s", message)
    if warnings is not None and message not in warnings:
        warnings.append(message)

"""Isolate the first JSON object in free-form model output."""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)


def extract_json(text: str) -> dict | None:
    """Return the first brace-balanced JSON object found in *text*, or ``None``.

    Markdown fences and surrounding prose are tolerated. Braces inside JSON
    strings, escaped quotes included, do not affect the balance. Only the
    first balanced ``{...}`` block is tried: if it is not valid JSON the
    answer is rejected rather than searched further.
    """
    if not text or not text.strip():
        return None

    start = text.find("{")
    if start < 0:
        return None

    block = _balanced_block(text, start)
    if block is None:
        logger.debug("Unbalanced JSON object in model output")
        return None

    try:
        parsed = json.loads(block)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.debug("First JSON block is invalid: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


def _balanced_block(text: str, start: int) -> str | None:
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None

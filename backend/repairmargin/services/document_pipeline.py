"""Primary text-extraction path: an external workflow webhook.

The webhook answers with flat, Spanish-labelled fields (``matricula``,
``repuestos_total``, ``mo_chapa_ut``...) as one object or a one-element list.
Amounts come in Spanish notation, where a dot always groups thousands. The
answer carries no totals, so subtotal, tax and total are derived from the
category amounts here, each derivation noted as a warning, and the result
goes through the same coercion boundary as the model-based path.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from repairmargin.core.config import get_settings
from repairmargin.services.ai.valuation_extract.contracts import ExtractedRecord
from repairmargin.services.ai.valuation_extract.service import record_from_payload
from repairmargin.services.coercion import parse_amount, parse_decimal, round_money
from repairmargin.services.errors import ModelError, ParsingError

logger = logging.getLogger(__name__)

MODEL_VERSION = "webhook"
DEFAULT_TAX_RATE = 21.0

_VEHICLE_FIELDS = {
    "matricula": ("matricula", "license_plate"),
    "bastidor": ("bastidor", "vin"),
    "fabricante": ("fabricante", "marca", "manufacturer"),
    "modelo": ("modelo", "model"),
    "referencia": ("referencia", "referencia_interna", "internal_reference"),
    "sistema": ("sistema", "system"),
    "precio_por_hora": ("precio_hora", "precio_por_hora", "hourly_price"),
    "fecha_valoracion": ("fecha_valoracion", "valuation_date"),
}

_CATEGORY_FIELDS = {
    "total_repuestos": ("repuestos_total", "total_repuestos"),
    "mo_chapa_eur": ("mo_chapa_eur", "mo_carroceria_eur"),
    "mo_pintura_eur": ("mo_pintura_eur",),
    "materiales_pintura_eur": ("mat_pintura_eur", "material_pintura", "materiales_pintura_eur"),
}

_PASSTHROUGH_FIELDS = {
    "mo_chapa_ut": ("mo_chapa_ut", "mo_carroceria_ut"),
    "mo_pintura_ut": ("mo_pintura_ut",),
    "cantidad_materiales_repuestos": ("cantidad_materiales_repuestos", "cantidad_repuestos"),
    "unidades_detectadas": ("unidades_detectadas",),
}

_QUANTITY_FIELDS = ("mo_chapa_ut", "mo_pintura_ut", "cantidad_materiales_repuestos")


def is_configured() -> bool:
    return bool(get_settings().text_extraction_webhook_url)


def _first(flat: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = flat.get(key)
        if value not in (None, ""):
            return value
    return None


def _spanish_number(value: Any) -> Any:
    """Read Spanish notation (``1.500`` / ``1.782,92``); unreadable values pass through."""
    dec = parse_decimal(value, decimal_comma=True)
    return value if dec is None else float(dec)


def _tax_rate(raw_rate: Any, warnings: list[str]) -> float:
    if raw_rate is None:
        warnings.append(f"tax_rate: not reported, defaulted to {DEFAULT_TAX_RATE:g}%")
        return DEFAULT_TAX_RATE
    dec = parse_decimal(raw_rate, decimal_comma=True)
    if dec is None or dec < 0 or dec > 100:
        warnings.append(
            f"tax_rate: unreadable or out of range value {raw_rate!r}, "
            f"defaulted to {DEFAULT_TAX_RATE:g}%"
        )
        return DEFAULT_TAX_RATE
    return float(dec)


def flat_to_payload(flat: dict[str, Any]) -> dict[str, Any]:
    """Reshape a flat webhook answer into the sectioned extraction payload.

    Every value filled in here rather than read from the answer is listed in
    ``payload["warnings"]``.
    """
    warnings: list[str] = []
    vehicle = {target: _first(flat, keys) for target, keys in _VEHICLE_FIELDS.items()}
    vehicle["precio_por_hora"] = _spanish_number(vehicle["precio_por_hora"])

    financial: dict[str, Any] = {
        target: _spanish_number(_first(flat, keys)) for target, keys in _CATEGORY_FIELDS.items()
    }
    financial.update({target: _first(flat, keys) for target, keys in _PASSTHROUGH_FIELDS.items()})
    for key in _QUANTITY_FIELDS:
        financial[key] = _spanish_number(financial[key])

    tax_rate = _tax_rate(_first(flat, ("iva", "porcentaje_iva")), warnings)

    subtotal = parse_amount(_spanish_number(_first(flat, ("subtotal_sin_iva", "subtotal"))))
    if subtotal <= 0:
        for key in _CATEGORY_FIELDS:
            subtotal = round_money(subtotal + parse_amount(financial[key]))
        warnings.append("subtotal: not reported, derived from category lines")
    tax_amount = round_money(subtotal * tax_rate / 100)
    warnings.append("tax_amount/total_with_tax: not reported, derived from subtotal and tax_rate")

    financial.update(
        {
            "subtotal_sin_iva": subtotal,
            "porcentaje_iva": tax_rate,
            "monto_iva": tax_amount,
            "total_con_iva": round_money(subtotal + tax_amount),
        }
    )
    logger.warning("Webhook answer completed locally: %s", "; ".join(warnings))

    reported = flat.get("warnings")
    if isinstance(reported, list):
        warnings = [*reported, *warnings]
    return {"vehicleData": vehicle, "insuranceAmounts": financial, "warnings": warnings}


def _unwrap(body: Any) -> dict[str, Any]:
    if isinstance(body, list):
        if not body:
            raise ParsingError("Webhook returned an empty list")
        body = body[0]
    if not isinstance(body, dict):
        raise ParsingError("Webhook response is not a JSON object")
    return body


async def extract_via_webhook(
    document_text: str,
    *,
    analysis_id: str,
    document_name: str | None = None,
) -> ExtractedRecord:
    """Run the primary extraction path.

    Raises ``ModelError`` when the webhook is unreachable or answers with an
    error status, ``ParsingError`` when the body is unusable.
    """
    settings = get_settings()
    if not settings.text_extraction_webhook_url:
        raise ModelError("Text extraction webhook is not configured")

    try:
        async with httpx.AsyncClient(timeout=settings.text_extraction_timeout_seconds) as client:
            resp = await client.post(
                settings.text_extraction_webhook_url,
                json={
                    "analysis_id": analysis_id,
                    "document_name": document_name or "",
                    "document_text": document_text,
                },
            )
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Text extraction webhook failed for analysis %s: %s", analysis_id, exc)
        raise ModelError(f"Text extraction webhook failed: {exc}") from exc

    try:
        body = resp.json()
    except ValueError as exc:
        raise ParsingError("Webhook response is not valid JSON") from exc

    flat = _unwrap(body)
    logger.info("Webhook extraction for analysis %s returned %d fields", analysis_id, len(flat))
    return record_from_payload(
        flat_to_payload(flat),
        document_text=document_text,
        model_version=MODEL_VERSION,
    )

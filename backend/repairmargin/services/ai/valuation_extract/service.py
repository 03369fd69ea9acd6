"""Valuation extraction: document text to a normalized, reconciled record.

The model output is untrusted: every scalar goes through the tolerant
coercion helpers, and anything that had to be defaulted or looks
inconsistent is reported as a warning instead of an error. Only three
situations abort an extraction: empty input (``ValidationError``), a failed
provider call (``ModelError``) and an answer without usable JSON
(``ParsingError``).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from repairmargin.core.config import get_settings
from repairmargin.schemas.analysis import FinancialData, VehicleData
from repairmargin.services.ai.common.audit import log_ai_run
from repairmargin.services.ai.common.json_tools import extract_json
from repairmargin.services.ai.common.router import resolve
from repairmargin.services.ai.valuation_extract.contracts import (
    VALUATION_EXTRACT_PROMPT,
    VALUATION_SYSTEM_PROMPT,
    ExtractedRecord,
)
from repairmargin.services.coercion import (
    clean_text,
    coerce_amount,
    coerce_count,
    coerce_percentage,
    coerce_quantity,
    is_valid_plate,
    normalize_plate,
    parse_decimal,
    parse_valuation_date,
)
from repairmargin.services.errors import ModelError, ParsingError, ValidationError
from repairmargin.services.reconciliation import check_tax_totals
from repairmargin.services.time_units import detect_unit_family, to_hours

logger = logging.getLogger(__name__)

SCOPE = "valuation_extract"
DEFAULT_CONFIDENCE = 0.5

_VEHICLE_SECTIONS = ("vehicle", "vehicleData")
_FINANCIAL_SECTIONS = ("financial", "insuranceAmounts")

# English key first, then the Spanish labels older prompts and webhooks use.
_VEHICLE_KEYS: dict[str, tuple[str, ...]] = {
    "license_plate": ("license_plate", "matricula"),
    "vin": ("vin", "bastidor"),
    "manufacturer": ("manufacturer", "fabricante", "marca"),
    "model": ("model", "modelo"),
    "internal_reference": ("internal_reference", "referencia"),
    "valuation_system": ("valuation_system", "sistema", "system"),
    "hourly_price": ("hourly_price", "precio_por_hora"),
    "bodywork_hourly_price": ("bodywork_hourly_price", "precio_por_hora_chapa"),
    "paint_hourly_price": ("paint_hourly_price", "precio_por_hora_pintura"),
    "valuation_date": ("valuation_date", "fecha_valoracion"),
}

_FINANCIAL_KEYS: dict[str, tuple[str, ...]] = {
    "spare_parts_amount": ("spare_parts_amount", "total_repuestos"),
    "spare_parts_count": ("spare_parts_count", "cantidad_materiales_repuestos"),
    "bodywork_quantity": ("bodywork_quantity", "mo_chapa_ut"),
    "bodywork_amount": ("bodywork_amount", "mo_chapa_eur"),
    "paint_quantity": ("paint_quantity", "mo_pintura_ut"),
    "paint_amount": ("paint_amount", "mo_pintura_eur"),
    "paint_material_amount": ("paint_material_amount", "materiales_pintura_eur"),
    "subtotal": ("subtotal", "subtotal_sin_iva"),
    "tax_rate": ("tax_rate", "porcentaje_iva"),
    "tax_amount": ("tax_amount", "monto_iva"),
    "total_with_tax": ("total_with_tax", "total_con_iva"),
    "unit_family": ("unit_family", "unidades_detectadas"),
}


def _section(payload: Mapping[str, Any], names: tuple[str, ...]) -> dict[str, Any]:
    for name in names:
        value = payload.get(name)
        if value is None:
            continue
        if not isinstance(value, dict):
            raise ParsingError(f"Section {name!r} is not a JSON object")
        return value
    raise ParsingError(f"Missing section {names[0]!r} in model output")


def _pick(keys: tuple[str, ...], *sections: Mapping[str, Any]) -> Any:
    """First non-null value for any alias of a field, across *sections*."""
    for section in sections:
        for key in keys:
            if section.get(key) is not None:
                return section[key]
    return None


def _confidence(raw: Any) -> float:
    dec = parse_decimal(raw)
    if dec is None:
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, float(dec)))


def _vehicle_from(
    vehicle_raw: Mapping[str, Any],
    financial_raw: Mapping[str, Any],
    warnings: list[str],
) -> VehicleData:
    def pick(field: str) -> Any:
        return _pick(_VEHICLE_KEYS[field], vehicle_raw, financial_raw)

    plate = clean_text(pick("license_plate"))
    if not plate:
        warnings.append("license_plate: missing")
    elif is_valid_plate(plate):
        plate = normalize_plate(plate)
    else:
        warnings.append(f"license_plate: unrecognized plate {plate!r}")

    hourly_price = coerce_amount(pick("hourly_price"), "hourly_price", warnings)
    prices = {}
    for field in ("bodywork_hourly_price", "paint_hourly_price"):
        raw = pick(field)
        prices[field] = hourly_price if raw is None else coerce_amount(raw, field, warnings)
    if not hourly_price and prices["bodywork_hourly_price"]:
        hourly_price = prices["bodywork_hourly_price"]

    raw_date = clean_text(pick("valuation_date"))
    valuation_date = parse_valuation_date(raw_date)
    if raw_date and valuation_date is None:
        warnings.append(f"valuation_date: unrecognized date {raw_date!r}")

    return VehicleData(
        license_plate=plate,
        vin=clean_text(pick("vin")).upper(),
        manufacturer=clean_text(pick("manufacturer")),
        model=clean_text(pick("model")),
        internal_reference=clean_text(pick("internal_reference")),
        valuation_system=clean_text(pick("valuation_system")),
        hourly_price=hourly_price,
        bodywork_hourly_price=prices["bodywork_hourly_price"],
        paint_hourly_price=prices["paint_hourly_price"],
        valuation_date=valuation_date,
    )


def _financial_from(
    financial_raw: Mapping[str, Any],
    document_text: str,
    warnings: list[str],
) -> FinancialData:
    def pick(field: str) -> Any:
        return _pick(_FINANCIAL_KEYS[field], financial_raw)

    family = detect_unit_family(document_text, reported=pick("unit_family"))
    bodywork_quantity = coerce_quantity(pick("bodywork_quantity"), "bodywork_quantity", warnings)
    paint_quantity = coerce_quantity(pick("paint_quantity"), "paint_quantity", warnings)

    subtotal = coerce_amount(pick("subtotal"), "subtotal", warnings)
    tax_rate = coerce_percentage(pick("tax_rate"), "tax_rate", warnings)
    tax_amount = coerce_amount(pick("tax_amount"), "tax_amount", warnings)
    total_with_tax = coerce_amount(pick("total_with_tax"), "total_with_tax", warnings)

    financial = FinancialData(
        spare_parts_amount=coerce_amount(pick("spare_parts_amount"), "spare_parts_amount", warnings),
        spare_parts_count=coerce_count(pick("spare_parts_count"), "spare_parts_count", warnings),
        bodywork_quantity=bodywork_quantity,
        bodywork_hours=to_hours(bodywork_quantity, family, warnings),
        bodywork_amount=coerce_amount(pick("bodywork_amount"), "bodywork_amount", warnings),
        paint_quantity=paint_quantity,
        paint_hours=to_hours(paint_quantity, family, warnings),
        paint_amount=coerce_amount(pick("paint_amount"), "paint_amount", warnings),
        paint_material_amount=coerce_amount(
            pick("paint_material_amount"), "paint_material_amount", warnings
        ),
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total_with_tax=total_with_tax,
        unit_family=family,
    )

    mismatches = check_tax_totals(subtotal, tax_rate, tax_amount, total_with_tax)
    for message in mismatches:
        logger.warning("Reconciliation: %s", message)
    warnings.extend(mismatches)
    return financial


def record_from_payload(
    payload: Mapping[str, Any],
    *,
    document_text: str = "",
    model_version: str = "",
) -> ExtractedRecord:
    """Normalize a raw extraction payload into an :class:`ExtractedRecord`.

    Accepts the ``vehicle`` / ``financial`` layout as well as the
    ``vehicleData`` / ``insuranceAmounts`` one. Raises ``ParsingError`` when a
    section is missing or is not an object; every other defect becomes a
    warning.
    """
    if not isinstance(payload, Mapping):
        raise ParsingError("Extraction payload is not a JSON object")

    vehicle_raw = _section(payload, _VEHICLE_SECTIONS)
    financial_raw = _section(payload, _FINANCIAL_SECTIONS)

    warnings: list[str] = []
    vehicle = _vehicle_from(vehicle_raw, financial_raw, warnings)
    financial = _financial_from(financial_raw, document_text, warnings)

    reported = payload.get("warnings")
    if isinstance(reported, list):
        for item in reported:
            if isinstance(item, str) and item.strip() and item.strip() not in warnings:
                warnings.append(item.strip())

    return ExtractedRecord(
        vehicle=vehicle,
        financial=financial,
        confidence=_confidence(payload.get("confidence")),
        warnings=warnings,
        model_version=model_version,
        raw_extraction=dict(payload),
    )


async def extract(
    document_text: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
    db: Session | None = None,
    analysis_id: str | None = None,
) -> ExtractedRecord:
    """Extract a normalized valuation record from *document_text*.

    The provider is called once; there is no retry here. When *db* is given
    the call is written to the audit log under *analysis_id*.
    """
    if not document_text or not document_text.strip():
        raise ValidationError("Document text is empty")

    settings = get_settings()
    config = resolve(
        SCOPE,
        override_provider=override_provider,
        override_model=override_model,
    )

    content = document_text[: settings.ai_extraction_max_chars]
    prompt = VALUATION_EXTRACT_PROMPT.format(content=content)

    try:
        result = await config.provider.generate(
            prompt,
            system_prompt=VALUATION_SYSTEM_PROMPT,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
    except Exception as exc:
        logger.exception("AI valuation extraction failed provider=%s", config.provider.name)
        raise ModelError(
            f"Text-generation call failed: {exc}",
            details={"provider": config.provider.name},
        ) from exc

    model_version = f"{result.provider}:{result.model}"
    parsed = extract_json(result.raw_text)
    if parsed is None:
        logger.warning("AI returned no JSON object: %s", result.raw_text[:200])
        raise ParsingError(
            "Model output does not contain a valid JSON object",
            details={"model_version": model_version},
        )

    record = record_from_payload(parsed, document_text=content, model_version=model_version)

    if db is not None:
        log_ai_run(
            db,
            scope=SCOPE,
            provider_result=result,
            prompt_text=prompt,
            parsed_output=record.model_dump(mode="json", exclude={"raw_extraction"}),
            entity_id=analysis_id,
            extra_meta={"confidence": record.confidence, "warning_count": len(record.warnings)},
        )

    logger.info(
        "Valuation extracted model=%s confidence=%.2f warnings=%d",
        model_version,
        record.confidence,
        len(record.warnings),
    )
    return record

"""Valuation extract scope contracts: prompt text and the structured result."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from repairmargin.schemas.analysis import FinancialData, VehicleData

VALUATION_SYSTEM_PROMPT = (
    "You are an expert in vehicle repair valuation reports produced by insurance "
    "assessors (Audatex, GT Motive, SilverDAT). You answer with one JSON object only."
)

VALUATION_EXTRACT_PROMPT = """Extract the following data from this repair valuation document.

DOCUMENT TEXT:
{content}

RULES:
1. Extract ONLY the requested fields. Use null when a value is not present.
2. Monetary amounts are plain numbers without currency symbols (e.g. 1782.92).
3. Dates use DD/MM/YYYY.
4. Labor quantities are the exact numbers printed in the document, in the
   document's own unit. Do not convert UT to hours.
5. subtotal is tax-exclusive. subtotal + tax_amount must equal total_with_tax,
   and tax_amount must equal subtotal * tax_rate / 100. If the document
   disagrees, report the printed values and add a warning.
6. confidence is a number between 0 and 1 reflecting how clearly the data
   could be read. warnings lists every uncertainty.

FIELDS:
vehicle:
- license_plate: plate ("MATRÍCULA")
- vin: chassis number ("BASTIDOR", "NR CHASIS", "NÚMERO CHASIS")
- manufacturer: make (FORD, KIA...)
- model: model (PUMA, PICANTO...)
- internal_reference: valuation / document reference
- valuation_system: AUDATEX, GT MOTIVE, SILVERDAT...
- hourly_price: unified hourly price (use the bodywork/mechanics rate)
- bodywork_hourly_price: bodywork labor rate ("Mano de obra" section)
- paint_hourly_price: paint labor rate ("Pintura" section)
- valuation_date: date of the valuation
financial:
- spare_parts_amount: total of spare parts ("REPUESTOS", "PIEZAS", "RECAMBIOS")
- spare_parts_count: NUMBER of distinct spare-part lines listed, not money
- bodywork_quantity: bodywork labor time units ("M.O. CHAPA")
- bodywork_amount: bodywork labor amount in euros
- paint_quantity: paint labor time units ("M.O. PINTURA")
- paint_amount: paint labor amount in euros
- paint_material_amount: paint materials amount in euros
- subtotal: total before tax ("SUBTOTAL", "TOTAL SIN IVA")
- tax_rate: tax percentage ("IVA")
- tax_amount: tax amount
- total_with_tax: total including tax
- unit_family: "UT" if the document uses UT / "Unidades de Tiempo", "HOURS" if
  it uses horas / hr / h., "MIXED" if both appear

Respond ONLY with a JSON object of this shape, no markdown or explanation:
{{"vehicle": {{...}}, "financial": {{...}}, "confidence": 0.0, "warnings": []}}"""


class ExtractedRecord(BaseModel):
    """Normalized result of one extraction.

    This is a **proposal**: a reviewer verifies vehicle and financial data
    before any profitability figure is computed from it.
    """

    vehicle: VehicleData = Field(default_factory=VehicleData)
    financial: FinancialData = Field(default_factory=FinancialData)
    confidence: float = 0.5
    warnings: list[str] = []
    model_version: str = ""
    raw_extraction: dict[str, Any] = {}

    @field_validator("confidence")
    @classmethod
    def confidence_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            msg = f"Confidence must be 0.0-1.0, got {v}"
            raise ValueError(msg)
        return round(v, 2)

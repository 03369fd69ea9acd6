from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from repairmargin.services.coercion import (
    check_hours_bounds,
    check_money_bounds,
    is_valid_plate,
    normalize_plate,
    parse_valuation_date,
)
from repairmargin.services.time_units import UnitFamily


class AnalysisStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExtractionSource(StrEnum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


# --- Insurer-side records ---


class VehicleData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    license_plate: str = ""
    vin: str = ""
    manufacturer: str = ""
    model: str = ""
    internal_reference: str = ""
    valuation_system: str = ""
    hourly_price: float = 0.0
    bodywork_hourly_price: float = 0.0
    paint_hourly_price: float = 0.0
    valuation_date: Optional[str] = None

    @field_validator(
        "license_plate",
        "vin",
        "manufacturer",
        "model",
        "internal_reference",
        "valuation_system",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class FinancialData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    spare_parts_amount: float = 0.0
    spare_parts_count: int = 0
    bodywork_quantity: float = 0.0
    bodywork_hours: float = 0.0
    bodywork_amount: float = 0.0
    paint_quantity: float = 0.0
    paint_hours: float = 0.0
    paint_amount: float = 0.0
    paint_material_amount: float = 0.0
    subtotal: float = 0.0
    tax_rate: float = 0.0
    tax_amount: float = 0.0
    total_with_tax: float = 0.0
    unit_family: UnitFamily = UnitFamily.UT


class VerifiedVehicle(VehicleData):
    """Vehicle data committed by a reviewer; the plate must be recognizable."""

    @field_validator("license_plate")
    @classmethod
    def _plate_recognized(cls, value: str) -> str:
        if not is_valid_plate(value):
            raise ValueError(f"Unrecognized license plate: {value!r}")
        return normalize_plate(value)

    @field_validator("valuation_date")
    @classmethod
    def _iso_date(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        parsed = parse_valuation_date(value)
        if parsed is None:
            raise ValueError(f"Unrecognized valuation date: {value!r}")
        return parsed

    @field_validator("hourly_price", "bodywork_hourly_price", "paint_hourly_price")
    @classmethod
    def _money(cls, value: float, info) -> float:
        return check_money_bounds(value, info.field_name)


class VerifiedFinancial(FinancialData):
    @field_validator(
        "spare_parts_amount",
        "bodywork_amount",
        "paint_amount",
        "paint_material_amount",
        "subtotal",
        "tax_amount",
        "total_with_tax",
    )
    @classmethod
    def _money(cls, value: float, info) -> float:
        return check_money_bounds(value, info.field_name)

    @field_validator("bodywork_quantity", "bodywork_hours", "paint_quantity", "paint_hours")
    @classmethod
    def _hours(cls, value: float, info) -> float:
        return check_hours_bounds(value, info.field_name)

    @field_validator("tax_rate")
    @classmethod
    def _rate(cls, value: float) -> float:
        if not 0 <= value <= 100:
            raise ValueError("tax_rate must be between 0 and 100")
        return value

    @field_validator("spare_parts_count")
    @classmethod
    def _count(cls, value: int) -> int:
        if value < 0:
            raise ValueError("spare_parts_count cannot be negative")
        return value


# --- Workshop side ---


class WorkshopCostCreate(BaseModel):
    spare_parts_cost: float = 0.0
    bodywork_hours: float = 0.0
    bodywork_hourly_cost: float = 0.0
    paint_hours: float = 0.0
    paint_hourly_cost: float = 0.0
    paint_consumables_cost: float = 0.0
    subcontractor_cost: float = 0.0
    other_cost: float = 0.0
    notes: str = Field(default="", max_length=4000)

    @field_validator(
        "spare_parts_cost",
        "bodywork_hourly_cost",
        "paint_hourly_cost",
        "paint_consumables_cost",
        "subcontractor_cost",
        "other_cost",
    )
    @classmethod
    def _money(cls, value: float, info) -> float:
        return check_money_bounds(value, info.field_name)

    @field_validator("bodywork_hours", "paint_hours")
    @classmethod
    def _hours(cls, value: float, info) -> float:
        return check_hours_bounds(value, info.field_name)


class WorkshopCostOut(WorkshopCostCreate):
    model_config = ConfigDict(from_attributes=True)

    id: str
    analysis_id: str
    created_at: Optional[datetime] = None

    @field_validator("id", "analysis_id", mode="before")
    @classmethod
    def _uuid_to_str(cls, value):
        return str(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _none_notes(cls, value):
        return value or ""


# --- Profitability ---


class CategoryBreakdown(BaseModel):
    income: float
    cost: float
    margin: float
    margin_percent: Optional[float] = None
    cost_only: bool = False


class SparePartsBreakdown(CategoryBreakdown):
    unit_count: int = 0
    margin_per_unit: Optional[float] = None


class ProfitabilityCategories(BaseModel):
    spare_parts: SparePartsBreakdown
    bodywork_labor: CategoryBreakdown
    paint_labor: CategoryBreakdown
    paint_material: CategoryBreakdown
    subcontractors: CategoryBreakdown
    other: CategoryBreakdown


class ProfitabilityReport(BaseModel):
    income: float
    cost: float
    margin_amount: float
    margin_percent: float
    categories: ProfitabilityCategories
    warnings: list[str] = []


class WorkshopSummary(BaseModel):
    analysis_count: int
    total_income: float
    total_cost: float
    total_margin: float
    average_margin: float
    average_margin_percent: float


# --- API payloads ---


class AnalysisCreate(BaseModel):
    document_text: str = Field(..., max_length=200_000)
    document_name: Optional[str] = Field(default=None, max_length=255)


class VerificationRequest(BaseModel):
    vehicle: VerifiedVehicle
    financial: VerifiedFinancial


class AnalysisOut(BaseModel):
    id: str
    status: AnalysisStatus
    error_message: Optional[str] = None
    document_name: Optional[str] = None
    extraction_source: Optional[ExtractionSource] = None
    model_version: Optional[str] = None
    confidence: Optional[float] = None
    warnings: list[str] = []
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    vehicle: Optional[VehicleData] = None
    financial: Optional[FinancialData] = None
    workshop_costs: Optional[WorkshopCostOut] = None

"""Workshop profitability: insurer-side income against real workshop costs.

Income is always the tax-exclusive subtotal. Tax is collected on behalf of
the tax authority and never counts as shop revenue.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Optional

from repairmargin.schemas.analysis import (
    CategoryBreakdown,
    ProfitabilityCategories,
    ProfitabilityReport,
    SparePartsBreakdown,
    WorkshopSummary,
)
from repairmargin.services.coercion import round_money
from repairmargin.services.errors import ValidationError
from repairmargin.services.reconciliation import check_category_sum

logger = logging.getLogger(__name__)


def _num(record: Any, field: str) -> float:
    """Read a numeric attribute from a pydantic record or an ORM row (Decimal)."""
    value = getattr(record, field, None)
    return float(value) if value is not None else 0.0


def _percent(part: float, whole: float) -> Optional[float]:
    if whole <= 0:
        return None
    return round_money(part / whole * 100)


def _category(income: float, cost: float) -> CategoryBreakdown:
    margin = round_money(income - cost)
    return CategoryBreakdown(
        income=income,
        cost=cost,
        margin=margin,
        margin_percent=_percent(margin, income),
    )


def _cost_only(cost: float) -> CategoryBreakdown:
    return CategoryBreakdown(
        income=0.0,
        cost=cost,
        margin=round_money(-cost),
        margin_percent=None,
        cost_only=True,
    )


def calculate(financial: Any, costs: Any) -> ProfitabilityReport:
    """Build the profitability report of one analysis.

    ``financial`` and ``costs`` may be the pydantic records or the ORM rows.
    Raises ``ValidationError`` when either is missing, when the income basis
    is not positive, or when the cost total comes out negative.
    """
    if financial is None:
        raise ValidationError("Financial record is required")
    if costs is None:
        raise ValidationError("Workshop cost record is required")

    income = round_money(_num(financial, "subtotal"))
    if income <= 0:
        raise ValidationError(
            "Income (tax-exclusive subtotal) must be greater than zero",
            details={"subtotal": income},
        )

    spare_parts_cost = round_money(_num(costs, "spare_parts_cost"))
    bodywork_cost = round_money(_num(costs, "bodywork_hours") * _num(costs, "bodywork_hourly_cost"))
    paint_cost = round_money(_num(costs, "paint_hours") * _num(costs, "paint_hourly_cost"))
    consumables_cost = round_money(_num(costs, "paint_consumables_cost"))
    subcontractor_cost = round_money(_num(costs, "subcontractor_cost"))
    other_cost = round_money(_num(costs, "other_cost"))

    cost = 0.0
    for term in (
        spare_parts_cost,
        bodywork_cost,
        paint_cost,
        consumables_cost,
        subcontractor_cost,
        other_cost,
    ):
        cost = round_money(cost + term)
    if cost < 0:
        raise ValidationError("Total cost cannot be negative", details={"cost": cost})

    margin_amount = round_money(income - cost)
    margin_percent = round_money(margin_amount / income * 100)

    spare_parts_income = round_money(_num(financial, "spare_parts_amount"))
    bodywork_income = round_money(_num(financial, "bodywork_amount"))
    paint_income = round_money(_num(financial, "paint_amount"))
    material_income = round_money(_num(financial, "paint_material_amount"))

    spare = _category(spare_parts_income, spare_parts_cost)
    unit_count = int(_num(financial, "spare_parts_count"))
    spare_parts = SparePartsBreakdown(
        **spare.model_dump(),
        unit_count=unit_count,
        margin_per_unit=round_money(spare.margin / unit_count) if unit_count > 0 else None,
    )

    warnings = check_category_sum(
        {
            "spare_parts": spare_parts_income,
            "bodywork_labor": bodywork_income,
            "paint_labor": paint_income,
            "paint_material": material_income,
        },
        income,
    )
    for message in warnings:
        logger.warning("Profitability drift: %s", message)

    return ProfitabilityReport(
        income=income,
        cost=cost,
        margin_amount=margin_amount,
        margin_percent=margin_percent,
        categories=ProfitabilityCategories(
            spare_parts=spare_parts,
            bodywork_labor=_category(bodywork_income, bodywork_cost),
            paint_labor=_category(paint_income, paint_cost),
            paint_material=_category(material_income, consumables_cost),
            subcontractors=_cost_only(subcontractor_cost),
            other=_cost_only(other_cost),
        ),
        warnings=warnings,
    )


def summarize_reports(reports: Iterable[ProfitabilityReport]) -> WorkshopSummary:
    """Aggregate totals and averages over several reports."""
    count = 0
    total_income = 0.0
    total_cost = 0.0
    total_margin = 0.0
    percent_sum = 0.0

    for report in reports:
        count += 1
        total_income = round_money(total_income + report.income)
        total_cost = round_money(total_cost + report.cost)
        total_margin = round_money(total_margin + report.margin_amount)
        percent_sum += report.margin_percent

    if count == 0:
        return WorkshopSummary(
            analysis_count=0,
            total_income=0.0,
            total_cost=0.0,
            total_margin=0.0,
            average_margin=0.0,
            average_margin_percent=0.0,
        )

    return WorkshopSummary(
        analysis_count=count,
        total_income=total_income,
        total_cost=total_cost,
        total_margin=total_margin,
        average_margin=round_money(total_margin / count),
        average_margin_percent=round_money(percent_sum / count),
    )

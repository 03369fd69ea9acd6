from decimal import Decimal
from types import SimpleNamespace

import pytest

from repairmargin.schemas.analysis import FinancialData, WorkshopCostCreate
from repairmargin.services.errors import ValidationError
from repairmargin.services.profitability import calculate, summarize_reports


def _financial(**overrides):
    data = {
        "spare_parts_amount": 1000.00,
        "spare_parts_count": 8,
        "bodywork_amount": 500.00,
        "paint_amount": 300.00,
        "paint_material_amount": 200.00,
        "subtotal": 2000.00,
        "tax_rate": 21,
        "tax_amount": 420.00,
        "total_with_tax": 2420.00,
    }
    data.update(overrides)
    return FinancialData(**data)


def _costs(**overrides):
    data = {
        "spare_parts_cost": 500,
        "bodywork_hours": 10,
        "bodywork_hourly_cost": 20,
        "paint_hours": 5,
        "paint_hourly_cost": 18,
        "paint_consumables_cost": 100,
        "subcontractor_cost": 0,
        "other_cost": 0,
    }
    data.update(overrides)
    return WorkshopCostCreate(**data)


class TestCalculate:
    def test_reference_scenario(self):
        report = calculate(_financial(), _costs())
        assert report.income == 2000.00
        assert report.cost == 890.00
        assert report.margin_amount == 1110.00
        assert report.margin_percent == 55.50
        assert report.warnings == []

    def test_income_ignores_tax(self):
        report = calculate(_financial(tax_amount=999.99, total_with_tax=2999.99), _costs())
        assert report.income == 2000.00

    def test_categories(self):
        cats = calculate(_financial(), _costs()).categories
        assert cats.bodywork_labor.cost == 200.00
        assert cats.bodywork_labor.margin == 300.00
        assert cats.bodywork_labor.margin_percent == 60.00
        assert cats.paint_labor.cost == 90.00
        assert cats.paint_material.cost == 100.00
        assert cats.paint_material.margin == 100.00

    def test_spare_parts_margin_per_unit(self):
        spare = calculate(_financial(), _costs()).categories.spare_parts
        assert spare.margin == 500.00
        assert spare.unit_count == 8
        assert spare.margin_per_unit == 62.50

    def test_no_spare_units(self):
        spare = calculate(_financial(spare_parts_count=0), _costs()).categories.spare_parts
        assert spare.margin_per_unit is None

    def test_zero_income_category_has_no_percent(self):
        cats = calculate(_financial(paint_amount=0, spare_parts_amount=1300), _costs()).categories
        assert cats.paint_labor.margin == -90.00
        assert cats.paint_labor.margin_percent is None

    def test_cost_only_categories(self):
        report = calculate(_financial(), _costs(subcontractor_cost=150, other_cost=60))
        assert report.cost == 1100.00
        assert report.categories.subcontractors.cost_only
        assert report.categories.subcontractors.margin == -150.00
        assert report.categories.subcontractors.margin_percent is None
        assert report.categories.other.margin == -60.00

    def test_negative_margin(self):
        report = calculate(_financial(), _costs(spare_parts_cost=2500))
        assert report.margin_amount == -890.00
        assert report.margin_percent == -44.50

    def test_products_rounded_half_up(self):
        report = calculate(_financial(), _costs(bodywork_hours=2.5, bodywork_hourly_cost=20.25))
        assert report.categories.bodywork_labor.cost == 50.63

    def test_category_drift_warns(self):
        report = calculate(_financial(subtotal=2100.00), _costs())
        assert len(report.warnings) == 1
        assert "diff 100.00" in report.warnings[0]

    def test_orm_rows_with_decimals(self):
        financial = SimpleNamespace(
            subtotal=Decimal("2000.00"),
            spare_parts_amount=Decimal("1000.00"),
            spare_parts_count=8,
            bodywork_amount=Decimal("500.00"),
            paint_amount=Decimal("300.00"),
            paint_material_amount=Decimal("200.00"),
        )
        costs = SimpleNamespace(
            spare_parts_cost=Decimal("500.00"),
            bodywork_hours=Decimal("10.00"),
            bodywork_hourly_cost=Decimal("20.00"),
            paint_hours=Decimal("5.00"),
            paint_hourly_cost=Decimal("18.00"),
            paint_consumables_cost=Decimal("100.00"),
            subcontractor_cost=None,
            other_cost=Decimal("0"),
        )
        report = calculate(financial, costs)
        assert report.cost == 890.00
        assert report.margin_percent == 55.50


class TestCalculateRejects:
    def test_zero_income(self):
        with pytest.raises(ValidationError):
            calculate(_financial(subtotal=0), _costs())

    def test_missing_financial(self):
        with pytest.raises(ValidationError):
            calculate(None, _costs())

    def test_missing_costs(self):
        with pytest.raises(ValidationError):
            calculate(_financial(), None)

    def test_negative_cost_total(self):
        costs = SimpleNamespace(spare_parts_cost=-10)
        with pytest.raises(ValidationError):
            calculate(_financial(), costs)


class TestSummarize:
    def test_empty(self):
        summary = summarize_reports([])
        assert summary.analysis_count == 0
        assert summary.total_income == 0.0
        assert summary.average_margin_percent == 0.0

    def test_totals_and_averages(self):
        first = calculate(_financial(), _costs())
        second = calculate(_financial(), _costs(spare_parts_cost=1110))
        summary = summarize_reports([first, second])
        assert summary.analysis_count == 2
        assert summary.total_income == 4000.00
        assert summary.total_cost == 2390.00
        assert summary.total_margin == 1610.00
        assert summary.average_margin == 805.00
        assert summary.average_margin_percent == 40.25

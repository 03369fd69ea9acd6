from repairmargin.services.reconciliation import check_category_sum, check_tax_totals


class TestTaxTotals:
    def test_consistent_totals_pass(self):
        assert check_tax_totals(2710.23, 21, 569.15, 3279.38) == []

    def test_wrong_tax_amount_warns(self):
        warnings = check_tax_totals(1000.00, 21, 200.00, 1200.00)
        assert len(warnings) == 1
        assert "expected 210.00" in warnings[0]
        assert "diff 10.00" in warnings[0]

    def test_wrong_total_warns(self):
        warnings = check_tax_totals(1000.00, 21, 210.00, 1300.00)
        assert len(warnings) == 1
        assert "1210.00" in warnings[0]

    def test_both_identities_can_fail(self):
        assert len(check_tax_totals(1000.00, 21, 100.00, 1500.00)) == 2

    def test_one_cent_is_tolerated(self):
        assert check_tax_totals(100.00, 21, 21.01, 121.01) == []

    def test_sample_document(self):
        assert check_tax_totals(2948.49, 21, 619.18, 3567.67) == []


class TestCategorySum:
    CATEGORIES = {
        "spare_parts": 1782.92,
        "bodywork_labor": 679.89,
        "paint_labor": 272.48,
        "paint_material": 213.20,
    }

    def test_matching_subtotal(self):
        assert check_category_sum(self.CATEGORIES, 2948.49) == []

    def test_within_one_unit(self):
        assert check_category_sum(self.CATEGORIES, 2949.00) == []

    def test_drift_warns(self):
        warnings = check_category_sum(self.CATEGORIES, 3000.00)
        assert len(warnings) == 1
        assert "diff 51.51" in warnings[0]

"""Arithmetic cross-checks on insurer-quoted amounts. Pure; returns warnings."""

from __future__ import annotations

from collections.abc import Mapping

from repairmargin.services.coercion import round_money

TAX_TOLERANCE = 0.01
CATEGORY_TOLERANCE = 1.0


def check_tax_totals(
    subtotal: float,
    tax_rate: float,
    tax_amount: float,
    total: float,
    *,
    tolerance: float = TAX_TOLERANCE,
) -> list[str]:
    """Check ``subtotal + tax == total`` and ``tax == subtotal * rate / 100``."""
    warnings: list[str] = []

    expected_total = round_money(subtotal + tax_amount)
    total_diff = round_money(abs(expected_total - total))
    if total_diff > tolerance:
        warnings.append(
            f"Subtotal {subtotal:.2f} + tax {tax_amount:.2f} = {expected_total:.2f} "
            f"does not match total {total:.2f} (diff {total_diff:.2f})"
        )

    expected_tax = round_money(subtotal * tax_rate / 100)
    tax_diff = round_money(abs(expected_tax - tax_amount))
    if tax_diff > tolerance:
        warnings.append(
            f"Tax {tax_amount:.2f} does not match {tax_rate:g}% of subtotal {subtotal:.2f} "
            f"(expected {expected_tax:.2f}, diff {tax_diff:.2f})"
        )

    return warnings


def check_category_sum(
    category_incomes: Mapping[str, float],
    declared_subtotal: float,
    *,
    tolerance: float = CATEGORY_TOLERANCE,
) -> list[str]:
    """Compare the sum of per-category income lines with the declared subtotal."""
    total = 0.0
    for amount in category_incomes.values():
        total = round_money(total + amount)

    diff = round_money(abs(total - declared_subtotal))
    if diff > tolerance:
        return [
            f"Category income lines sum to {total:.2f} but the declared subtotal is "
            f"{declared_subtotal:.2f} (diff {diff:.2f})"
        ]
    return []

from decimal import Decimal

import pytest

from ordercore.core.exceptions import TaxReconciliationError, ValidationError
from ordercore.services.tax_calculator import (
    calculate_line_tax,
    calculate_taxes,
    is_inter_state,
    normalize_state,
    reconcile_to_total,
    round_money,
)


SELLER = "Maharashtra"


def test_intra_state_splits_cgst_and_sgst():
    summary = calculate_taxes([(Decimal("1000.00"), Decimal("18"))], "Maharashtra", SELLER)

    assert summary.is_igst is False
    assert summary.cgst == Decimal("90.00")
    assert summary.sgst == Decimal("90.00")
    assert summary.igst == Decimal("0.00")
    assert summary.grand_total == Decimal("1180.00")


def test_inter_state_charges_igst_only():
    summary = calculate_taxes([(Decimal("1000.00"), Decimal("18"))], "Karnataka", SELLER)

    assert summary.is_igst is True
    assert summary.cgst == Decimal("0.00")
    assert summary.sgst == Decimal("0.00")
    assert summary.igst == Decimal("180.00")
    assert summary.grand_total == Decimal("1180.00")


@pytest.mark.parametrize("buyer", ["maharashtra", "  MAHARASHTRA ", "27"])
def test_state_comparison_ignores_case_spacing_and_codes(buyer):
    assert normalize_state(buyer) == "MAHARASHTRA"
    assert is_inter_state(buyer, SELLER) is False


def test_odd_paisa_split_keeps_cgst_plus_sgst_exact():
    line = calculate_line_tax(Decimal("0.99"), Decimal("5"), SELLER, SELLER)

    # 0.0495 rounds half-up to 0.05
    assert line.cgst + line.sgst == Decimal("0.05")
    assert line.cgst == Decimal("0.03")
    assert line.sgst == Decimal("0.02")
    assert line.line_total == Decimal("1.04")


def test_totals_are_sums_of_rounded_lines():
    lines = [
        (Decimal("10.10"), Decimal("18")),
        (Decimal("333.33"), Decimal("12")),
        (Decimal("0.99"), Decimal("5")),
    ]
    for buyer in ("Maharashtra", "Goa"):
        summary = calculate_taxes(lines, buyer, SELLER)
        assert summary.grand_total == summary.subtotal + summary.cgst + summary.sgst + summary.igst
        assert summary.tax_amount == sum(line.tax_amount for line in summary.lines)
        if summary.is_igst:
            assert summary.cgst == summary.sgst == Decimal("0.00")
        else:
            assert summary.igst == Decimal("0.00")


def test_zero_rate_line_has_no_tax():
    line = calculate_line_tax(Decimal("250.00"), Decimal("0"), "Karnataka", SELLER)
    assert line.tax_amount == Decimal("0.00")
    assert line.line_total == Decimal("250.00")


@pytest.mark.parametrize("taxable, rate", [(Decimal("-1"), Decimal("18")), (Decimal("10"), Decimal("101"))])
def test_invalid_inputs_are_rejected(taxable, rate):
    with pytest.raises(ValidationError):
        calculate_line_tax(taxable, rate, SELLER, SELLER)


def test_round_money_is_half_up():
    assert round_money("2.345") == Decimal("2.35")
    assert round_money("2.344") == Decimal("2.34")


def test_reconcile_absorbs_paisa_drift_into_last_line():
    summary = calculate_taxes(
        [(Decimal("100.00"), Decimal("18")), (Decimal("100.00"), Decimal("18"))], SELLER, SELLER
    )
    adjusted = reconcile_to_total(summary, Decimal("236.01"))

    assert adjusted.grand_total == Decimal("236.01")
    assert adjusted.lines[0] == summary.lines[0]
    assert adjusted.lines[-1].sgst == summary.lines[-1].sgst + Decimal("0.01")
    assert adjusted.grand_total == adjusted.subtotal + adjusted.cgst + adjusted.sgst + adjusted.igst


def test_reconcile_skips_zero_rated_shipping_line():
    summary = calculate_taxes(
        [(Decimal("100.00"), Decimal("18")), (Decimal("50.00"), Decimal("0"))], "Kerala", SELLER
    )
    adjusted = reconcile_to_total(summary, Decimal("167.99"))

    assert adjusted.lines[0].igst == Decimal("17.99")
    assert adjusted.lines[-1] == summary.lines[-1]
    assert adjusted.lines[-1].tax_amount == Decimal("0")


def test_reconcile_without_taxed_line_rejected():
    summary = calculate_taxes([(Decimal("50.00"), Decimal("0"))], SELLER, SELLER)

    with pytest.raises(TaxReconciliationError):
        reconcile_to_total(summary, Decimal("50.01"))


def test_reconcile_inter_state_adjusts_igst():
    summary = calculate_taxes([(Decimal("100.00"), Decimal("18"))], "Kerala", SELLER)
    adjusted = reconcile_to_total(summary, Decimal("117.99"))

    assert adjusted.igst == Decimal("17.99")
    assert adjusted.cgst == Decimal("0.00")


def test_reconcile_matching_total_is_unchanged():
    summary = calculate_taxes([(Decimal("1000.00"), Decimal("18"))], SELLER, SELLER)
    assert reconcile_to_total(summary, Decimal("1180.00")) is summary


def test_reconcile_rejects_drift_beyond_tolerance():
    summary = calculate_taxes([(Decimal("1000.00"), Decimal("18"))], SELLER, SELLER)

    with pytest.raises(TaxReconciliationError) as exc_info:
        reconcile_to_total(summary, Decimal("1181.00"))

    assert exc_info.value.details["drift"] == "1.00"

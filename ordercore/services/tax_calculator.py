"""
GST calculation.

Pure functions, no database access. Every tax component is rounded half-up
to the paisa per line; the line GST is rounded first and split so that
CGST + SGST always equals it exactly. Aggregates are sums of the rounded
line components, never a recomputation from the aggregate taxable value.
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Union

from ordercore.core.exceptions import TaxReconciliationError, ValidationError


PAISA = Decimal("0.01")
ZERO = Decimal("0.00")

# GST State Code mapping
GST_STATE_CODES = {
    "01": "Jammu & Kashmir", "02": "Himachal Pradesh", "03": "Punjab",
    "04": "Chandigarh", "05": "Uttarakhand", "06": "Haryana",
    "07": "Delhi", "08": "Rajasthan", "09": "Uttar Pradesh",
    "10": "Bihar", "11": "Sikkim", "12": "Arunachal Pradesh",
    "13": "Nagaland", "14": "Manipur", "15": "Mizoram",
    "16": "Tripura", "17": "Meghalaya", "18": "Assam",
    "19": "West Bengal", "20": "Jharkhand", "21": "Odisha",
    "22": "Chhattisgarh", "23": "Madhya Pradesh", "24": "Gujarat",
    "26": "Dadra & Nagar Haveli and Daman & Diu", "27": "Maharashtra",
    "29": "Karnataka", "30": "Goa",
    "31": "Lakshadweep", "32": "Kerala", "33": "Tamil Nadu",
    "34": "Puducherry", "35": "Andaman & Nicobar Islands",
    "36": "Telangana", "37": "Andhra Pradesh",
    "38": "Ladakh", "97": "Other Territory"
}

Number = Union[Decimal, int, str]


def round_money(amount: Number) -> Decimal:
    return Decimal(str(amount)).quantize(PAISA, rounding=ROUND_HALF_UP)


def normalize_state(state: Optional[str]) -> str:
    """
    Case and whitespace insensitive state key.

    A two digit GST state code ("27") resolves to the state name.
    """
    if not state:
        return ""
    value = " ".join(str(state).split()).upper()
    if value in GST_STATE_CODES:
        return GST_STATE_CODES[value].upper()
    return value


def is_inter_state(buyer_state: Optional[str], seller_state: Optional[str]) -> bool:
    return normalize_state(buyer_state) != normalize_state(seller_state)


@dataclass(frozen=True)
class LineTax:
    taxable_value: Decimal
    gst_rate: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    line_total: Decimal

    @property
    def tax_amount(self) -> Decimal:
        return self.cgst + self.sgst + self.igst


@dataclass
class TaxSummary:
    is_igst: bool
    lines: List[LineTax] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return sum((line.taxable_value for line in self.lines), ZERO)

    @property
    def cgst(self) -> Decimal:
        return sum((line.cgst for line in self.lines), ZERO)

    @property
    def sgst(self) -> Decimal:
        return sum((line.sgst for line in self.lines), ZERO)

    @property
    def igst(self) -> Decimal:
        return sum((line.igst for line in self.lines), ZERO)

    @property
    def tax_amount(self) -> Decimal:
        return self.cgst + self.sgst + self.igst

    @property
    def grand_total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), ZERO)


def calculate_line_tax(
    taxable_value: Number,
    gst_rate_percent: Number,
    buyer_state: Optional[str],
    seller_state: Optional[str],
) -> LineTax:
    """Tax split for one line."""
    taxable = round_money(taxable_value)
    rate = Decimal(str(gst_rate_percent))
    if taxable < 0:
        raise ValidationError("Taxable value cannot be negative", {"taxable_value": str(taxable)})
    if rate < 0 or rate > 100:
        raise ValidationError("GST rate must be between 0 and 100", {"gst_rate": str(rate)})

    gst_amount = round_money(taxable * rate / Decimal("100"))

    if is_inter_state(buyer_state, seller_state):
        cgst, sgst, igst = ZERO, ZERO, gst_amount
    else:
        cgst = round_money(gst_amount / 2)
        sgst = gst_amount - cgst
        igst = ZERO

    return LineTax(
        taxable_value=taxable,
        gst_rate=rate,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        line_total=taxable + gst_amount,
    )


def calculate_taxes(
    lines: Iterable[tuple],
    buyer_state: Optional[str],
    seller_state: Optional[str],
) -> TaxSummary:
    """
    Tax for a whole document.

    ``lines`` yields ``(taxable_value, gst_rate_percent)`` pairs.
    """
    summary = TaxSummary(is_igst=is_inter_state(buyer_state, seller_state))
    for taxable_value, gst_rate in lines:
        summary.lines.append(
            calculate_line_tax(taxable_value, gst_rate, buyer_state, seller_state)
        )
    return summary


def reconcile_to_total(
    summary: TaxSummary,
    expected_total: Number,
    tolerance_per_line: Number = PAISA,
) -> TaxSummary:
    """
    Make the document grand total match ``expected_total``.

    A drift of at most one tolerance step per line is absorbed into the last
    taxed line's SGST (intra-state) or IGST (inter-state) so that
    grand_total == subtotal + cgst + sgst + igst stays exact. Anything larger
    is a calculation bug and raises TaxReconciliationError.
    """
    expected = round_money(expected_total)
    drift = expected - summary.grand_total
    if drift == 0:
        return summary

    if not summary.lines:
        raise TaxReconciliationError(
            "Document has no lines to reconcile",
            {"expected_total": str(expected)},
        )

    allowed = Decimal(str(tolerance_per_line)) * len(summary.lines)
    if abs(drift) > allowed:
        raise TaxReconciliationError(
            f"Tax totals drift {drift} from expected total {expected}",
            {
                "expected_total": str(expected),
                "computed_total": str(summary.grand_total),
                "drift": str(drift),
                "tolerance": str(allowed),
            },
        )

    taxed = [i for i, line in enumerate(summary.lines) if line.gst_rate > 0]
    if not taxed:
        raise TaxReconciliationError(
            "Document has no taxed line to absorb the drift",
            {"expected_total": str(expected), "drift": str(drift)},
        )
    index = taxed[-1]
    last = summary.lines[index]
    if summary.is_igst:
        adjusted = replace(last, igst=last.igst + drift, line_total=last.line_total + drift)
    else:
        adjusted = replace(last, sgst=last.sgst + drift, line_total=last.line_total + drift)

    if adjusted.tax_amount < 0:
        raise TaxReconciliationError(
            "Reconciliation would make line tax negative",
            {"drift": str(drift), "line_tax": str(last.tax_amount)},
        )

    lines = list(summary.lines)
    lines[index] = adjusted
    return TaxSummary(is_igst=summary.is_igst, lines=lines)

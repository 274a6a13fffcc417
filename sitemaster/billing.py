"""
sitemaster/billing.py

GST billing engine.

- calculate_line_item: taxable amount and CGST/SGST vs IGST split for one line.
- generate_invoice_summary: invoice totals, retention and advance adjustment.
- validate_gstin: fixed-pattern GSTIN check (gates Party data entry).

IMPORTANT:
- Pure functions. No I/O, no rounding: amounts stay plain floats and are rounded
  only at display time, so aggregation never compounds rounding error.
- No validation either. Negative or NaN inputs propagate to the output; callers
  validate before invoking.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

GST_SLABS = (5, 12, 18, 28)

HSN_CONSTRUCTION = {
    "9954": "Composite supply of works contract",
    "2523": "Cement",
    "7214": "Steel reinforcement bars",
    "9985": "Labour services",
}

# 2 digits (state), 5 letters + 4 digits + 1 letter (PAN), entity number, literal Z, checksum
GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")


def calculate_line_item(quantity: float, rate: float, gst_rate: float, is_inter_state: bool) -> dict:
    """
    Compute derived amounts for one invoice line.

    Inter-state supply carries the full tax as IGST. Intra-state supply splits
    it evenly into CGST and SGST.
    """
    taxable = quantity * rate
    tax_total = taxable * gst_rate / 100

    return {
        "taxable_amount": taxable,
        "cgst": 0.0 if is_inter_state else tax_total / 2,
        "sgst": 0.0 if is_inter_state else tax_total / 2,
        "igst": tax_total if is_inter_state else 0.0,
        "total": taxable + tax_total,
    }


def is_inter_state(supplier: Any, recipient: Any) -> bool:
    """
    True when the parties sit in different GST states.

    A missing party has no state code and therefore counts as a different state.
    """
    supplier_state = getattr(supplier, "state_code", None)
    recipient_state = getattr(recipient, "state_code", None)
    return supplier_state != recipient_state


def validate_gstin(gstin: Any) -> bool:
    """Return True if gstin matches the GSTIN format. Never raises."""
    if not isinstance(gstin, str):
        return False
    return GSTIN_PATTERN.match(gstin) is not None


def _field(item: Any, name: str) -> float:
    """Read a derived amount from a line item (model instance or mapping)."""
    if isinstance(item, Mapping):
        return item.get(name, 0.0)
    return getattr(item, name, 0.0)


def generate_invoice_summary(
    items: Iterable[Any],
    retention_percent: float = 0,
    advance_adjustment: float = 0,
) -> dict:
    """
    Aggregate line items (already processed by calculate_line_item).

    total_amount = gross_total - retention_amount - advance_adjustment
    It is NOT clamped: adjustments larger than the gross total yield a negative payable.
    """
    items = list(items)

    total_taxable = sum(_field(i, "taxable_amount") for i in items)
    total_cgst = sum(_field(i, "cgst") for i in items)
    total_sgst = sum(_field(i, "sgst") for i in items)
    total_igst = sum(_field(i, "igst") for i in items)

    gross_total = total_taxable + total_cgst + total_sgst + total_igst
    retention = gross_total * retention_percent / 100

    return {
        "total_taxable": total_taxable,
        "total_cgst": total_cgst,
        "total_sgst": total_sgst,
        "total_igst": total_igst,
        "gross_total": gross_total,
        "retention_amount": retention,
        "advance_adjustment": advance_adjustment,
        "total_amount": gross_total - retention - advance_adjustment,
    }

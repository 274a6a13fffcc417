"""
Utility functions shared across the app. This includes:
- utcnow: naive UTC timestamp used for all DateTime columns.
- format_currency / format_percent: display-time rounding (never used inside calculations).
- status_code: turn a status label into an audit action suffix.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


def utcnow() -> datetime:
    """Naive UTC now (SQLite DateTime columns drop tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_currency(value, symbol: str = "₹") -> str:
    """
    Render an amount for display: half-up to 2 decimals with thousands separators.

    Non-finite values (NaN/inf coming from unvalidated input) are shown as-is.
    """
    if value is None:
        value = 0
    try:
        amount = _money(Decimal(str(value)))
    except InvalidOperation:
        return f"{symbol}{value}"
    if not amount.is_finite():
        return f"{symbol}{value}"
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def format_percent(value) -> str:
    """Display a percent value (e.g. 5 -> '5.00%')."""
    return f"{_money(Decimal(str(value or 0)))}%"


def status_code(status: str) -> str:
    """
    Audit action suffix for a status label:
      "In Progress"      -> "IN_PROGRESS"
      "Pending Approval" -> "PENDING_APPROVAL"
    """
    return "_".join((status or "").strip().upper().split())

"""GST-aware line amounts, invoice totals and invoice numbering.

Rounding:
- All arithmetic is done in Decimal
- Every derived amount is rounded to cents, half to even (banker's rounding)
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

from rcti_engine.calculators.types import GstMode, GstStatus, LineAmounts, RctiTotals

CENTS = Decimal("0.01")
GST_RATE = Decimal("0.10")
ZERO = Decimal("0")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places, half to even."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_EVEN)


def to_decimal(value: Any) -> Decimal:
    """Convert a number, numeric string or Decimal to Decimal.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1"), not its binary
    expansion. Raises ValueError for anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
    else:
        raise ValueError(f"Not a number: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def calculate_line_amounts(
    charged_hours: Decimal,
    rate_per_hour: Decimal,
    gst_status: GstStatus | str,
    gst_mode: GstMode | str = GstMode.EXCLUSIVE,
    gst_rate: Decimal = GST_RATE,
) -> LineAmounts:
    """Calculate ex-GST, GST and inc-GST amounts for a line.

    - not registered: no GST, ex-GST equals inc-GST
    - registered, exclusive: GST is added on top of hours x rate
    - registered, inclusive: hours x rate already includes GST and the
      ex-GST figure is backed out of it
    """
    gross = round_to_cents(to_decimal(charged_hours) * to_decimal(rate_per_hour))

    if GstStatus(gst_status) == GstStatus.NOT_REGISTERED:
        return LineAmounts(amount_ex_gst=gross, gst_amount=ZERO, amount_inc_gst=gross)

    if GstMode(gst_mode) == GstMode.EXCLUSIVE:
        gst_amount = round_to_cents(gross * gst_rate)
        return LineAmounts(
            amount_ex_gst=gross,
            gst_amount=gst_amount,
            amount_inc_gst=gross + gst_amount,
        )

    amount_ex_gst = round_to_cents(gross / (1 + gst_rate))
    return LineAmounts(
        amount_ex_gst=amount_ex_gst,
        gst_amount=gross - amount_ex_gst,
        amount_inc_gst=gross,
    )


def calculate_rcti_totals(lines: Iterable[Any]) -> RctiTotals:
    """Sum line amounts into subtotal, GST and total.

    Accepts anything exposing amount_ex_gst, gst_amount and amount_inc_gst
    (ORM lines or LineAmounts).
    """
    subtotal = ZERO
    gst = ZERO
    total = ZERO
    for line in lines:
        subtotal += to_decimal(line.amount_ex_gst)
        gst += to_decimal(line.gst_amount)
        total += to_decimal(line.amount_inc_gst)

    return RctiTotals(
        subtotal=round_to_cents(subtotal),
        gst=round_to_cents(gst),
        total=round_to_cents(total),
    )


def generate_invoice_number(
    existing_numbers: Iterable[str],
    week_ending: date,
    driver_or_business_name: str | None,
) -> str:
    """Build a unique invoice number: RCTI-DDMMYYYY-NAMEPART[-n].

    NAMEPART is the first ten characters of the name, upper-cased, with
    anything other than A-Z and 0-9 removed.
    """
    taken = set(existing_numbers)
    name_part = re.sub(r"[^A-Z0-9]", "", (driver_or_business_name or "")[:10].upper())
    base_number = f"RCTI-{week_ending:%d%m%Y}-{name_part}"

    if base_number not in taken:
        return base_number

    counter = 1
    while f"{base_number}-{counter}" in taken:
        counter += 1
    return f"{base_number}-{counter}"

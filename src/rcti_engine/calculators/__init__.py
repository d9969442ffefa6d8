"""RCTI calculation utilities."""

from rcti_engine.calculators.amounts import (
    calculate_line_amounts,
    calculate_rcti_totals,
    generate_invoice_number,
    round_to_cents,
    to_decimal,
)
from rcti_engine.calculators.breaks import calculate_lunch_break_lines
from rcti_engine.calculators.rate_resolver import (
    classify_truck_type,
    get_driver_rate_for_truck_type,
)
from rcti_engine.calculators.types import (
    BreakCandidate,
    BreakLine,
    DriverRates,
    GstMode,
    GstStatus,
    LineAmounts,
    RctiTotals,
)

__all__ = [
    "BreakCandidate",
    "BreakLine",
    "DriverRates",
    "GstMode",
    "GstStatus",
    "LineAmounts",
    "RctiTotals",
    "calculate_line_amounts",
    "calculate_lunch_break_lines",
    "calculate_rcti_totals",
    "classify_truck_type",
    "generate_invoice_number",
    "get_driver_rate_for_truck_type",
    "round_to_cents",
    "to_decimal",
]

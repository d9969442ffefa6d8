"""Unpaid lunch break deductions."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from rcti_engine.calculators.amounts import GST_RATE, calculate_line_amounts, to_decimal
from rcti_engine.calculators.types import BreakCandidate, BreakLine, GstMode, GstStatus

DEFAULT_BREAK_THRESHOLD_HOURS = Decimal("7")


def calculate_lunch_break_lines(
    lines: Iterable[BreakCandidate],
    driver_break_hours: Decimal | None,
    gst_status: GstStatus | str,
    gst_mode: GstMode | str = GstMode.EXCLUSIVE,
    threshold_hours: Decimal = DEFAULT_BREAK_THRESHOLD_HOURS,
    gst_rate: Decimal = GST_RATE,
) -> list[BreakLine]:
    """Build negative break lines for the week's job lines.

    Rules:
    - No breaks if the driver has no break hours configured (null or <= 0)
    - Only imported job lines (job_id set) attract a break
    - Only jobs with charged hours strictly over the threshold
    - One break line per (truck type, rate); its hours are the driver's break
      hours times the number of eligible jobs in that group
    """
    if driver_break_hours is None:
        return []
    break_hours = to_decimal(driver_break_hours)
    if break_hours <= 0:
        return []

    groups: dict[tuple[str, Decimal], Decimal] = {}
    for line in lines:
        if line.job_id is None:
            continue
        if to_decimal(line.charged_hours) <= threshold_hours:
            continue
        key = (line.truck_type, to_decimal(line.rate_per_hour))
        groups[key] = groups.get(key, Decimal("0")) + break_hours

    break_lines: list[BreakLine] = []
    for (truck_type, rate), hours in groups.items():
        break_lines.append(
            BreakLine(
                truck_type=truck_type,
                total_break_hours=hours,
                rate_per_hour=rate,
                description=f"Lunch Breaks - {truck_type}",
                amounts=calculate_line_amounts(
                    -hours, rate, gst_status, gst_mode, gst_rate=gst_rate
                ),
            )
        )
    return break_lines

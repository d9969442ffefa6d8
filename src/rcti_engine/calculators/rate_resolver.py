"""Driver rate resolution by truck type."""

from __future__ import annotations

from decimal import Decimal

from rcti_engine.calculators.types import DriverRates


def classify_truck_type(truck_type: str | None) -> str:
    """Map a free-text truck label to a rate class.

    Checked in priority order, case-insensitive substring match:
    1. "semi" and "crane" -> semi_crane
    2. "semi" -> semi
    3. "crane" -> crane
    4. "tray" -> tray
    5. anything else -> tray
    """
    normalized = (truck_type or "").lower().strip()

    if "semi" in normalized and "crane" in normalized:
        return "semi_crane"
    if "semi" in normalized:
        return "semi"
    if "crane" in normalized:
        return "crane"
    return "tray"


def get_driver_rate_for_truck_type(
    truck_type: str | None, rates: DriverRates
) -> Decimal | None:
    """Return the driver's hourly rate for a truck type (None if unset)."""
    return getattr(rates, classify_truck_type(truck_type))

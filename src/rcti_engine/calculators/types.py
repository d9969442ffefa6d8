"""Type definitions for the RCTI calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any


class GstStatus(str, Enum):
    """Whether the driver is registered for GST."""

    REGISTERED = "registered"
    NOT_REGISTERED = "not_registered"


class GstMode(str, Enum):
    """Whether line rates already include GST."""

    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


@dataclass(frozen=True)
class LineAmounts:
    """Derived amounts for one RCTI line."""

    amount_ex_gst: Decimal
    gst_amount: Decimal
    amount_inc_gst: Decimal

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "amount_ex_gst": self.amount_ex_gst,
            "gst_amount": self.gst_amount,
            "amount_inc_gst": self.amount_inc_gst,
        }


@dataclass(frozen=True)
class RctiTotals:
    """Cached invoice totals summed from lines."""

    subtotal: Decimal
    gst: Decimal
    total: Decimal


@dataclass(frozen=True)
class DriverRates:
    """A driver's hourly rates per truck class. Any rate may be unset."""

    tray: Decimal | None = None
    crane: Decimal | None = None
    semi: Decimal | None = None
    semi_crane: Decimal | None = None

    @classmethod
    def from_driver(cls, driver: Any) -> DriverRates:
        return cls(
            tray=driver.tray,
            crane=driver.crane,
            semi=driver.semi,
            semi_crane=driver.semi_crane,
        )


@dataclass(frozen=True)
class BreakCandidate:
    """The fields of an existing line that decide whether it attracts a break."""

    job_id: int | None
    truck_type: str
    charged_hours: Decimal
    rate_per_hour: Decimal


@dataclass(frozen=True)
class BreakLine:
    """A synthetic negative line for unpaid break time."""

    truck_type: str
    total_break_hours: Decimal
    rate_per_hour: Decimal
    description: str
    amounts: LineAmounts

    @property
    def charged_hours(self) -> Decimal:
        return -self.total_break_hours


"""ORM models."""

from rcti_engine.models.base import Base, TimestampMixin
from rcti_engine.models.fleet import Driver, Job
from rcti_engine.models.rcti import (
    BREAK_DEDUCTION_CUSTOMER,
    Rcti,
    RctiDeduction,
    RctiDeductionApplication,
    RctiLine,
    RctiStatusChange,
)

__all__ = [
    "BREAK_DEDUCTION_CUSTOMER",
    "Base",
    "Driver",
    "Job",
    "Rcti",
    "RctiDeduction",
    "RctiDeductionApplication",
    "RctiLine",
    "RctiStatusChange",
    "TimestampMixin",
]

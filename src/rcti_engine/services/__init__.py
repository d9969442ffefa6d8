"""RCTI lifecycle, line and deduction services."""

from rcti_engine.services.deduction_ledger import (
    DeductionFrequency,
    DeductionLedger,
    DeductionStatus,
    DeductionType,
    LedgerResult,
    is_due_for_week,
)
from rcti_engine.services.deduction_service import DeductionService
from rcti_engine.services.line_service import LineService
from rcti_engine.services.overrides import parse_deduction_overrides
from rcti_engine.services.rcti_service import RctiService
from rcti_engine.services.state_machine import RctiStateMachine, RctiStatus

__all__ = [
    "DeductionFrequency",
    "DeductionLedger",
    "DeductionService",
    "DeductionStatus",
    "DeductionType",
    "LedgerResult",
    "LineService",
    "RctiService",
    "RctiStateMachine",
    "RctiStatus",
    "is_due_for_week",
    "parse_deduction_overrides",
]

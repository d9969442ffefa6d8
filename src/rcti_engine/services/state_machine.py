"""RCTI state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from rcti_engine.errors import InvalidStateError

if TYPE_CHECKING:
    from rcti_engine.models import Rcti


class RctiStatus(str, Enum):
    """RCTI status values."""

    DRAFT = "draft"
    FINALISED = "finalised"
    PAID = "paid"


class RctiStateMachine:
    """State machine for RCTI status transitions.

    Allowed transitions:
    - draft → finalised (finalize: deductions applied, totals locked)
    - finalised → paid (mark paid)
    - finalised → draft (unfinalize: deductions reversed)
    - paid → draft (revert: deductions reversed, reason required)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        RctiStatus.DRAFT: [RctiStatus.FINALISED],
        RctiStatus.FINALISED: [RctiStatus.PAID, RctiStatus.DRAFT],
        RctiStatus.PAID: [RctiStatus.DRAFT],
    }

    # Statuses where lines and header details can change, and the RCTI can be deleted
    EDITABLE = {RctiStatus.DRAFT}

    # Messages for rejected transitions, keyed by target status
    TRANSITION_ERRORS: dict[str, str] = {
        RctiStatus.FINALISED: "Only draft RCTIs can be finalised",
        RctiStatus.PAID: "Only finalised RCTIs can be marked as paid",
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.get_next_statuses(from_status)

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidStateError if invalid."""
        if not cls.can_transition(from_status, to_status):
            message = cls.TRANSITION_ERRORS.get(
                to_status,
                f"Cannot transition from '{from_status}' to '{to_status}'",
            )
            raise InvalidStateError(message, from_status, to_status)

    @classmethod
    def can_edit(cls, status: str) -> bool:
        """Check if lines and details can change in this status."""
        return status in cls.EDITABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def require_editable(cls, rcti: Rcti, action: str) -> None:
        """Raise unless the RCTI is editable, e.g. action="add lines to"."""
        if not cls.can_edit(rcti.status):
            raise InvalidStateError(f"Can only {action} draft RCTIs", rcti.status)

    @classmethod
    def validate_rcti_for_transition(cls, rcti: Rcti, to_status: str) -> list[str]:
        """Validate an RCTI for a specific transition, returning any errors.

        Expects ``rcti.lines`` to be loaded. Returns list of error messages
        (empty if valid).
        """
        errors: list[str] = []
        from_status = rcti.status

        if not cls.can_transition(from_status, to_status):
            errors.append(
                cls.TRANSITION_ERRORS.get(
                    to_status, f"Cannot transition from '{from_status}' to '{to_status}'"
                )
            )
            return errors

        if to_status == RctiStatus.FINALISED and not rcti.lines:
            errors.append("Cannot finalise RCTI with no lines")

        return errors

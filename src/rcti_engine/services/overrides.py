"""Deduction override parsing for finalize requests."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from rcti_engine.calculators import to_decimal
from rcti_engine.errors import ValidationError

# Per-deduction amounts chosen at finalize. None means skip this cycle.
DeductionOverrides = dict[int, Decimal | None]


def parse_deduction_overrides(raw: Mapping[Any, Any] | None) -> DeductionOverrides:
    """Validate and normalise a raw override mapping.

    Keys are deduction ids (ints or numeric strings). Values must be finite
    numbers, numeric strings or None. One bad value fails the whole batch,
    so nothing is applied from a partially valid request.
    """
    if not raw:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("Deduction overrides must be an object")

    overrides: DeductionOverrides = {}
    for key, value in raw.items():
        try:
            deduction_id = int(key)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid deduction ID in overrides: {key}") from exc

        if value is None:
            overrides[deduction_id] = None
            continue

        try:
            overrides[deduction_id] = to_decimal(value)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid deduction override value for deduction {deduction_id}"
            ) from exc

    return overrides

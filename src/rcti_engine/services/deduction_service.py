"""Deduction agreement management."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rcti_engine.calculators import round_to_cents, to_decimal
from rcti_engine.database import atomic
from rcti_engine.errors import InvalidStateError, NotFoundError, ValidationError
from rcti_engine.models import Driver, RctiDeduction, RctiDeductionApplication
from rcti_engine.services.deduction_ledger import (
    DeductionFrequency,
    DeductionStatus,
    DeductionType,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

FREQUENCY_ERROR = "Frequency must be 'once', 'weekly', 'fortnightly', or 'monthly'"
TYPE_ERROR = "Type must be 'deduction' or 'reimbursement'"

UPDATABLE_FIELDS = {
    "description",
    "total_amount",
    "frequency",
    "amount_per_cycle",
    "start_date",
    "notes",
}


@dataclass(frozen=True)
class DeleteOutcome:
    """Result of deleting a deduction: hard delete or cancellation."""

    deleted: bool
    deduction: RctiDeduction | None = None

    @property
    def message(self) -> str:
        return "Deduction deleted successfully" if self.deleted else "Deduction cancelled"


def _amount(value: Any, message: str) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError as exc:
        raise ValidationError(message) from exc
    if amount <= 0:
        raise ValidationError(message)
    return round_to_cents(amount)


def _start_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationError("Invalid startDate") from exc


def _frequency(value: Any) -> str:
    try:
        return DeductionFrequency(value).value
    except ValueError as exc:
        raise ValidationError(FREQUENCY_ERROR) from exc


def deduction_load_options() -> list:
    return [
        selectinload(RctiDeduction.driver),
        selectinload(RctiDeduction.applications).selectinload(RctiDeductionApplication.rcti),
    ]


class DeductionService:
    """Service for creating and maintaining deduction agreements.

    Balances only move through the ledger at finalize, unfinalize and revert.
    This service never touches amount_paid except to keep amount_remaining
    consistent when the total changes before any application.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_deduction(self, deduction_id: int) -> RctiDeduction:
        """Load a deduction with its driver and applications."""
        result = await self.session.execute(
            select(RctiDeduction)
            .where(RctiDeduction.deduction_id == deduction_id)
            .options(*deduction_load_options())
            .execution_options(populate_existing=True)
        )
        deduction = result.scalar_one_or_none()
        if deduction is None:
            raise NotFoundError("Deduction not found")
        return deduction

    async def list_deductions(
        self,
        driver_id: int | None = None,
        status: str | None = DeductionStatus.ACTIVE.value,
        deduction_type: str | None = None,
    ) -> list[RctiDeduction]:
        """List deductions, active only by default. Pass status=None for all."""
        stmt = select(RctiDeduction).options(*deduction_load_options())

        if driver_id is not None:
            stmt = stmt.where(RctiDeduction.driver_id == driver_id)
        if status is not None:
            try:
                stmt = stmt.where(RctiDeduction.status == DeductionStatus(status).value)
            except ValueError as exc:
                raise ValidationError("Invalid status filter") from exc
        if deduction_type is not None:
            try:
                stmt = stmt.where(
                    RctiDeduction.deduction_type == DeductionType(deduction_type).value
                )
            except ValueError as exc:
                raise ValidationError(TYPE_ERROR) from exc

        stmt = stmt.order_by(
            RctiDeduction.status, RctiDeduction.start_date.desc(), RctiDeduction.deduction_id
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_deduction(
        self,
        driver_id: int,
        deduction_type: str,
        description: str,
        total_amount: Any,
        frequency: str,
        amount_per_cycle: Any = None,
        start_date: Any = None,
        notes: str | None = None,
    ) -> RctiDeduction:
        """Create a deduction or reimbursement agreement for a driver.

        A 'once' deduction applies its whole total in one cycle. Recurring
        deductions need a positive amount per cycle. start_date defaults to
        today.
        """
        if not description or not str(description).strip():
            raise ValidationError("Missing required fields")
        if total_amount is None or not frequency or not deduction_type:
            raise ValidationError("Missing required fields")

        parsed_start = _start_date(start_date) if start_date else date.today()

        try:
            parsed_type = DeductionType(deduction_type).value
        except ValueError as exc:
            raise ValidationError(TYPE_ERROR) from exc
        parsed_frequency = _frequency(frequency)
        total = _amount(total_amount, "Total amount must be greater than 0")

        if parsed_frequency == DeductionFrequency.ONCE:
            per_cycle = total
        else:
            if amount_per_cycle is None:
                raise ValidationError("Amount per cycle required for recurring deductions")
            per_cycle = _amount(
                amount_per_cycle, "Amount per cycle required for recurring deductions"
            )

        async with atomic(self.session, "Failed to create deduction"):
            driver = await self.session.get(Driver, driver_id)
            if driver is None:
                raise NotFoundError("Driver not found")
            if driver.is_employee:
                raise ValidationError("Deductions only apply to contractors and subcontractors")

            deduction = RctiDeduction(
                driver_id=driver_id,
                deduction_type=parsed_type,
                description=str(description).strip(),
                total_amount=total,
                amount_paid=ZERO,
                amount_remaining=total,
                amount_per_cycle=per_cycle,
                frequency=parsed_frequency,
                start_date=parsed_start,
                status=DeductionStatus.ACTIVE.value,
                notes=notes,
            )
            self.session.add(deduction)
            await self.session.flush()
            deduction_id = deduction.deduction_id

        logger.info(
            "Created deduction",
            extra={
                "deduction_id": deduction_id,
                "driver_id": driver_id,
                "deduction_type": parsed_type,
                "frequency": parsed_frequency,
            },
        )
        return await self.get_deduction(deduction_id)

    async def _application_count(self, deduction_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RctiDeductionApplication)
            .where(RctiDeductionApplication.deduction_id == deduction_id)
        )
        return result.scalar_one()

    async def update_deduction(
        self, deduction_id: int, changes: Mapping[str, Any]
    ) -> RctiDeduction:
        """Edit a deduction that has not yet been applied to any RCTI."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown deduction fields: {', '.join(sorted(unknown))}")

        async with atomic(self.session, "Failed to update deduction"):
            result = await self.session.execute(
                select(RctiDeduction)
                .where(RctiDeduction.deduction_id == deduction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            deduction = result.scalar_one_or_none()
            if deduction is None:
                raise NotFoundError("Deduction not found")

            if await self._application_count(deduction_id) > 0:
                raise InvalidStateError(
                    "Cannot update deduction that has already been applied to RCTIs",
                    deduction.status,
                )

            if "description" in changes:
                if not changes["description"] or not str(changes["description"]).strip():
                    raise ValidationError("Description cannot be empty")
                deduction.description = str(changes["description"]).strip()
            if "notes" in changes:
                deduction.notes = changes["notes"]
            if "start_date" in changes:
                deduction.start_date = _start_date(changes["start_date"])
            if "frequency" in changes:
                deduction.frequency = _frequency(changes["frequency"])
            if "total_amount" in changes:
                total = _amount(changes["total_amount"], "Total amount must be greater than 0")
                deduction.total_amount = total
                deduction.amount_remaining = round_to_cents(total - deduction.amount_paid)
            if "amount_per_cycle" in changes:
                deduction.amount_per_cycle = _amount(
                    changes["amount_per_cycle"], "Amount per cycle must be greater than 0"
                )

            if deduction.frequency == DeductionFrequency.ONCE:
                deduction.amount_per_cycle = deduction.total_amount

            await self.session.flush()

        logger.info("Updated deduction", extra={"deduction_id": deduction_id})
        return await self.get_deduction(deduction_id)

    async def delete_deduction(self, deduction_id: int) -> DeleteOutcome:
        """Hard delete an unapplied deduction, otherwise cancel it.

        A cancelled deduction keeps its application history and is never
        applied again.
        """
        async with atomic(self.session, "Failed to delete deduction"):
            result = await self.session.execute(
                select(RctiDeduction)
                .where(RctiDeduction.deduction_id == deduction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            deduction = result.scalar_one_or_none()
            if deduction is None:
                raise NotFoundError("Deduction not found")

            if await self._application_count(deduction_id) == 0:
                await self.session.delete(deduction)
                await self.session.flush()
                outcome = DeleteOutcome(deleted=True)
            else:
                deduction.status = DeductionStatus.CANCELLED.value
                await self.session.flush()
                outcome = DeleteOutcome(deleted=False)

        if outcome.deleted:
            logger.info("Deleted deduction", extra={"deduction_id": deduction_id})
            return outcome

        logger.info("Cancelled deduction", extra={"deduction_id": deduction_id})
        return DeleteOutcome(deleted=False, deduction=await self.get_deduction(deduction_id))

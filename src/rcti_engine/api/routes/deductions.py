"""Deduction agreement API endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Query, status

from rcti_engine.api.dependencies import DbSession, parse_id
from rcti_engine.api.schemas import (
    DeductionCreate,
    DeductionDeleteResponse,
    DeductionResponse,
    DeductionUpdate,
    ErrorResponse,
    PendingDeductionResponse,
)
from rcti_engine.errors import ValidationError
from rcti_engine.services.deduction_ledger import DeductionLedger
from rcti_engine.services.deduction_service import DeductionService

router = APIRouter(prefix="/rcti-deductions", tags=["rcti-deductions"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

# Query value that lists deductions in every status
ALL_STATUSES = "all"


@router.get("", response_model=list[DeductionResponse], responses=ERROR_RESPONSES)
async def list_deductions(
    db: DbSession,
    driver_id: Annotated[str | None, Query(alias="driverId")] = None,
    deduction_status: Annotated[str | None, Query(alias="status")] = None,
    deduction_type: Annotated[str | None, Query(alias="type")] = None,
) -> list[DeductionResponse]:
    """List deductions. Active only unless ?status= is given (status=all for every status)."""
    parsed_driver_id = None
    if driver_id is not None:
        try:
            parsed_driver_id = int(driver_id)
        except ValueError:
            raise ValidationError("Invalid driverId - must be a valid integer")

    if deduction_status == ALL_STATUSES:
        status_filter = None
    else:
        status_filter = deduction_status or "active"

    deductions = await DeductionService(db).list_deductions(
        driver_id=parsed_driver_id,
        status=status_filter,
        deduction_type=deduction_type,
    )
    return [DeductionResponse.model_validate(d) for d in deductions]


@router.post(
    "",
    response_model=DeductionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_deduction(db: DbSession, payload: DeductionCreate) -> DeductionResponse:
    """Create a deduction or reimbursement agreement."""
    if payload.driver_id is None:
        raise ValidationError("Missing required fields")
    if payload.driver_id <= 0:
        raise ValidationError("Invalid driverId - must be a positive integer")

    deduction = await DeductionService(db).create_deduction(
        driver_id=payload.driver_id,
        deduction_type=payload.deduction_type,
        description=payload.description,
        total_amount=payload.total_amount,
        frequency=payload.frequency,
        amount_per_cycle=payload.amount_per_cycle,
        start_date=payload.start_date,
        notes=payload.notes,
    )
    return DeductionResponse.model_validate(deduction)


@router.get(
    "/pending",
    response_model=list[PendingDeductionResponse],
    responses=ERROR_RESPONSES,
)
async def get_pending_deductions(
    db: DbSession,
    driver_id: Annotated[str | None, Query(alias="driverId")] = None,
    week_ending: Annotated[str | None, Query(alias="weekEnding")] = None,
) -> list[PendingDeductionResponse]:
    """Preview the deductions finalize would apply by default for a week."""
    if not driver_id:
        raise ValidationError("Missing driverId parameter")
    if not week_ending:
        raise ValidationError("Missing weekEnding parameter")
    try:
        parsed_driver_id = int(driver_id)
    except ValueError:
        raise ValidationError("Invalid driverId - must be a valid integer")
    try:
        parsed_week_ending = date.fromisoformat(week_ending[:10])
    except ValueError:
        raise ValidationError("Invalid weekEnding - must be a valid date")

    pending = await DeductionLedger(db).get_pending_deductions(
        parsed_driver_id, parsed_week_ending
    )
    return [
        PendingDeductionResponse(
            deduction_id=item.deduction.deduction_id,
            deduction_type=item.deduction.deduction_type,
            description=item.deduction.description,
            frequency=item.deduction.frequency,
            amount_remaining=item.deduction.amount_remaining,
            amount_per_cycle=item.deduction.amount_per_cycle,
            amount_to_apply=item.amount,
        )
        for item in pending
    ]


@router.get("/{deduction_id}", response_model=DeductionResponse, responses=ERROR_RESPONSES)
async def get_deduction(db: DbSession, deduction_id: str) -> DeductionResponse:
    """Get a deduction with its application history."""
    deduction = await DeductionService(db).get_deduction(parse_id(deduction_id, "deduction"))
    return DeductionResponse.model_validate(deduction)


@router.patch("/{deduction_id}", response_model=DeductionResponse, responses=ERROR_RESPONSES)
async def update_deduction(
    db: DbSession, deduction_id: str, payload: DeductionUpdate
) -> DeductionResponse:
    """Edit a deduction that has not been applied yet."""
    deduction = await DeductionService(db).update_deduction(
        parse_id(deduction_id, "deduction"),
        payload.model_dump(exclude_unset=True),
    )
    return DeductionResponse.model_validate(deduction)


@router.delete(
    "/{deduction_id}",
    response_model=DeductionDeleteResponse,
    responses=ERROR_RESPONSES,
)
async def delete_deduction(db: DbSession, deduction_id: str) -> DeductionDeleteResponse:
    """Delete an unapplied deduction, or cancel one with history."""
    outcome = await DeductionService(db).delete_deduction(parse_id(deduction_id, "deduction"))
    return DeductionDeleteResponse(
        message=outcome.message,
        deduction=(
            DeductionResponse.model_validate(outcome.deduction) if outcome.deduction else None
        ),
    )

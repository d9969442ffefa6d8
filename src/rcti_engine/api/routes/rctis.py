"""RCTI API endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Query, status

from rcti_engine.api.dependencies import Actor, DbSession, parse_id
from rcti_engine.api.schemas import (
    DeductionSummaryResponse,
    ErrorResponse,
    FinalizeRequest,
    GstSettingsUpdate,
    LinesAddRequest,
    LineUpdate,
    RctiCreate,
    RctiDeleteResponse,
    RctiDetailsUpdate,
    RctiResponse,
    RctiSummaryResponse,
    RevertRequest,
)
from rcti_engine.errors import ValidationError
from rcti_engine.services.line_service import LineService
from rcti_engine.services.rcti_service import RctiService

router = APIRouter(prefix="/rctis", tags=["rctis"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# ============================================================================
# RCTI CRUD
# ============================================================================


@router.get("", response_model=list[RctiSummaryResponse], responses=ERROR_RESPONSES)
async def list_rctis(
    db: DbSession,
    driver_id: Annotated[int | None, Query(alias="driverId")] = None,
    rcti_status: Annotated[str | None, Query(alias="status")] = None,
    start_date: Annotated[date | None, Query(alias="startDate")] = None,
    end_date: Annotated[date | None, Query(alias="endDate")] = None,
) -> list[RctiSummaryResponse]:
    """List RCTIs, newest week first."""
    rctis = await RctiService(db).list_rctis(
        driver_id=driver_id,
        status=rcti_status,
        start_date=start_date,
        end_date=end_date,
    )
    return [RctiSummaryResponse.model_validate(rcti) for rcti in rctis]


@router.post(
    "",
    response_model=RctiResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_rcti(db: DbSession, payload: RctiCreate) -> RctiResponse:
    """Create a draft RCTI from the driver's unbilled jobs for the week."""
    rcti = await RctiService(db).create_rcti(**payload.model_dump())
    return RctiResponse.model_validate(rcti)


@router.get("/{rcti_id}", response_model=RctiResponse, responses=ERROR_RESPONSES)
async def get_rcti(db: DbSession, rcti_id: str) -> RctiResponse:
    """Get an RCTI with lines, deductions and status history."""
    rcti = await RctiService(db).get_rcti(parse_id(rcti_id, "RCTI"))
    return RctiResponse.model_validate(rcti)


@router.patch("/{rcti_id}", response_model=RctiResponse, responses=ERROR_RESPONSES)
async def update_rcti_details(
    db: DbSession, rcti_id: str, payload: RctiDetailsUpdate
) -> RctiResponse:
    """Edit driver, bank and notes details on a draft RCTI."""
    rcti = await RctiService(db).update_details(
        parse_id(rcti_id, "RCTI"), payload.model_dump(exclude_unset=True)
    )
    return RctiResponse.model_validate(rcti)


@router.delete("/{rcti_id}", response_model=RctiDeleteResponse, responses=ERROR_RESPONSES)
async def delete_rcti(db: DbSession, rcti_id: str) -> RctiDeleteResponse:
    """Delete a draft RCTI and its lines."""
    await RctiService(db).delete_rcti(parse_id(rcti_id, "RCTI"))
    return RctiDeleteResponse(message="RCTI deleted successfully")


@router.patch("/{rcti_id}/gst", response_model=RctiResponse, responses=ERROR_RESPONSES)
async def update_gst_settings(
    db: DbSession, rcti_id: str, payload: GstSettingsUpdate
) -> RctiResponse:
    """Change GST status/mode on a draft RCTI and reprice its lines."""
    rcti = await LineService(db).update_gst_settings(
        parse_id(rcti_id, "RCTI"),
        gst_status=payload.gst_status,
        gst_mode=payload.gst_mode,
    )
    return RctiResponse.model_validate(rcti)


# ============================================================================
# Lines
# ============================================================================


@router.post(
    "/{rcti_id}/lines",
    response_model=RctiResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def add_lines(db: DbSession, rcti_id: str, payload: LinesAddRequest) -> RctiResponse:
    """Import jobs (jobIds) or add a manual line (manualLine)."""
    parsed_id = parse_id(rcti_id, "RCTI")
    service = LineService(db)

    if payload.job_ids is not None:
        rcti = await service.add_jobs(parsed_id, payload.job_ids)
    elif payload.manual_line is not None:
        rcti = await service.add_manual_line(parsed_id, payload.manual_line.model_dump())
    else:
        raise ValidationError("Must provide either jobIds or manualLine")

    return RctiResponse.model_validate(rcti)


@router.patch(
    "/{rcti_id}/lines/{line_id}",
    response_model=RctiResponse,
    responses=ERROR_RESPONSES,
)
async def update_line(
    db: DbSession, rcti_id: str, line_id: str, payload: LineUpdate
) -> RctiResponse:
    """Edit a line on a draft RCTI."""
    rcti = await LineService(db).update_line(
        parse_id(rcti_id, "RCTI"),
        parse_id(line_id, "line"),
        payload.model_dump(exclude_unset=True),
    )
    return RctiResponse.model_validate(rcti)


@router.delete(
    "/{rcti_id}/lines/{line_id}",
    response_model=RctiResponse,
    responses=ERROR_RESPONSES,
)
async def remove_line(db: DbSession, rcti_id: str, line_id: str) -> RctiResponse:
    """Remove a line from a draft RCTI."""
    rcti = await LineService(db).remove_line(
        parse_id(rcti_id, "RCTI"), parse_id(line_id, "line")
    )
    return RctiResponse.model_validate(rcti)


# ============================================================================
# Lifecycle
# ============================================================================


@router.post("/{rcti_id}/finalize", response_model=RctiResponse, responses=ERROR_RESPONSES)
async def finalize_rcti(
    db: DbSession,
    actor: Actor,
    rcti_id: str,
    payload: FinalizeRequest | None = None,
) -> RctiResponse:
    """Finalise a draft RCTI, applying due deductions."""
    rcti = await RctiService(db).finalize(
        parse_id(rcti_id, "RCTI"),
        deduction_overrides=payload.deduction_overrides if payload else None,
        actor=actor,
    )
    return RctiResponse.model_validate(rcti)


@router.post("/{rcti_id}/mark-paid", response_model=RctiResponse, responses=ERROR_RESPONSES)
async def mark_rcti_paid(db: DbSession, actor: Actor, rcti_id: str) -> RctiResponse:
    """Mark a finalised RCTI as paid."""
    rcti = await RctiService(db).mark_paid(parse_id(rcti_id, "RCTI"), actor=actor)
    return RctiResponse.model_validate(rcti)


@router.post("/{rcti_id}/unfinalize", response_model=RctiResponse, responses=ERROR_RESPONSES)
async def unfinalize_rcti(db: DbSession, actor: Actor, rcti_id: str) -> RctiResponse:
    """Return a finalised RCTI to draft, reversing its deductions."""
    rcti = await RctiService(db).unfinalize(parse_id(rcti_id, "RCTI"), actor=actor)
    return RctiResponse.model_validate(rcti)


@router.post("/{rcti_id}/revert", response_model=RctiResponse, responses=ERROR_RESPONSES)
async def revert_rcti(
    db: DbSession, actor: Actor, rcti_id: str, payload: RevertRequest
) -> RctiResponse:
    """Revert a paid RCTI to draft. Requires a reason."""
    rcti = await RctiService(db).revert_to_draft(
        parse_id(rcti_id, "RCTI"), payload.reason, actor=actor
    )
    return RctiResponse.model_validate(rcti)


@router.get(
    "/{rcti_id}/deductions",
    response_model=DeductionSummaryResponse,
    responses=ERROR_RESPONSES,
)
async def get_rcti_deductions(db: DbSession, rcti_id: str) -> DeductionSummaryResponse:
    """Deduction applications recorded against an RCTI."""
    summary = await RctiService(db).get_deduction_summary(parse_id(rcti_id, "RCTI"))
    return DeductionSummaryResponse.model_validate(summary)

"""Pydantic schemas for API request/response models.

JSON bodies use camelCase; Python attributes stay snake_case. Request
payload fields are deliberately lax (strings or numbers, mostly optional) so
the services own the validation messages.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# RCTI schemas
# ============================================================================


class RctiCreate(CamelModel):
    """Schema for creating a draft RCTI from a driver's week of jobs."""

    driver_id: int
    week_ending: date
    driver_name: str | None = None
    business_name: str | None = None
    driver_address: str | None = None
    driver_abn: str | None = None
    gst_status: str | None = None
    gst_mode: str | None = None
    bank_account_name: str | None = None
    bank_bsb: str | None = None
    bank_account_number: str | None = None
    notes: str | None = None


class RctiLineResponse(CamelModel):
    """Schema for an RCTI line."""

    rcti_line_id: int
    rcti_id: int
    job_id: int | None = None
    job_date: date
    customer: str
    truck_type: str
    description: str | None = None
    charged_hours: Decimal
    rate_per_hour: Decimal
    amount_ex_gst: Decimal
    gst_amount: Decimal
    amount_inc_gst: Decimal
    is_break_deduction: bool


class DeductionBrief(CamelModel):
    """Deduction fields shown alongside an application."""

    deduction_id: int
    deduction_type: str = Field(alias="type")
    description: str
    frequency: str


class DeductionApplicationResponse(CamelModel):
    """Schema for one deduction application on an RCTI."""

    application_id: int
    deduction_id: int
    rcti_id: int
    amount: Decimal
    applied_at: datetime
    deduction: DeductionBrief | None = None


class RctiStatusChangeResponse(CamelModel):
    """Schema for a status change audit row."""

    status_change_id: int
    from_status: str
    to_status: str
    reason: str | None = None
    changed_by: str | None = None
    changed_at: datetime


class RctiSummaryResponse(CamelModel):
    """Schema for an RCTI in list views."""

    rcti_id: int
    invoice_number: str
    driver_id: int
    driver_name: str
    business_name: str | None = None
    week_ending: date
    gst_status: str
    gst_mode: str
    subtotal: Decimal
    gst: Decimal
    total: Decimal
    status: str
    paid_at: datetime | None = None


class RctiResponse(RctiSummaryResponse):
    """Schema for a full RCTI."""

    driver_address: str | None = None
    driver_abn: str | None = None
    bank_account_name: str | None = None
    bank_bsb: str | None = None
    bank_account_number: str | None = None
    reverted_to_draft_at: datetime | None = None
    reverted_to_draft_reason: str | None = None
    notes: str | None = None
    lines: list[RctiLineResponse] = []
    deduction_applications: list[DeductionApplicationResponse] = []
    status_changes: list[RctiStatusChangeResponse] = []


class RctiDetailsUpdate(CamelModel):
    """Schema for editing header details of a draft RCTI; only given fields change."""

    driver_name: str | None = None
    business_name: str | None = None
    driver_address: str | None = None
    driver_abn: str | None = None
    bank_account_name: str | None = None
    bank_bsb: str | None = None
    bank_account_number: str | None = None
    notes: str | None = None


class RctiDeleteResponse(CamelModel):
    """Schema for a deleted draft."""

    message: str


class GstSettingsUpdate(CamelModel):
    """Schema for changing GST settings on a draft RCTI."""

    gst_status: str | None = None
    gst_mode: str | None = None


class ManualLinePayload(CamelModel):
    """Schema for a manual line entry."""

    job_date: str | None = None
    customer: str | None = None
    truck_type: str | None = None
    description: str | None = None
    charged_hours: Decimal | str | None = None
    rate_per_hour: Decimal | str | None = None


class LinesAddRequest(CamelModel):
    """Either jobIds or manualLine must be given."""

    job_ids: Any = None
    manual_line: ManualLinePayload | None = None


class LineUpdate(ManualLinePayload):
    """Schema for editing a line; only the given fields change."""


class FinalizeRequest(CamelModel):
    """Schema for finalizing an RCTI.

    deductionOverrides maps deduction id to an amount, or null to skip.
    """

    deduction_overrides: dict[str, Any] | None = None


class RevertRequest(CamelModel):
    """Schema for reverting a paid RCTI to draft."""

    reason: str | None = None


# ============================================================================
# Deduction schemas
# ============================================================================


class DeductionCreate(CamelModel):
    """Schema for creating a deduction or reimbursement agreement."""

    driver_id: int | None = None
    deduction_type: str | None = Field(default=None, alias="type")
    description: str | None = None
    total_amount: Decimal | str | None = None
    frequency: str | None = None
    amount_per_cycle: Decimal | str | None = None
    start_date: str | None = None
    notes: str | None = None


class DeductionUpdate(CamelModel):
    """Schema for editing an unapplied deduction."""

    description: str | None = None
    total_amount: Decimal | str | None = None
    frequency: str | None = None
    amount_per_cycle: Decimal | str | None = None
    start_date: str | None = None
    notes: str | None = None


class DeductionApplicationItem(CamelModel):
    """An application as seen from its deduction."""

    application_id: int
    rcti_id: int
    amount: Decimal
    applied_at: datetime


class DeductionResponse(CamelModel):
    """Schema for a deduction agreement."""

    deduction_id: int
    driver_id: int
    deduction_type: str = Field(alias="type")
    description: str
    total_amount: Decimal
    amount_paid: Decimal
    amount_remaining: Decimal
    amount_per_cycle: Decimal | None = None
    frequency: str
    start_date: date
    status: str
    completed_at: datetime | None = None
    notes: str | None = None
    applications: list[DeductionApplicationItem] = []


class DeductionDeleteResponse(CamelModel):
    """Schema for delete-or-cancel."""

    message: str
    deduction: DeductionResponse | None = None


class PendingDeductionResponse(CamelModel):
    """A deduction finalize would apply by default."""

    deduction_id: int
    deduction_type: str = Field(alias="type")
    description: str
    frequency: str
    amount_remaining: Decimal
    amount_per_cycle: Decimal | None = None
    amount_to_apply: Decimal


class DeductionSummaryResponse(CamelModel):
    """Applications recorded against an RCTI, with totals."""

    rcti_id: int
    applications: list[DeductionApplicationResponse]
    total_deductions: Decimal
    total_reimbursements: Decimal
    net_adjustment: Decimal


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(CamelModel):
    """Standard error response."""

    detail: str
    code: str

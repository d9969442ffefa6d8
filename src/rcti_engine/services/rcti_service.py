"""RCTI service - main orchestrator for the invoice lifecycle."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rcti_engine.calculators import (
    DriverRates,
    GstMode,
    GstStatus,
    generate_invoice_number,
    round_to_cents,
)
from rcti_engine.config import Settings, get_settings
from rcti_engine.database import atomic
from rcti_engine.errors import (
    InvalidStateError,
    NotFoundError,
    NoValidJobsError,
    ValidationError,
)
from rcti_engine.models import Driver, Job, Rcti, RctiLine, RctiStatusChange
from rcti_engine.services.deduction_ledger import DeductionLedger, DeductionSummary
from rcti_engine.services.line_service import LineService, build_job_line
from rcti_engine.services.overrides import parse_deduction_overrides
from rcti_engine.services.queries import load_rcti
from rcti_engine.services.state_machine import RctiStateMachine, RctiStatus

logger = logging.getLogger(__name__)


def week_bounds(week_ending: date) -> tuple[date, date]:
    """Monday..Sunday week containing week_ending."""
    week_start = week_ending - timedelta(days=week_ending.weekday())
    return week_start, week_start + timedelta(days=6)


def parse_date(value: Any, message: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationError(message) from exc


# Header fields editable on a draft, with their maximum lengths
DETAIL_FIELDS: dict[str, int] = {
    "driver_name": 100,
    "business_name": 100,
    "driver_address": 500,
    "driver_abn": 11,
    "bank_account_name": 100,
    "bank_bsb": 6,
    "bank_account_number": 20,
    "notes": 1000,
}


def clean_detail(field: str, value: Any) -> str | None:
    """Normalise one header field: blanks become null, ABN and BSB lose spacing."""
    if value is None:
        return None
    text = str(value).strip()
    if field in ("driver_abn", "bank_bsb"):
        text = re.sub(r"[\s-]", "", text)
    if not text:
        return None

    if field == "driver_abn" and not re.fullmatch(r"\d{11}", text):
        raise ValidationError("ABN must be 11 digits")
    if field == "bank_bsb" and not re.fullmatch(r"\d{6}", text):
        raise ValidationError("BSB must be 6 digits")
    if len(text) > DETAIL_FIELDS[field]:
        raise ValidationError(f"{field} must be at most {DETAIL_FIELDS[field]} characters")
    return text


class RctiService:
    """Service for managing the RCTI lifecycle.

    Operations:
    - create_rcti: Build a draft from the driver's unbilled jobs for a week
    - update_details, delete_rcti: Edit or remove a draft
    - finalize: Apply deductions, lock totals, draft → finalised
    - mark_paid: finalised → paid
    - unfinalize: Reverse deductions, finalised → draft
    - revert_to_draft: Reverse deductions, paid → draft, with a reason

    Each transition writes a status change audit row and runs in a single
    transaction with a conditional status update, so a concurrent transition
    on the same RCTI makes the later one fail.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        ledger: DeductionLedger | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.ledger = ledger or DeductionLedger(session)
        self.line_service = LineService(session, self.settings)

    # ===== Queries =====

    async def get_rcti(self, rcti_id: int) -> Rcti:
        """Load an RCTI with lines, driver, deductions and status history."""
        return await load_rcti(self.session, rcti_id)

    async def list_rctis(
        self,
        driver_id: int | None = None,
        status: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Rcti]:
        """List RCTIs, newest week first, optionally filtered."""
        stmt = select(Rcti).options(selectinload(Rcti.lines), selectinload(Rcti.driver))

        if driver_id is not None:
            stmt = stmt.where(Rcti.driver_id == driver_id)
        if status is not None:
            try:
                stmt = stmt.where(Rcti.status == RctiStatus(status).value)
            except ValueError as exc:
                raise ValidationError("Invalid status filter") from exc
        if start_date is not None:
            stmt = stmt.where(Rcti.week_ending >= start_date)
        if end_date is not None:
            stmt = stmt.where(Rcti.week_ending <= end_date)

        stmt = stmt.order_by(Rcti.week_ending.desc(), Rcti.rcti_id.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_deduction_summary(self, rcti_id: int) -> DeductionSummary:
        """Applications recorded against an RCTI."""
        await load_rcti(self.session, rcti_id)
        return await self.ledger.get_rcti_deduction_summary(rcti_id)

    # ===== Creation =====

    async def create_rcti(
        self,
        driver_id: int,
        week_ending: Any,
        driver_name: str | None = None,
        business_name: str | None = None,
        driver_address: str | None = None,
        driver_abn: str | None = None,
        gst_status: str | None = None,
        gst_mode: str | None = None,
        bank_account_name: str | None = None,
        bank_bsb: str | None = None,
        bank_account_number: str | None = None,
        notes: str | None = None,
    ) -> Rcti:
        """Create a draft RCTI from the driver's unbilled jobs for the week.

        Driver details are snapshotted from the driver record unless given
        explicitly. Jobs already on any RCTI line are skipped.
        """
        week_ending_date = parse_date(week_ending, "Invalid weekEnding")
        week_start, week_end = week_bounds(week_ending_date)
        if gst_status is not None and gst_status not in {s.value for s in GstStatus}:
            raise ValidationError("Invalid GST status")
        if gst_mode is not None and gst_mode not in {m.value for m in GstMode}:
            raise ValidationError("Invalid GST mode")

        async with atomic(self.session, "Failed to create RCTI"):
            driver = await self.session.get(Driver, driver_id)
            if driver is None:
                raise NotFoundError("Driver not found")
            if driver.is_employee:
                raise ValidationError(
                    "RCTIs can only be created for contractors and subcontractors"
                )

            billed_job_ids = select(RctiLine.job_id).where(RctiLine.job_id.is_not(None))
            result = await self.session.execute(
                select(Job)
                .where(
                    Job.driver_id == driver_id,
                    Job.job_date >= week_start,
                    Job.job_date <= week_end,
                    Job.job_id.not_in(billed_job_ids),
                )
                .order_by(Job.job_date, Job.job_id)
            )
            jobs = list(result.scalars().all())
            if not jobs:
                raise NoValidJobsError("No eligible jobs found for this driver and week")

            final_name = driver_name or driver.name
            final_business = business_name or driver.business_name
            existing = await self.session.execute(select(Rcti.invoice_number))
            invoice_number = generate_invoice_number(
                existing.scalars().all(), week_ending_date, final_business or final_name
            )

            rcti = Rcti(
                invoice_number=invoice_number,
                driver_id=driver.driver_id,
                driver_name=final_name,
                business_name=final_business,
                driver_address=driver_address or driver.address,
                driver_abn=driver_abn or driver.abn,
                week_ending=week_ending_date,
                gst_status=gst_status or driver.gst_status or GstStatus.NOT_REGISTERED.value,
                gst_mode=gst_mode or driver.gst_mode or GstMode.EXCLUSIVE.value,
                bank_account_name=bank_account_name or driver.bank_account_name,
                bank_bsb=bank_bsb or driver.bank_bsb,
                bank_account_number=bank_account_number or driver.bank_account_number,
                status=RctiStatus.DRAFT.value,
                notes=notes,
            )

            rates = DriverRates.from_driver(driver)
            for job in jobs:
                rcti.lines.append(
                    build_job_line(
                        job, rates, rcti.gst_status, rcti.gst_mode, self.settings.gst_rate
                    )
                )

            self.session.add(rcti)
            await self.line_service.recalculate_totals(rcti, driver)
            rcti_id = rcti.rcti_id

        logger.info(
            "Created RCTI",
            extra={
                "rcti_id": rcti_id,
                "invoice_number": invoice_number,
                "driver_id": driver_id,
                "jobs": len(jobs),
            },
        )
        return await load_rcti(self.session, rcti_id)

    # ===== Draft editing =====

    async def update_details(self, rcti_id: int, changes: Mapping[str, Any]) -> Rcti:
        """Edit the header details of a draft RCTI.

        Only the keys present in ``changes`` are replaced. Blank values clear
        the field, except the driver name which is required. Amounts are not
        touched; GST settings change through ``LineService.update_gst_settings``.
        """
        unknown = set(changes) - set(DETAIL_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown RCTI fields: {', '.join(sorted(unknown))}")
        cleaned = {field: clean_detail(field, value) for field, value in changes.items()}
        if "driver_name" in cleaned and cleaned["driver_name"] is None:
            raise ValidationError("Driver name cannot be empty")

        async with atomic(self.session, "Failed to update RCTI"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            RctiStateMachine.require_editable(rcti, "update details of")

            for field, value in cleaned.items():
                setattr(rcti, field, value)
            await self.session.flush()

        logger.info(
            "Updated RCTI details", extra={"rcti_id": rcti_id, "fields": sorted(cleaned)}
        )
        return await load_rcti(self.session, rcti_id)

    async def delete_rcti(self, rcti_id: int) -> None:
        """Delete a draft RCTI with its lines and status history.

        Its jobs become billable again.
        """
        async with atomic(self.session, "Failed to delete RCTI"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            if not RctiStateMachine.can_edit(rcti.status):
                raise InvalidStateError("Only draft RCTIs can be deleted", rcti.status)

            invoice_number = rcti.invoice_number
            await self.session.delete(rcti)
            await self.session.flush()

        logger.info(
            "Deleted RCTI",
            extra={"rcti_id": rcti_id, "invoice_number": invoice_number},
        )

    # ===== Transitions =====

    async def _transition(
        self,
        rcti: Rcti,
        from_status: str,
        to_status: str,
        actor: str | None,
        reason: str | None = None,
        **values: Any,
    ) -> None:
        """Conditionally move status and record the audit row.

        The UPDATE only matches while the row still holds ``from_status``;
        zero matched rows means another transaction got there first.
        """
        result = await self.session.execute(
            update(Rcti)
            .where(Rcti.rcti_id == rcti.rcti_id, Rcti.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "RCTI status changed concurrently",
                extra={
                    "rcti_id": rcti.rcti_id,
                    "from_status": from_status,
                    "to_status": to_status,
                },
            )
            raise InvalidStateError(
                f"RCTI status changed concurrently (expected '{from_status}')",
                from_status,
                to_status,
            )

        self.session.add(
            RctiStatusChange(
                rcti_id=rcti.rcti_id,
                from_status=from_status,
                to_status=to_status,
                reason=reason,
                changed_by=actor,
                changed_at=datetime.now(timezone.utc),
            )
        )
        await self.session.flush()

        logger.info(
            "RCTI status changed",
            extra={
                "rcti_id": rcti.rcti_id,
                "from_status": from_status,
                "to_status": to_status,
                "actor": actor,
            },
        )

    async def finalize(
        self,
        rcti_id: int,
        deduction_overrides: Any = None,
        actor: str | None = None,
    ) -> Rcti:
        """Finalise a draft RCTI and apply due deductions.

        Args:
            rcti_id: The RCTI to finalise
            deduction_overrides: {deduction_id: amount | None}; None skips a
                deduction this cycle, a number replaces the default amount
            actor: User performing the action

        Overrides are validated before anything is read or written. The
        total becomes net of deductions and reimbursements.
        """
        overrides = parse_deduction_overrides(deduction_overrides)

        async with atomic(self.session, "Failed to finalise RCTI"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)

            errors = RctiStateMachine.validate_rcti_for_transition(rcti, RctiStatus.FINALISED)
            if errors:
                logger.warning(
                    "Finalise rejected", extra={"rcti_id": rcti_id, "errors": errors}
                )
                raise InvalidStateError(errors[0], rcti.status, RctiStatus.FINALISED.value)

            ledger_result = await self.ledger.apply_to_rcti(rcti, overrides)
            net_total = round_to_cents(rcti.total + ledger_result.net_adjustment)

            await self._transition(
                rcti,
                RctiStatus.DRAFT.value,
                RctiStatus.FINALISED.value,
                actor,
                total=net_total,
            )

        return await load_rcti(self.session, rcti_id)

    async def mark_paid(self, rcti_id: int, actor: str | None = None) -> Rcti:
        """Mark a finalised RCTI as paid."""
        async with atomic(self.session, "Failed to mark RCTI as paid"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            RctiStateMachine.validate_transition(rcti.status, RctiStatus.PAID)

            await self._transition(
                rcti,
                RctiStatus.FINALISED.value,
                RctiStatus.PAID.value,
                actor,
                paid_at=datetime.now(timezone.utc),
            )

        return await load_rcti(self.session, rcti_id)

    async def _reverse_to_draft(self, rcti: Rcti) -> None:
        """Give back applied deductions and restore line-summed totals."""
        await self.ledger.reverse_for_rcti(rcti.rcti_id)
        self.line_service.apply_line_totals(rcti)
        await self.session.flush()

    async def unfinalize(self, rcti_id: int, actor: str | None = None) -> Rcti:
        """Return a finalised (unpaid) RCTI to draft, reversing its deductions."""
        async with atomic(self.session, "Failed to unfinalise RCTI"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            if rcti.status == RctiStatus.PAID:
                raise InvalidStateError(
                    "Cannot unfinalise a paid RCTI", rcti.status, RctiStatus.DRAFT.value
                )
            if rcti.status == RctiStatus.DRAFT:
                raise InvalidStateError(
                    "RCTI is already in draft status", rcti.status, RctiStatus.DRAFT.value
                )

            await self._reverse_to_draft(rcti)
            await self._transition(
                rcti,
                RctiStatus.FINALISED.value,
                RctiStatus.DRAFT.value,
                actor,
            )

        return await load_rcti(self.session, rcti_id)

    async def revert_to_draft(
        self,
        rcti_id: int,
        reason: str | None,
        actor: str | None = None,
    ) -> Rcti:
        """Revert a paid RCTI to draft.

        Requires a reason. Applied deductions are reversed exactly, totals
        are recomputed from the surviving lines, and the payment timestamp
        is cleared. All or nothing.
        """
        min_length = self.settings.revert_reason_min_length
        cleaned = reason.strip() if isinstance(reason, str) else ""
        if len(cleaned) < min_length:
            raise ValidationError(
                f"A reason of at least {min_length} characters is required to revert an RCTI"
            )

        async with atomic(self.session, "Failed to revert RCTI to draft"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            if rcti.status != RctiStatus.PAID:
                logger.warning(
                    "Revert rejected", extra={"rcti_id": rcti_id, "status": rcti.status}
                )
                raise InvalidStateError(
                    "Only paid RCTIs can be reverted to draft",
                    rcti.status,
                    RctiStatus.DRAFT.value,
                )

            await self._reverse_to_draft(rcti)
            await self._transition(
                rcti,
                RctiStatus.PAID.value,
                RctiStatus.DRAFT.value,
                actor,
                reason=cleaned,
                paid_at=None,
                reverted_to_draft_at=datetime.now(timezone.utc),
                reverted_to_draft_reason=cleaned,
            )

        return await load_rcti(self.session, rcti_id)

"""RCTI line aggregation: job imports, manual lines, breaks and totals."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rcti_engine.calculators import (
    BreakCandidate,
    DriverRates,
    GstMode,
    GstStatus,
    calculate_line_amounts,
    calculate_lunch_break_lines,
    calculate_rcti_totals,
    get_driver_rate_for_truck_type,
    round_to_cents,
    to_decimal,
)
from rcti_engine.config import Settings, get_settings
from rcti_engine.database import atomic
from rcti_engine.errors import InvalidStateError, NotFoundError, NoValidJobsError, ValidationError
from rcti_engine.models import BREAK_DEDUCTION_CUSTOMER, Driver, Job, Rcti, RctiLine
from rcti_engine.services.queries import load_rcti
from rcti_engine.services.state_machine import RctiStateMachine

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

MANUAL_LINE_FIELDS = (
    "job_date",
    "customer",
    "truck_type",
    "description",
    "charged_hours",
    "rate_per_hour",
)


@dataclass(frozen=True)
class ManualLineInput:
    """A validated manual line entry."""

    job_date: date
    customer: str
    truck_type: str
    description: str | None
    charged_hours: Decimal
    rate_per_hour: Decimal


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationError("Invalid job date") from exc


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def parse_manual_line(payload: Mapping[str, Any]) -> ManualLineInput:
    """Validate a manual line payload.

    job_date, customer and truck_type must be non-empty after trimming, and
    charged_hours and rate_per_hour must be present, finite and non-negative.
    An empty description is stored as null.
    """
    if (
        _is_blank(payload.get("job_date"))
        or _is_blank(payload.get("customer"))
        or _is_blank(payload.get("truck_type"))
        or payload.get("charged_hours") is None
        or payload.get("rate_per_hour") is None
    ):
        raise ValidationError("Missing required fields for manual line entry")

    try:
        hours = round_to_cents(to_decimal(payload["charged_hours"]))
        rate = round_to_cents(to_decimal(payload["rate_per_hour"]))
    except ValueError as exc:
        raise ValidationError("Invalid hours or rate") from exc
    if hours < 0 or rate < 0:
        raise ValidationError("Invalid hours or rate")

    description = payload.get("description")
    if description is not None:
        description = str(description).strip() or None

    return ManualLineInput(
        job_date=_parse_date(payload["job_date"]),
        customer=str(payload["customer"]).strip(),
        truck_type=str(payload["truck_type"]).strip(),
        description=description,
        charged_hours=hours,
        rate_per_hour=rate,
    )


def parse_job_ids(job_ids: Any) -> list[int]:
    """Validate a list of job ids from a request."""
    if not isinstance(job_ids, (list, tuple)):
        raise ValidationError("jobIds must be an array of job IDs")

    parsed: list[int] = []
    for job_id in job_ids:
        if isinstance(job_id, bool):
            raise ValidationError("Invalid job ID")
        try:
            parsed.append(int(job_id))
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid job ID") from exc
    return parsed


def resolve_job_rate(job: Job, rates: DriverRates) -> Decimal:
    """Agreed driver charge on the job, else the driver's truck-type rate, else 0."""
    if job.driver_charge:
        return to_decimal(job.driver_charge)
    rate = get_driver_rate_for_truck_type(job.truck_type, rates)
    return to_decimal(rate) if rate else ZERO


def build_job_line(
    job: Job,
    rates: DriverRates,
    gst_status: str,
    gst_mode: str,
    gst_rate: Decimal,
) -> RctiLine:
    """Turn a job into an unsaved RCTI line."""
    # Hours and rate are stored at cent scale; amounts must price the stored values.
    hours = ZERO
    if job.charged_hours is not None:
        hours = round_to_cents(to_decimal(job.charged_hours))
    rate = round_to_cents(resolve_job_rate(job, rates))
    amounts = calculate_line_amounts(hours, rate, gst_status, gst_mode, gst_rate=gst_rate)

    return RctiLine(
        job_id=job.job_id,
        job_date=job.job_date,
        customer=job.customer or "Unknown",
        truck_type=job.truck_type or "",
        description=job.route_description,
        charged_hours=hours,
        rate_per_hour=rate,
        **amounts.as_dict(),
    )


class LineService:
    """Service for RCTI line mutations.

    Every mutation runs in one transaction together with the break
    regeneration and totals recalculation it triggers.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    def _line_amounts(self, rcti: Rcti, hours: Decimal, rate: Decimal) -> dict[str, Decimal]:
        return calculate_line_amounts(
            hours,
            rate,
            rcti.gst_status,
            rcti.gst_mode,
            gst_rate=self.settings.gst_rate,
        ).as_dict()

    def regenerate_break_lines(self, rcti: Rcti, driver: Driver | None = None) -> list[RctiLine]:
        """Drop existing break lines and rebuild them from the remaining lines."""
        driver = driver or rcti.driver
        for line in [line for line in rcti.lines if line.is_break_deduction]:
            rcti.lines.remove(line)

        candidates: Iterable[BreakCandidate] = [
            BreakCandidate(
                job_id=line.job_id,
                truck_type=line.truck_type,
                charged_hours=line.charged_hours,
                rate_per_hour=line.rate_per_hour,
            )
            for line in rcti.lines
        ]
        break_lines = calculate_lunch_break_lines(
            candidates,
            driver.breaks if driver else None,
            rcti.gst_status,
            rcti.gst_mode,
            threshold_hours=self.settings.break_threshold_hours,
            gst_rate=self.settings.gst_rate,
        )

        created: list[RctiLine] = []
        for break_line in break_lines:
            line = RctiLine(
                job_id=None,
                job_date=rcti.week_ending,
                customer=BREAK_DEDUCTION_CUSTOMER,
                truck_type=break_line.truck_type,
                description=break_line.description,
                charged_hours=break_line.charged_hours,
                rate_per_hour=break_line.rate_per_hour,
                **break_line.amounts.as_dict(),
            )
            rcti.lines.append(line)
            created.append(line)
        return created

    @staticmethod
    def apply_line_totals(rcti: Rcti) -> None:
        """Set subtotal, GST and total to the sums of the current lines."""
        totals = calculate_rcti_totals(rcti.lines)
        rcti.subtotal = totals.subtotal
        rcti.gst = totals.gst
        rcti.total = totals.total

    async def recalculate_totals(self, rcti: Rcti, driver: Driver | None = None) -> Rcti:
        """Regenerate break lines and re-sum subtotal, GST and total.

        Expects ``rcti.lines`` and ``rcti.driver`` to be loaded, or the driver
        to be passed in. Does not commit; the caller's transaction covers it.
        """
        self.regenerate_break_lines(rcti, driver)
        self.apply_line_totals(rcti)

        await self.session.flush()
        return rcti

    async def add_jobs(self, rcti_id: int, job_ids: Any) -> Rcti:
        """Add lines for the given jobs to a draft RCTI."""
        parsed_ids = parse_job_ids(job_ids)

        async with atomic(self.session, "Failed to add lines"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            RctiStateMachine.require_editable(rcti, "add lines to")

            jobs: list[Job] = []
            if parsed_ids:
                result = await self.session.execute(
                    select(Job)
                    .where(Job.job_id.in_(parsed_ids))
                    .order_by(Job.job_date, Job.job_id)
                )
                jobs = list(result.scalars().all())
            if not jobs:
                raise NoValidJobsError("No valid jobs found")

            rates = DriverRates.from_driver(rcti.driver)
            for job in jobs:
                rcti.lines.append(
                    build_job_line(
                        job, rates, rcti.gst_status, rcti.gst_mode, self.settings.gst_rate
                    )
                )

            await self.recalculate_totals(rcti)

        logger.info(
            "Added job lines to RCTI",
            extra={"rcti_id": rcti_id, "job_ids": [job.job_id for job in jobs]},
        )
        return await load_rcti(self.session, rcti_id)

    async def add_manual_line(self, rcti_id: int, payload: Mapping[str, Any]) -> Rcti:
        """Add a manual (non-job) line to a draft RCTI."""
        entry = parse_manual_line(payload)

        async with atomic(self.session, "Failed to add lines"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            RctiStateMachine.require_editable(rcti, "add lines to")

            rcti.lines.append(
                RctiLine(
                    job_id=None,
                    job_date=entry.job_date,
                    customer=entry.customer,
                    truck_type=entry.truck_type,
                    description=entry.description,
                    charged_hours=entry.charged_hours,
                    rate_per_hour=entry.rate_per_hour,
                    **self._line_amounts(rcti, entry.charged_hours, entry.rate_per_hour),
                )
            )
            await self.recalculate_totals(rcti)

        logger.info("Added manual line to RCTI", extra={"rcti_id": rcti_id})
        return await load_rcti(self.session, rcti_id)

    async def _get_owned_line(self, rcti: Rcti, line_id: int) -> RctiLine:
        line = await self.session.get(RctiLine, line_id)
        if line is None:
            raise NotFoundError("Line not found")
        if line.rcti_id != rcti.rcti_id:
            raise InvalidStateError("Line does not belong to this RCTI", rcti.status)
        return line

    async def remove_line(self, rcti_id: int, line_id: int) -> Rcti:
        """Remove a line from a draft RCTI."""
        async with atomic(self.session, "Failed to remove line"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            RctiStateMachine.require_editable(rcti, "remove lines from")

            line = await self._get_owned_line(rcti, line_id)
            rcti.lines.remove(line)
            await self.recalculate_totals(rcti)

        logger.info("Removed line from RCTI", extra={"rcti_id": rcti_id, "line_id": line_id})
        return await load_rcti(self.session, rcti_id)

    async def update_line(
        self, rcti_id: int, line_id: int, changes: Mapping[str, Any]
    ) -> Rcti:
        """Edit a line on a draft RCTI and recompute its amounts.

        Only the keys present in ``changes`` are replaced. Break deduction
        lines cannot be edited.
        """
        unknown = set(changes) - set(MANUAL_LINE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown line fields: {', '.join(sorted(unknown))}")

        async with atomic(self.session, "Failed to update line"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            RctiStateMachine.require_editable(rcti, "update lines on")

            line = await self._get_owned_line(rcti, line_id)
            if line.is_break_deduction:
                raise InvalidStateError("Break deduction lines cannot be edited", rcti.status)

            merged = {field: getattr(line, field) for field in MANUAL_LINE_FIELDS}
            merged.update(changes)
            entry = parse_manual_line(merged)

            line.job_date = entry.job_date
            line.customer = entry.customer
            line.truck_type = entry.truck_type
            line.description = entry.description
            line.charged_hours = entry.charged_hours
            line.rate_per_hour = entry.rate_per_hour
            for key, value in self._line_amounts(
                rcti, entry.charged_hours, entry.rate_per_hour
            ).items():
                setattr(line, key, value)

            await self.recalculate_totals(rcti)

        logger.info("Updated RCTI line", extra={"rcti_id": rcti_id, "line_id": line_id})
        return await load_rcti(self.session, rcti_id)

    async def update_gst_settings(
        self,
        rcti_id: int,
        gst_status: str | None = None,
        gst_mode: str | None = None,
    ) -> Rcti:
        """Change GST status and/or mode on a draft RCTI and reprice every line."""
        try:
            status = GstStatus(gst_status) if gst_status is not None else None
        except ValueError as exc:
            raise ValidationError("Invalid GST status") from exc
        try:
            mode = GstMode(gst_mode) if gst_mode is not None else None
        except ValueError as exc:
            raise ValidationError("Invalid GST mode") from exc

        async with atomic(self.session, "Failed to update RCTI"):
            rcti = await load_rcti(self.session, rcti_id, for_update=True)
            RctiStateMachine.require_editable(rcti, "change GST settings on")

            if status is not None:
                rcti.gst_status = status.value
            if mode is not None:
                rcti.gst_mode = mode.value

            for line in rcti.lines:
                if line.is_break_deduction:
                    continue
                for key, value in self._line_amounts(
                    rcti, line.charged_hours, line.rate_per_hour
                ).items():
                    setattr(line, key, value)

            await self.recalculate_totals(rcti)

        logger.info(
            "Updated RCTI GST settings",
            extra={"rcti_id": rcti_id, "gst_status": gst_status, "gst_mode": gst_mode},
        )
        return await load_rcti(self.session, rcti_id)

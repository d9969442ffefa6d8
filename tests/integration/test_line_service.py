"""RCTI line aggregation against a real database.

Covers manual lines, job imports, break regeneration and totals.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rcti_engine.errors import (
    InvalidStateError,
    NotFoundError,
    NoValidJobsError,
    ValidationError,
)
from rcti_engine.models import BREAK_DEDUCTION_CUSTOMER, Driver, Rcti, RctiLine
from rcti_engine.services.line_service import LineService

from tests.factories import WEEK_ENDING, make_job, make_rcti

pytestmark = pytest.mark.asyncio

MANUAL_LINE = {
    "job_date": "2024-06-12",
    "customer": "Acme Builders",
    "truck_type": "Crane",
    "description": "Site lift",
    "charged_hours": "8.5",
    "rate_per_hour": "85.00",
}


def assert_draft_totals(rcti):
    """Totals equal the line sums and total equals subtotal plus GST."""
    assert rcti.subtotal == sum((line.amount_ex_gst for line in rcti.lines), Decimal("0"))
    assert rcti.gst == sum((line.gst_amount for line in rcti.lines), Decimal("0"))
    assert rcti.total == sum((line.amount_inc_gst for line in rcti.lines), Decimal("0"))
    assert rcti.total == rcti.subtotal + rcti.gst


async def count_lines(session: AsyncSession, rcti_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(RctiLine).where(RctiLine.rcti_id == rcti_id)
    )
    return result.scalar_one()


class TestManualLines:
    """Test adding manual lines."""

    async def test_registered_manual_line(self, session, contractor, test_settings):
        """8.5h at $85 on a registered RCTI: 722.50 + 72.25 = 794.75."""
        rcti = await make_rcti(session, contractor, gst_status="registered")

        rcti = await LineService(session, test_settings).add_manual_line(
            rcti.rcti_id, MANUAL_LINE
        )

        [line] = rcti.lines
        assert line.job_id is None
        assert line.amount_ex_gst == Decimal("722.50")
        assert line.gst_amount == Decimal("72.25")
        assert line.amount_inc_gst == Decimal("794.75")
        assert rcti.total == Decimal("794.75")
        assert_draft_totals(rcti)

    async def test_unregistered_manual_line(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, gst_status="not_registered")

        rcti = await LineService(session, test_settings).add_manual_line(
            rcti.rcti_id, MANUAL_LINE
        )

        [line] = rcti.lines
        assert line.gst_amount == Decimal("0")
        assert line.amount_inc_gst == line.amount_ex_gst == Decimal("722.50")
        assert_draft_totals(rcti)

    async def test_stored_hours_price_the_line(self, session, contractor, test_settings):
        """7h20m entered as 7.333 is kept as 7.33h and priced at 7.33 x 90."""
        rcti = await make_rcti(session, contractor, gst_status="not_registered")
        rcti_id = rcti.rcti_id
        payload = {**MANUAL_LINE, "charged_hours": "7.333", "rate_per_hour": "90"}

        await LineService(session, test_settings).add_manual_line(rcti_id, payload)
        line = (
            await session.execute(
                select(RctiLine)
                .where(RctiLine.rcti_id == rcti_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

        assert line.charged_hours == Decimal("7.33")
        assert line.amount_ex_gst == round(line.charged_hours * line.rate_per_hour, 2)
        assert line.amount_ex_gst == Decimal("659.70")

        rcti = await LineService(session, test_settings).update_gst_settings(
            rcti_id, gst_mode="exclusive"
        )

        assert rcti.lines[0].amount_ex_gst == Decimal("659.70")
        assert rcti.total == Decimal("659.70")

    async def test_strings_are_trimmed_and_empty_description_is_null(
        self, session, contractor, test_settings
    ):
        rcti = await make_rcti(session, contractor)
        payload = {
            **MANUAL_LINE,
            "customer": "  Acme  ",
            "truck_type": " Tray ",
            "description": "   ",
        }

        rcti = await LineService(session, test_settings).add_manual_line(rcti.rcti_id, payload)

        [line] = rcti.lines
        assert line.customer == "Acme"
        assert line.truck_type == "Tray"
        assert line.description is None
        assert line.job_date == date(2024, 6, 12)

    @pytest.mark.parametrize(
        "missing",
        [
            {"customer": "   "},
            {"truck_type": ""},
            {"job_date": None},
            {"charged_hours": None},
            {"rate_per_hour": None},
        ],
    )
    async def test_missing_required_fields(self, session, contractor, test_settings, missing):
        rcti = await make_rcti(session, contractor)

        with pytest.raises(ValidationError) as exc_info:
            await LineService(session, test_settings).add_manual_line(
                rcti.rcti_id, {**MANUAL_LINE, **missing}
            )

        assert exc_info.value.message == "Missing required fields for manual line entry"
        assert await count_lines(session, rcti.rcti_id) == 0

    @pytest.mark.parametrize(
        "bad",
        [
            {"charged_hours": "abc"},
            {"rate_per_hour": "-1"},
            {"charged_hours": "-0.5"},
            {"charged_hours": "Infinity"},
        ],
    )
    async def test_invalid_hours_or_rate(self, session, contractor, test_settings, bad):
        rcti = await make_rcti(session, contractor)

        with pytest.raises(ValidationError, match="Invalid hours or rate"):
            await LineService(session, test_settings).add_manual_line(
                rcti.rcti_id, {**MANUAL_LINE, **bad}
            )

    async def test_only_draft_accepts_lines(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, status="finalised", lines=[("8", "50")])
        rcti_id = rcti.rcti_id

        with pytest.raises(InvalidStateError, match="Can only add lines to draft RCTIs"):
            await LineService(session, test_settings).add_manual_line(rcti_id, MANUAL_LINE)

        assert await count_lines(session, rcti_id) == 1

    async def test_unknown_rcti(self, session, test_settings):
        with pytest.raises(NotFoundError, match="RCTI not found"):
            await LineService(session, test_settings).add_manual_line(999, MANUAL_LINE)


class TestJobImport:
    """Test adding lines from jobs."""

    async def test_rate_precedence(self, session, contractor, test_settings):
        """Agreed driver charge, else the driver's truck-type rate."""
        agreed = await make_job(
            session, contractor, date(2024, 6, 10), "5", "Crane", driver_charge="65"
        )
        by_truck = await make_job(session, contractor, date(2024, 6, 11), "5", "Semi Crane")
        rcti = await make_rcti(session, contractor, gst_status="not_registered")

        rcti = await LineService(session, test_settings).add_jobs(
            rcti.rcti_id, [agreed.job_id, by_truck.job_id]
        )

        rates = {line.job_id: line.rate_per_hour for line in rcti.lines}
        assert rates[agreed.job_id] == Decimal("65.00")
        assert rates[by_truck.job_id] == Decimal("80.00")
        assert rcti.total == Decimal("725.00")
        assert_draft_totals(rcti)

    async def test_rate_falls_back_to_zero(self, session, test_settings):
        driver = Driver(name="No Rates", driver_type="Subcontractor")
        session.add(driver)
        await session.commit()
        job = await make_job(session, driver, date(2024, 6, 10), "6", "Tray")
        rcti = await make_rcti(session, driver)

        rcti = await LineService(session, test_settings).add_jobs(rcti.rcti_id, [job.job_id])

        [line] = rcti.lines
        assert line.rate_per_hour == Decimal("0")
        assert line.amount_inc_gst == Decimal("0")

    async def test_job_fields_copied(self, session, contractor, test_settings):
        job = await make_job(
            session,
            contractor,
            date(2024, 6, 13),
            "4",
            None,
            customer=None,
            pickup="Brisbane",
            dropoff="Ipswich",
        )
        rcti = await make_rcti(session, contractor)

        rcti = await LineService(session, test_settings).add_jobs(rcti.rcti_id, [job.job_id])

        [line] = rcti.lines
        assert line.customer == "Unknown"
        assert line.truck_type == ""
        assert line.description == "Brisbane → Ipswich"
        assert line.job_date == date(2024, 6, 13)

    async def test_no_valid_jobs(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor)

        with pytest.raises(NoValidJobsError, match="No valid jobs found"):
            await LineService(session, test_settings).add_jobs(rcti.rcti_id, [12345])

        assert issubclass(NoValidJobsError, NotFoundError)

    async def test_malformed_job_ids(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor)

        with pytest.raises(ValidationError):
            await LineService(session, test_settings).add_jobs(rcti.rcti_id, ["x"])


class TestBreakRegeneration:
    """Break lines are rebuilt on every line change."""

    async def test_breaks_follow_line_changes(self, session, contractor, test_settings):
        contractor.breaks = Decimal("0.5")
        await session.commit()
        long_job = await make_job(session, contractor, date(2024, 6, 10), "9", "Tray")
        short_job = await make_job(session, contractor, date(2024, 6, 11), "6", "Tray")
        rcti = await make_rcti(session, contractor, gst_status="registered")
        service = LineService(session, test_settings)

        rcti = await service.add_jobs(rcti.rcti_id, [long_job.job_id, short_job.job_id])

        breaks = [line for line in rcti.lines if line.customer == BREAK_DEDUCTION_CUSTOMER]
        assert len(breaks) == 1
        assert breaks[0].charged_hours == Decimal("-0.50")
        assert breaks[0].amount_inc_gst == Decimal("-27.50")
        assert breaks[0].job_date == WEEK_ENDING
        # 9h + 6h at $50 = 750, less a $25 break = 725, plus GST
        assert rcti.subtotal == Decimal("725.00")
        assert rcti.total == Decimal("797.50")
        assert_draft_totals(rcti)

        long_line = next(line for line in rcti.lines if line.job_id == long_job.job_id)
        rcti = await service.remove_line(rcti.rcti_id, long_line.rcti_line_id)

        assert not [line for line in rcti.lines if line.is_break_deduction]
        assert rcti.total == Decimal("330.00")
        assert_draft_totals(rcti)

    async def test_break_line_is_not_duplicated(self, session, contractor, test_settings):
        contractor.breaks = Decimal("0.5")
        await session.commit()
        job = await make_job(session, contractor, date(2024, 6, 10), "9", "Tray")
        rcti = await make_rcti(session, contractor)
        service = LineService(session, test_settings)

        rcti = await service.add_jobs(rcti.rcti_id, [job.job_id])
        rcti = await service.add_manual_line(rcti.rcti_id, MANUAL_LINE)

        assert len([line for line in rcti.lines if line.is_break_deduction]) == 1
        assert_draft_totals(rcti)

    async def test_break_lines_cannot_be_edited(self, session, contractor, test_settings):
        contractor.breaks = Decimal("0.5")
        await session.commit()
        job = await make_job(session, contractor, date(2024, 6, 10), "9", "Tray")
        rcti = await make_rcti(session, contractor)
        service = LineService(session, test_settings)
        rcti = await service.add_jobs(rcti.rcti_id, [job.job_id])
        break_line = next(line for line in rcti.lines if line.is_break_deduction)

        with pytest.raises(InvalidStateError, match="Break deduction lines cannot be edited"):
            await service.update_line(
                rcti.rcti_id, break_line.rcti_line_id, {"charged_hours": "1"}
            )


class TestRemoveLine:
    """Test removing lines."""

    async def test_remove_from_finalised_touches_nothing(
        self, session, contractor, test_settings
    ):
        """Removing a line from a finalised RCTI fails and leaves every row alone."""
        rcti = await make_rcti(session, contractor, status="finalised", lines=[("8", "50")])
        rcti_id = rcti.rcti_id
        line_id = rcti.lines[0].rcti_line_id
        total_before = rcti.total
        service = LineService(session, test_settings)

        with pytest.raises(InvalidStateError, match="Can only remove lines from draft RCTIs"):
            await service.remove_line(rcti_id, line_id)

        assert await count_lines(session, rcti_id) == 1
        reloaded = await session.get(RctiLine, line_id, populate_existing=True)
        assert reloaded is not None
        assert reloaded.amount_inc_gst == Decimal("440.00")
        rcti = await session.get(Rcti, rcti_id, populate_existing=True)
        assert rcti.total == total_before
        assert rcti.status == "finalised"

    async def test_line_not_found(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])

        with pytest.raises(NotFoundError, match="Line not found"):
            await LineService(session, test_settings).remove_line(rcti.rcti_id, 9999)

    async def test_line_of_another_rcti(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        other = await make_rcti(
            session,
            contractor,
            week_ending=date(2024, 6, 23),
            lines=[("2", "50")],
        )
        other_id = other.rcti_id
        other_line_id = other.lines[0].rcti_line_id

        with pytest.raises(InvalidStateError, match="Line does not belong to this RCTI"):
            await LineService(session, test_settings).remove_line(rcti.rcti_id, other_line_id)

        assert await count_lines(session, other_id) == 1

    async def test_remove_recalculates_totals(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, lines=[("8", "50"), ("2", "50")])
        small = next(line for line in rcti.lines if line.charged_hours == Decimal("2"))

        rcti = await LineService(session, test_settings).remove_line(
            rcti.rcti_id, small.rcti_line_id
        )

        assert len(rcti.lines) == 1
        assert rcti.total == Decimal("440.00")
        assert_draft_totals(rcti)


class TestUpdates:
    """Test line edits and GST setting changes."""

    async def test_update_line_recomputes_amounts(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        line_id = rcti.lines[0].rcti_line_id

        rcti = await LineService(session, test_settings).update_line(
            rcti.rcti_id, line_id, {"charged_hours": "10", "customer": "New Customer"}
        )

        [line] = rcti.lines
        assert line.customer == "New Customer"
        assert line.amount_ex_gst == Decimal("500.00")
        assert line.amount_inc_gst == Decimal("550.00")
        assert_draft_totals(rcti)

    async def test_update_line_rejects_unknown_fields(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])

        with pytest.raises(ValidationError, match="Unknown line fields"):
            await LineService(session, test_settings).update_line(
                rcti.rcti_id, rcti.lines[0].rcti_line_id, {"amount_ex_gst": "1"}
            )

    async def test_gst_change_reprices_lines(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, gst_status="registered", lines=[("10", "50")])
        assert rcti.total == Decimal("550.00")

        rcti = await LineService(session, test_settings).update_gst_settings(
            rcti.rcti_id, gst_status="not_registered"
        )

        assert rcti.gst_status == "not_registered"
        assert rcti.lines[0].gst_amount == Decimal("0")
        assert rcti.gst == Decimal("0")
        assert rcti.total == Decimal("500.00")
        assert_draft_totals(rcti)

    async def test_inclusive_mode(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor, gst_status="registered", lines=[("1", "110")])

        rcti = await LineService(session, test_settings).update_gst_settings(
            rcti.rcti_id, gst_mode="inclusive"
        )

        [line] = rcti.lines
        assert line.amount_inc_gst == Decimal("110.00")
        assert line.amount_ex_gst == Decimal("100.00")
        assert rcti.total == Decimal("110.00")

    async def test_invalid_gst_status(self, session, contractor, test_settings):
        rcti = await make_rcti(session, contractor)

        with pytest.raises(ValidationError, match="Invalid GST status"):
            await LineService(session, test_settings).update_gst_settings(
                rcti.rcti_id, gst_status="exempt"
            )

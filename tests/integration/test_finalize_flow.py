"""Integration tests for finalize and mark-paid transitions."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, update

from rcti_engine.errors import InvalidStateError, NotFoundError, ValidationError
from rcti_engine.models import Rcti, RctiDeduction, RctiDeductionApplication, RctiStatusChange
from rcti_engine.services import DeductionLedger, RctiService
from rcti_engine.services.queries import load_rcti
from tests.factories import make_deduction, make_rcti


@pytest.fixture
def service(session, test_settings):
    return RctiService(session, test_settings)


class TestFinalize:
    """Test draft → finalised."""

    async def test_finalize_records_audit_row(self, session, service, contractor):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])

        result = await service.finalize(rcti.rcti_id, actor="user-42")

        assert result.status == "finalised"
        assert len(result.status_changes) == 1
        change = result.status_changes[0]
        assert (change.from_status, change.to_status) == ("draft", "finalised")
        assert change.changed_by == "user-42"
        assert change.reason is None

    async def test_invalid_override_rejected_before_any_work(
        self, session, test_settings, contractor
    ):
        """One bad override value fails the batch without touching the ledger."""
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        rcti_id = rcti.rcti_id
        ledger = AsyncMock(spec=DeductionLedger)
        service = RctiService(session, test_settings, ledger=ledger)

        with pytest.raises(ValidationError) as exc_info:
            await service.finalize(rcti_id, {"1": "abc"})

        assert exc_info.value.message == "Invalid deduction override value for deduction 1"
        ledger.apply_to_rcti.assert_not_awaited()
        reloaded = await session.get(Rcti, rcti_id, populate_existing=True)
        assert reloaded.status == "draft"

    async def test_no_lines_rejected(self, session, service, contractor):
        rcti = await make_rcti(session, contractor)
        rcti_id = rcti.rcti_id

        with pytest.raises(InvalidStateError, match="Cannot finalise RCTI with no lines"):
            await service.finalize(rcti_id)

        reloaded = await session.get(Rcti, rcti_id, populate_existing=True)
        assert reloaded.status == "draft"

    async def test_second_finalize_fails(self, session, service, contractor):
        deduction = await make_deduction(session, contractor, "500", "weekly", per_cycle="100")
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        rcti_id = rcti.rcti_id
        deduction_id = deduction.deduction_id
        await service.finalize(rcti_id)

        with pytest.raises(InvalidStateError, match="Only draft RCTIs can be finalised"):
            await service.finalize(rcti_id)

        applications = await session.execute(
            select(RctiDeductionApplication).where(
                RctiDeductionApplication.deduction_id == deduction_id
            )
        )
        assert len(applications.scalars().all()) == 1

    async def test_unknown_rcti(self, service):
        with pytest.raises(NotFoundError, match="RCTI not found"):
            await service.finalize(9999)

    async def test_stale_status_detected(self, session, service, contractor):
        """A transition loses when another transaction moved the status first."""
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        loaded = await load_rcti(session, rcti.rcti_id)

        await session.execute(
            update(Rcti).where(Rcti.rcti_id == rcti.rcti_id).values(status="finalised")
        )

        with pytest.raises(InvalidStateError, match="changed concurrently"):
            await service._transition(loaded, "draft", "finalised", "user-1")

        await session.rollback()

    async def test_failed_finalize_rolls_back_ledger(self, session, test_settings, contractor):
        """An error after deductions were applied leaves balances untouched."""
        deduction = await make_deduction(session, contractor, "200")
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        rcti_id = rcti.rcti_id
        deduction_id = deduction.deduction_id
        service = RctiService(session, test_settings)
        service._transition = AsyncMock(
            side_effect=InvalidStateError("RCTI status changed concurrently (expected 'draft')")
        )

        with pytest.raises(InvalidStateError):
            await service.finalize(rcti_id)

        reloaded = await session.get(RctiDeduction, deduction_id, populate_existing=True)
        assert reloaded.amount_remaining == Decimal("200.00")
        assert reloaded.status == "active"
        count = await session.execute(
            select(RctiDeductionApplication).where(RctiDeductionApplication.rcti_id == rcti_id)
        )
        assert count.scalars().all() == []


class TestMarkPaid:
    """Test finalised → paid."""

    async def test_mark_paid(self, session, service, contractor):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        await service.finalize(rcti.rcti_id, actor="user-1")

        result = await service.mark_paid(rcti.rcti_id, actor="user-2")

        assert result.status == "paid"
        assert result.paid_at is not None
        assert [(c.from_status, c.to_status, c.changed_by) for c in result.status_changes] == [
            ("finalised", "paid", "user-2"),
            ("draft", "finalised", "user-1"),
        ]

    async def test_draft_cannot_be_paid(self, session, service, contractor):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])

        with pytest.raises(InvalidStateError, match="Only finalised RCTIs can be marked as paid"):
            await service.mark_paid(rcti.rcti_id)

    async def test_paid_total_is_unchanged(self, session, service, contractor):
        await make_deduction(session, contractor, "100")
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        finalised = await service.finalize(rcti.rcti_id)

        result = await service.mark_paid(rcti.rcti_id)

        assert result.total == finalised.total == Decimal("340.00")


class TestLinesLockedAfterFinalize:
    """Test that only drafts accept line changes."""

    async def test_manual_line_rejected_on_finalised(self, session, service, contractor):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        await service.finalize(rcti.rcti_id)

        with pytest.raises(InvalidStateError, match="draft"):
            await service.line_service.add_manual_line(
                rcti.rcti_id,
                {
                    "job_date": "2024-06-12",
                    "customer": "Late Customer",
                    "truck_type": "Tray",
                    "charged_hours": "2",
                    "rate_per_hour": "50",
                },
            )

    async def test_audit_rows_ordered_newest_first(self, session, service, contractor):
        rcti = await make_rcti(session, contractor, lines=[("8", "50")])
        await service.finalize(rcti.rcti_id)
        await service.unfinalize(rcti.rcti_id)
        await service.finalize(rcti.rcti_id)

        changes = await session.execute(
            select(RctiStatusChange).where(RctiStatusChange.rcti_id == rcti.rcti_id)
        )
        result = await service.get_rcti(rcti.rcti_id)

        assert len(changes.scalars().all()) == 3
        assert [(c.from_status, c.to_status) for c in result.status_changes] == [
            ("draft", "finalised"),
            ("finalised", "draft"),
            ("draft", "finalised"),
        ]

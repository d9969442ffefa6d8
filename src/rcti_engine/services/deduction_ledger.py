"""Deduction ledger: applies standing deductions and reimbursements to RCTIs.

Each deduction agreement carries a running balance. Finalizing an RCTI moves
money out of those balances and records one application row per deduction
considered (zero for an explicit skip). Unfinalizing or reverting an RCTI
moves exactly that money back.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rcti_engine.calculators import round_to_cents
from rcti_engine.models import Rcti, RctiDeduction, RctiDeductionApplication
from rcti_engine.services.overrides import DeductionOverrides

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class DeductionType(str, Enum):
    """Direction of a deduction agreement."""

    DEDUCTION = "deduction"
    REIMBURSEMENT = "reimbursement"


class DeductionFrequency(str, Enum):
    """How often a deduction falls due."""

    ONCE = "once"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"


class DeductionStatus(str, Enum):
    """Deduction agreement status. Only active agreements are ever applied."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PriorApplications:
    """What has already happened to a deduction on other RCTIs."""

    has_nonzero: bool = False
    in_same_week: bool = False


@dataclass(frozen=True)
class AppliedDeduction:
    """One deduction considered at finalize."""

    deduction_id: int
    deduction_type: str
    description: str
    amount: Decimal
    amount_remaining: Decimal
    status: str


@dataclass
class LedgerResult:
    """Outcome of applying the ledger to one RCTI."""

    applied: list[AppliedDeduction] = field(default_factory=list)
    total_deduction_amount: Decimal = ZERO
    total_reimbursement_amount: Decimal = ZERO

    @property
    def net_adjustment(self) -> Decimal:
        """Amount to add to the RCTI total (negative when deductions dominate)."""
        return self.total_reimbursement_amount - self.total_deduction_amount


@dataclass(frozen=True)
class PendingDeduction:
    """A deduction that finalize would apply by default."""

    deduction: RctiDeduction
    amount: Decimal


@dataclass
class DeductionSummary:
    """Applications recorded against one RCTI."""

    rcti_id: int
    applications: list[RctiDeductionApplication]
    total_deductions: Decimal
    total_reimbursements: Decimal

    @property
    def net_adjustment(self) -> Decimal:
        return self.total_reimbursements - self.total_deductions


def _monthly_anniversary(start_date: date, year: int, month: int) -> date:
    """The start date's day in the given month, clamped to the month's end."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start_date.day, last_day))


def is_due_for_week(
    deduction: RctiDeduction,
    week_ending: date,
    prior: PriorApplications | None = None,
) -> bool:
    """Check if a deduction falls due on the RCTI for ``week_ending``.

    Rules:
    - active with a positive remaining balance
    - started on or before week_ending
    - once: due until a non-zero application exists
    - weekly: every week
    - fortnightly: when (week_ending - start_date) mod 14 is within 0..6
    - monthly: when an anniversary of start_date (day clamped to month end)
      falls in the Monday..Sunday week ending on week_ending
    - recurring deductions already considered on another RCTI for the same
      week are not due again that week
    """
    prior = prior or PriorApplications()

    if deduction.status != DeductionStatus.ACTIVE:
        return False
    if deduction.amount_remaining <= ZERO:
        return False
    if deduction.start_date > week_ending:
        return False

    frequency = deduction.frequency
    if frequency == DeductionFrequency.ONCE:
        return not prior.has_nonzero

    if prior.in_same_week:
        return False

    if frequency == DeductionFrequency.WEEKLY:
        return True

    if frequency == DeductionFrequency.FORTNIGHTLY:
        return (week_ending - deduction.start_date).days % 14 <= 6

    if frequency == DeductionFrequency.MONTHLY:
        week_start = week_ending - timedelta(days=6)
        months = {(week_start.year, week_start.month), (week_ending.year, week_ending.month)}
        for year, month in months:
            anniversary = _monthly_anniversary(deduction.start_date, year, month)
            if anniversary >= deduction.start_date and week_start <= anniversary <= week_ending:
                return True
        return False

    logger.warning(
        "Unknown deduction frequency",
        extra={"deduction_id": deduction.deduction_id, "frequency": frequency},
    )
    return False


def default_cycle_amount(deduction: RctiDeduction) -> Decimal:
    """The amount applied when no override is given: one cycle, capped at remaining."""
    per_cycle = deduction.amount_per_cycle
    if per_cycle is None:
        per_cycle = deduction.total_amount
    return round_to_cents(min(per_cycle, deduction.amount_remaining))


def resolve_amount(
    deduction: RctiDeduction, overrides: DeductionOverrides
) -> Decimal:
    """Pick the amount to apply for one deduction.

    - absent from overrides: default cycle amount
    - None: skip (zero)
    - a number: that amount clamped to [0, remaining]
    """
    if deduction.deduction_id not in overrides:
        return default_cycle_amount(deduction)

    override = overrides[deduction.deduction_id]
    if override is None:
        return ZERO

    clamped = max(ZERO, min(override, deduction.amount_remaining))
    return round_to_cents(clamped)


class DeductionLedger:
    """Moves money between deduction balances and RCTIs.

    Every method runs inside the caller's transaction and never commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _load_prior_applications(
        self,
        deduction_ids: list[int],
        week_ending: date,
        exclude_rcti_id: int | None,
    ) -> dict[int, PriorApplications]:
        if not deduction_ids:
            return {}

        stmt = (
            select(
                RctiDeductionApplication.deduction_id,
                RctiDeductionApplication.amount,
                RctiDeductionApplication.rcti_id,
                Rcti.week_ending,
            )
            .join(Rcti, Rcti.rcti_id == RctiDeductionApplication.rcti_id)
            .where(RctiDeductionApplication.deduction_id.in_(deduction_ids))
        )
        if exclude_rcti_id is not None:
            stmt = stmt.where(RctiDeductionApplication.rcti_id != exclude_rcti_id)

        has_nonzero: set[int] = set()
        same_week: set[int] = set()
        for deduction_id, amount, _rcti_id, app_week_ending in await self.session.execute(stmt):
            if amount and amount > ZERO:
                has_nonzero.add(deduction_id)
            if app_week_ending == week_ending:
                same_week.add(deduction_id)

        return {
            deduction_id: PriorApplications(
                has_nonzero=deduction_id in has_nonzero,
                in_same_week=deduction_id in same_week,
            )
            for deduction_id in deduction_ids
        }

    async def get_due_deductions(
        self,
        driver_id: int,
        week_ending: date,
        exclude_rcti_id: int | None = None,
        for_update: bool = False,
    ) -> list[RctiDeduction]:
        """Load the driver's active deductions that fall due for the week.

        With ``for_update`` the deduction rows stay locked until the caller's
        transaction ends.
        """
        stmt = (
            select(RctiDeduction)
            .where(
                RctiDeduction.driver_id == driver_id,
                RctiDeduction.status == DeductionStatus.ACTIVE.value,
                RctiDeduction.amount_remaining > 0,
                RctiDeduction.start_date <= week_ending,
            )
            .order_by(RctiDeduction.start_date, RctiDeduction.deduction_id)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        result = await self.session.execute(stmt)
        deductions = list(result.scalars().all())

        prior = await self._load_prior_applications(
            [d.deduction_id for d in deductions], week_ending, exclude_rcti_id
        )
        return [
            d
            for d in deductions
            if is_due_for_week(d, week_ending, prior.get(d.deduction_id))
        ]

    async def apply_to_rcti(
        self,
        rcti: Rcti,
        overrides: DeductionOverrides | None = None,
    ) -> LedgerResult:
        """Apply every due deduction to the RCTI.

        Writes one application row per deduction considered. Non-zero amounts
        move the running balance and complete the deduction when it reaches
        zero. The caller adjusts the RCTI total by ``net_adjustment``.
        """
        overrides = overrides or {}
        now = datetime.now(timezone.utc)
        result = LedgerResult()

        deductions = await self.get_due_deductions(
            rcti.driver_id,
            rcti.week_ending,
            exclude_rcti_id=rcti.rcti_id,
            for_update=True,
        )

        unknown = set(overrides) - {d.deduction_id for d in deductions}
        if unknown:
            logger.warning(
                "Ignoring overrides for deductions not due on this RCTI",
                extra={"rcti_id": rcti.rcti_id, "deduction_ids": sorted(unknown)},
            )

        for deduction in deductions:
            amount = resolve_amount(deduction, overrides)

            self.session.add(
                RctiDeductionApplication(
                    deduction_id=deduction.deduction_id,
                    rcti_id=rcti.rcti_id,
                    amount=amount,
                    applied_at=now,
                )
            )

            if amount > ZERO:
                deduction.amount_paid = round_to_cents(deduction.amount_paid + amount)
                remaining = round_to_cents(deduction.amount_remaining - amount)
                if remaining <= ZERO:
                    remaining = ZERO
                    deduction.status = DeductionStatus.COMPLETED.value
                    deduction.completed_at = now
                deduction.amount_remaining = remaining

                if deduction.deduction_type == DeductionType.REIMBURSEMENT:
                    result.total_reimbursement_amount += amount
                else:
                    result.total_deduction_amount += amount

            result.applied.append(
                AppliedDeduction(
                    deduction_id=deduction.deduction_id,
                    deduction_type=deduction.deduction_type,
                    description=deduction.description,
                    amount=amount,
                    amount_remaining=deduction.amount_remaining,
                    status=deduction.status,
                )
            )

        await self.session.flush()

        logger.info(
            "Applied deductions to RCTI",
            extra={
                "rcti_id": rcti.rcti_id,
                "considered": len(result.applied),
                "total_deductions": str(result.total_deduction_amount),
                "total_reimbursements": str(result.total_reimbursement_amount),
            },
        )
        return result

    async def reverse_for_rcti(self, rcti_id: int) -> LedgerResult:
        """Undo every application on the RCTI and delete the rows.

        Balances are restored exactly. A completed deduction whose balance
        becomes positive again is reactivated.
        """
        stmt = (
            select(RctiDeductionApplication)
            .where(RctiDeductionApplication.rcti_id == rcti_id)
            .options(selectinload(RctiDeductionApplication.deduction))
            .order_by(RctiDeductionApplication.application_id)
        )
        applications = list((await self.session.execute(stmt)).scalars().all())

        deduction_ids = sorted({app.deduction_id for app in applications})
        if deduction_ids:
            await self.session.execute(
                select(RctiDeduction)
                .where(RctiDeduction.deduction_id.in_(deduction_ids))
                .with_for_update()
                .execution_options(populate_existing=True)
            )

        result = LedgerResult()
        for application in applications:
            deduction = application.deduction
            amount = application.amount

            if amount > ZERO:
                deduction.amount_paid = round_to_cents(deduction.amount_paid - amount)
                deduction.amount_remaining = round_to_cents(deduction.amount_remaining + amount)
                if (
                    deduction.status == DeductionStatus.COMPLETED
                    and deduction.amount_remaining > ZERO
                ):
                    deduction.status = DeductionStatus.ACTIVE.value
                    deduction.completed_at = None

                if deduction.deduction_type == DeductionType.REIMBURSEMENT:
                    result.total_reimbursement_amount += amount
                else:
                    result.total_deduction_amount += amount

            result.applied.append(
                AppliedDeduction(
                    deduction_id=deduction.deduction_id,
                    deduction_type=deduction.deduction_type,
                    description=deduction.description,
                    amount=amount,
                    amount_remaining=deduction.amount_remaining,
                    status=deduction.status,
                )
            )
            await self.session.delete(application)

        await self.session.flush()

        logger.info(
            "Reversed deductions for RCTI",
            extra={"rcti_id": rcti_id, "reversed": len(applications)},
        )
        return result

    async def get_pending_deductions(
        self, driver_id: int, week_ending: date
    ) -> list[PendingDeduction]:
        """Preview what finalize would apply by default for the week."""
        deductions = await self.get_due_deductions(driver_id, week_ending)
        return [
            PendingDeduction(deduction=d, amount=default_cycle_amount(d))
            for d in deductions
        ]

    async def get_rcti_deduction_summary(self, rcti_id: int) -> DeductionSummary:
        """Applications recorded against an RCTI, with totals."""
        stmt = (
            select(RctiDeductionApplication)
            .where(RctiDeductionApplication.rcti_id == rcti_id)
            .options(selectinload(RctiDeductionApplication.deduction))
            .order_by(RctiDeductionApplication.applied_at, RctiDeductionApplication.application_id)
        )
        applications = list((await self.session.execute(stmt)).scalars().all())

        total_deductions = ZERO
        total_reimbursements = ZERO
        for application in applications:
            if application.deduction.deduction_type == DeductionType.REIMBURSEMENT:
                total_reimbursements += application.amount
            else:
                total_deductions += application.amount

        return DeductionSummary(
            rcti_id=rcti_id,
            applications=applications,
            total_deductions=total_deductions,
            total_reimbursements=total_reimbursements,
        )

"""RCTI, line, deduction agreement and audit models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rcti_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from rcti_engine.models.fleet import Driver, Job

BREAK_DEDUCTION_CUSTOMER = "Break Deduction"

ZERO = Decimal("0")


# ===== Invoices =====


class Rcti(Base, TimestampMixin):
    """A driver's weekly recipient-created tax invoice.

    Driver, ABN and bank details are snapshotted at creation so a historical
    invoice does not change when the driver profile does.
    """

    __tablename__ = "rcti"

    rcti_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    driver_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("driver.driver_id"),
        nullable=False,
    )
    driver_name: Mapped[str] = mapped_column(String, nullable=False)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    driver_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    driver_abn: Mapped[str | None] = mapped_column(String, nullable=True)
    week_ending: Mapped[date] = mapped_column(Date, nullable=False)
    gst_status: Mapped[str] = mapped_column(String, nullable=False, default="not_registered")
    gst_mode: Mapped[str] = mapped_column(String, nullable=False, default="exclusive")
    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_bsb: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    gst: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)

    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reverted_to_draft_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reverted_to_draft_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'finalised', 'paid')",
            name="rcti_status_check",
        ),
        CheckConstraint(
            "gst_status IN ('registered', 'not_registered')",
            name="rcti_gst_status_check",
        ),
        CheckConstraint(
            "gst_mode IN ('inclusive', 'exclusive')",
            name="rcti_gst_mode_check",
        ),
    )

    # Relationships
    driver: Mapped[Driver] = relationship(back_populates="rctis")
    lines: Mapped[list[RctiLine]] = relationship(
        back_populates="rcti",
        cascade="all, delete-orphan",
        order_by=lambda: [RctiLine.job_date, RctiLine.rcti_line_id],
    )
    deduction_applications: Mapped[list[RctiDeductionApplication]] = relationship(
        back_populates="rcti",
        cascade="all, delete-orphan",
        order_by=lambda: [
            RctiDeductionApplication.applied_at,
            RctiDeductionApplication.application_id,
        ],
    )
    status_changes: Mapped[list[RctiStatusChange]] = relationship(
        back_populates="rcti",
        cascade="all, delete-orphan",
        order_by=lambda: [
            RctiStatusChange.changed_at.desc(),
            RctiStatusChange.status_change_id.desc(),
        ],
    )


class RctiLine(Base, TimestampMixin):
    """One job, manual entry or synthetic break deduction on an RCTI."""

    __tablename__ = "rcti_line"

    rcti_line_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rcti_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("rcti.rcti_id", ondelete="CASCADE"),
        nullable=False,
    )
    job_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("job.job_id", ondelete="SET NULL"),
        nullable=True,
    )
    job_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer: Mapped[str] = mapped_column(String, nullable=False)
    truck_type: Mapped[str] = mapped_column(String, nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    charged_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    rate_per_hour: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    amount_ex_gst: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_inc_gst: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Relationships
    rcti: Mapped[Rcti] = relationship(back_populates="lines")
    job: Mapped[Job | None] = relationship()

    @property
    def is_break_deduction(self) -> bool:
        """Break lines are regenerated on every line change, never edited."""
        return self.customer == BREAK_DEDUCTION_CUSTOMER


# ===== Deduction ledger =====


class RctiDeduction(Base, TimestampMixin):
    """A driver's standing deduction or reimbursement agreement."""

    __tablename__ = "rcti_deduction"

    deduction_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    driver_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("driver.driver_id", ondelete="CASCADE"),
        nullable=False,
    )
    deduction_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    amount_remaining: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_per_cycle: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    frequency: Mapped[str] = mapped_column(String, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "deduction_type IN ('deduction', 'reimbursement')",
            name="rcti_deduction_type_check",
        ),
        CheckConstraint(
            "frequency IN ('once', 'weekly', 'fortnightly', 'monthly')",
            name="rcti_deduction_frequency_check",
        ),
        CheckConstraint(
            "status IN ('active', 'completed', 'cancelled')",
            name="rcti_deduction_status_check",
        ),
        CheckConstraint("amount_remaining >= 0", name="rcti_deduction_remaining_check"),
    )

    # Relationships
    driver: Mapped[Driver] = relationship(back_populates="deductions")
    applications: Mapped[list[RctiDeductionApplication]] = relationship(
        back_populates="deduction",
        cascade="all, delete-orphan",
        order_by=lambda: [
            RctiDeductionApplication.applied_at,
            RctiDeductionApplication.application_id,
        ],
    )


class RctiDeductionApplication(Base):
    """Audit and ledger-movement row: one per deduction considered for an RCTI.

    A zero amount records an explicit skip.
    """

    __tablename__ = "rcti_deduction_application"

    application_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deduction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("rcti_deduction.deduction_id", ondelete="CASCADE"),
        nullable=False,
    )
    rcti_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("rcti.rcti_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("deduction_id", "rcti_id", name="rcti_deduction_application_unique"),
        CheckConstraint("amount >= 0", name="rcti_deduction_application_amount_check"),
    )

    # Relationships
    deduction: Mapped[RctiDeduction] = relationship(back_populates="applications")
    rcti: Mapped[Rcti] = relationship(back_populates="deduction_applications")


# ===== Audit =====


class RctiStatusChange(Base):
    """Append-only status transition record."""

    __tablename__ = "rcti_status_change"

    status_change_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rcti_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("rcti.rcti_id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[str] = mapped_column(String, nullable=False)
    to_status: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    rcti: Mapped[Rcti] = relationship(back_populates="status_changes")

"""Driver and job models.

These tables belong to the wider operations app; the RCTI engine only reads
them to snapshot driver details and turn jobs into invoice lines.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rcti_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from rcti_engine.models.rcti import Rcti, RctiDeduction


class Driver(Base, TimestampMixin):
    """A driver, with the pay settings used on their RCTIs."""

    __tablename__ = "driver"

    driver_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    driver_type: Mapped[str] = mapped_column(String, nullable=False, default="Contractor")
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    abn: Mapped[str | None] = mapped_column(String, nullable=True)
    gst_status: Mapped[str] = mapped_column(String, nullable=False, default="not_registered")
    gst_mode: Mapped[str] = mapped_column(String, nullable=False, default="exclusive")
    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_bsb: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    # Hourly rates by truck class
    tray: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    crane: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    semi: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    semi_crane: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # Unpaid break hours deducted per long imported job
    breaks: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "driver_type IN ('Employee', 'Contractor', 'Subcontractor')",
            name="driver_type_check",
        ),
        CheckConstraint(
            "gst_status IN ('registered', 'not_registered')",
            name="driver_gst_status_check",
        ),
        CheckConstraint(
            "gst_mode IN ('inclusive', 'exclusive')",
            name="driver_gst_mode_check",
        ),
    )

    # Relationships
    jobs: Mapped[list[Job]] = relationship(back_populates="driver")
    rctis: Mapped[list[Rcti]] = relationship(back_populates="driver")
    deductions: Mapped[list[RctiDeduction]] = relationship(back_populates="driver")

    @property
    def is_employee(self) -> bool:
        """Employees are paid through payroll, never through an RCTI."""
        return self.driver_type == "Employee"


class Job(Base, TimestampMixin):
    """A single job performed by a driver."""

    __tablename__ = "job"

    job_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    driver_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("driver.driver_id", ondelete="SET NULL"),
        nullable=True,
    )
    job_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer: Mapped[str | None] = mapped_column(String, nullable=True)
    truck_type: Mapped[str | None] = mapped_column(String, nullable=True)
    charged_hours: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    driver_charge: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    pickup: Mapped[str | None] = mapped_column(String, nullable=True)
    dropoff: Mapped[str | None] = mapped_column(String, nullable=True)
    job_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    driver: Mapped[Driver | None] = relationship(back_populates="jobs")

    @property
    def route_description(self) -> str | None:
        """Pickup to dropoff, falling back to the reference or pickup."""
        if self.dropoff:
            return f"{self.pickup or ''} → {self.dropoff}".strip()
        return self.job_reference or self.pickup

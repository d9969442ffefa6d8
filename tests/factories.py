"""Row builders shared by the test modules."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from rcti_engine.models import Driver, Job, Rcti, RctiDeduction, RctiLine

# A Sunday; its week runs Monday 2024-06-10 to Sunday 2024-06-16
WEEK_ENDING = date(2024, 6, 16)

CENTS = Decimal("0.01")


async def make_job(
    session: AsyncSession,
    driver: Driver | None,
    job_date: date,
    charged_hours: str | None = "8",
    truck_type: str | None = "Tray",
    driver_charge: str | None = None,
    **fields: Any,
) -> Job:
    """Insert a job and commit."""
    job = Job(
        driver_id=driver.driver_id if driver else None,
        job_date=job_date,
        customer=fields.pop("customer", "Acme Builders"),
        truck_type=truck_type,
        charged_hours=Decimal(charged_hours) if charged_hours is not None else None,
        driver_charge=Decimal(driver_charge) if driver_charge is not None else None,
        **fields,
    )
    session.add(job)
    await session.commit()
    return job


async def make_rcti(
    session: AsyncSession,
    driver: Driver,
    week_ending: date = WEEK_ENDING,
    status: str = "draft",
    gst_status: str = "registered",
    lines: list[tuple[str, str]] | None = None,
    invoice_number: str | None = None,
) -> Rcti:
    """Insert an RCTI directly, with manual lines given as (hours, rate) pairs.

    Totals are line sums, as they would be for a draft.
    """
    rcti = Rcti(
        invoice_number=invoice_number or f"RCTI-TEST-{driver.driver_id}-{week_ending:%Y%m%d}",
        driver_id=driver.driver_id,
        driver_name=driver.name,
        business_name=driver.business_name,
        week_ending=week_ending,
        gst_status=gst_status,
        gst_mode="exclusive",
        status=status,
    )
    subtotal = gst = total = Decimal("0")
    for hours, rate in lines or []:
        ex = (Decimal(hours) * Decimal(rate)).quantize(CENTS)
        line_gst = Decimal("0")
        if gst_status == "registered":
            line_gst = (ex * Decimal("0.10")).quantize(CENTS)
        rcti.lines.append(
            RctiLine(
                job_date=week_ending,
                customer="Manual Customer",
                truck_type="Tray",
                charged_hours=Decimal(hours),
                rate_per_hour=Decimal(rate),
                amount_ex_gst=ex,
                gst_amount=line_gst,
                amount_inc_gst=ex + line_gst,
            )
        )
        subtotal += ex
        gst += line_gst
        total += ex + line_gst
    rcti.subtotal = subtotal
    rcti.gst = gst
    rcti.total = total

    session.add(rcti)
    await session.commit()
    return rcti


async def make_deduction(
    session: AsyncSession,
    driver: Driver,
    total: str,
    frequency: str = "once",
    per_cycle: str | None = None,
    deduction_type: str = "deduction",
    start_date: date = date(2024, 6, 1),
    status: str = "active",
    description: str = "Fuel card advance",
) -> RctiDeduction:
    """Insert a deduction agreement with a fresh balance."""
    deduction = RctiDeduction(
        driver_id=driver.driver_id,
        deduction_type=deduction_type,
        description=description,
        total_amount=Decimal(total),
        amount_paid=Decimal("0"),
        amount_remaining=Decimal(total),
        amount_per_cycle=Decimal(per_cycle) if per_cycle is not None else Decimal(total),
        frequency=frequency,
        start_date=start_date,
        status=status,
    )
    session.add(deduction)
    await session.commit()
    return deduction

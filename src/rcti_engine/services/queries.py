"""Shared RCTI loading helpers."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rcti_engine.errors import NotFoundError
from rcti_engine.models import Rcti, RctiDeductionApplication


def rcti_load_options() -> list:
    """Eager loads for an RCTI returned to callers.

    Async sessions cannot lazy-load, so everything a caller may touch is
    loaded up front.
    """
    return [
        selectinload(Rcti.lines),
        selectinload(Rcti.driver),
        selectinload(Rcti.deduction_applications).selectinload(
            RctiDeductionApplication.deduction
        ),
        selectinload(Rcti.status_changes),
    ]


async def load_rcti(
    session: AsyncSession,
    rcti_id: int,
    for_update: bool = False,
) -> Rcti:
    """Load an RCTI with its relationships, refreshing any cached copy.

    With ``for_update`` the RCTI row stays locked until the transaction ends.
    Raises NotFoundError if the id does not resolve.
    """
    stmt = (
        select(Rcti)
        .where(Rcti.rcti_id == rcti_id)
        .options(*rcti_load_options())
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Rcti)

    rcti = (await session.execute(stmt)).scalar_one_or_none()
    if rcti is None:
        raise NotFoundError("RCTI not found")
    return rcti

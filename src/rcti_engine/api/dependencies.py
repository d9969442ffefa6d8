"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from rcti_engine.database import async_session_factory
from rcti_engine.errors import ValidationError


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Services commit their own units of work; this only closes the session.
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_actor(
    x_user_id: Annotated[str | None, Header()] = None
) -> str | None:
    """Extract the acting user from the X-User-Id header, if any."""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


def parse_id(value: str, label: str) -> int:
    """Parse a path id, raising ValidationError("Invalid <label> ID")."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} ID")
    if parsed <= 0:
        raise ValidationError(f"Invalid {label} ID")
    return parsed


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Actor = Annotated[str | None, Depends(get_actor)]

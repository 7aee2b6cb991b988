"""Shared FastAPI dependencies."""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.database import get_session as _get_session
from learnity.gamification.facade import GamificationFacade

get_db = _get_session


async def get_current_user_id(
    x_user_id: str | None = Header(default=None),
) -> int:
    """Caller identity, set by the upstream auth gateway in ``X-User-Id``."""
    if x_user_id is None:
        raise HTTPException(401, "Authentication required")
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(401, "Invalid user id") from None


async def get_optional_user_id(
    x_user_id: str | None = Header(default=None),
) -> int | None:
    """Caller identity when present; public endpoints accept anonymous callers."""
    if x_user_id is None:
        return None
    return await get_current_user_id(x_user_id)


async def get_facade(db: AsyncSession = Depends(get_db)) -> GamificationFacade:  # noqa: B008
    return GamificationFacade(db)

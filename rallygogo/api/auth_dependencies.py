"""
Actor dependencies for FastAPI routes.

Authentication happens upstream; the fronting auth layer forwards the
authenticated profile id in the ``X-Player-Id`` header. These dependencies
resolve it to a profile and check the admin role.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from rallygogo.database.db import get_db_session
from rallygogo.database.models import PlayerRole
from rallygogo.services import data_service


async def get_current_player(
    x_player_id: Optional[int] = Header(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """
    Dependency to get the acting player.

    Returns:
        Profile dictionary

    Raises:
        HTTPException: 401 if the header is missing or the profile is unknown
    """
    if x_player_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing player identity",
        )
    profile = await data_service.get_profile(session, x_player_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Player not found",
        )
    return data_service.profile_to_dict(profile)


async def require_admin(player: dict = Depends(get_current_player)) -> dict:
    """Require a player with the admin role."""
    if player.get("role") != PlayerRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return player

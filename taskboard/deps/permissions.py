# taskboard/deps/permissions.py
from typing import Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.models.user import User
from taskboard.roles import Actor, actor_for, leads_team


async def load_actor(db: AsyncSession, user_id: Optional[int]) -> Tuple[User, Actor]:
    """403 when the acting user does not exist; returns the row and its role variant."""
    user = await db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User not found")
    return user, actor_for(user)


async def require_team_leader(db: AsyncSession, user_id: Optional[int], team_code: str, detail: str) -> User:
    """403 with ``detail`` unless ``user_id`` leads ``team_code``."""
    user = await db.get(User, user_id) if user_id is not None else None
    if user is None or not leads_team(actor_for(user), team_code):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
    return user

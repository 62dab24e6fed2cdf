"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from habitquest.gamification.engine import GamificationEngine


def get_engine(request: Request) -> GamificationEngine:
    """The gamification engine built during the application lifespan."""
    return request.app.state.engine


async def get_current_user_id(x_user_id: int | None = Header(default=None)) -> int:
    """Caller identity, set by the upstream authentication gateway."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id

"""
Caller identity for the workout routes.

Credentials are validated upstream; by the time a request reaches this
service the gateway has resolved the user and forwards the id in the
X-User-Id header.
"""
from fastapi import HTTPException, Header
from typing import Optional


async def get_current_user_id(x_user_id: Optional[int] = Header(None, alias="X-User-Id")) -> int:
    """
    Usage:
        @router.get("/workouts/active")
        async def active(user_id: int = Depends(get_current_user_id)): ...
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return x_user_id

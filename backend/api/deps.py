"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Header, HTTPException


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """Return the authenticated user's id.

    Authentication happens upstream (session middleware / gateway), which
    forwards the user id in ``X-User-Id``.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id.strip()

"""FastAPI dependency injection."""

from __future__ import annotations

from typing import Annotated

import aiosqlite
import jwt
from fastapi import Depends, HTTPException, Request

from .db.database import get_db
from .errors import AuthorizationError
from .registry.models import LEAD_ROLES

Db = Annotated[aiosqlite.Connection, Depends(get_db)]


async def _get_current_user(request: Request, db: Db) -> dict:
    """Extract and validate JWT from Authorization header.

    The role and name come from the users table rather than the token, so a
    role change takes effect without logging in again.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    token = auth_header.removeprefix("Bearer ").strip()
    try:
        from .auth.service import decode_token

        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired") from None
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token") from None

    cursor = await db.execute(
        "SELECT id, username, name, role FROM users WHERE id = ?", (payload["sub"],)
    )
    row = await cursor.fetchone()
    if not row:
        raise HTTPException(status_code=401, detail="User not found. Please log in again.")

    return {"sub": row["id"], "username": row["username"], "name": row["name"], "role": row["role"]}


CurrentUser = Annotated[dict, Depends(_get_current_user)]


def require_role(user: dict, *roles: str) -> None:
    """Raise 403 unless the user holds one of the given roles."""
    if user["role"] not in roles:
        raise AuthorizationError(f"User role {user['role']} is not authorized for this action")


def is_lead(user: dict) -> bool:
    return user["role"] in LEAD_ROLES


def require_self_or_lead(user: dict, user_id: str) -> None:
    """Members may only act on their own records; leads may act on anyone's."""
    if user["sub"] != user_id and not is_lead(user):
        raise AuthorizationError("Not authorized to act on another user's work")

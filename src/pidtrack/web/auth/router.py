"""Auth routes."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ..deps import CurrentUser, Db
from ..registry import service as registry
from .models import LoginRequest, TokenResponse, UserResponse
from .service import create_token

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: Db):
    """Mock login: the username must exist in the registry, no password check."""
    user = await registry.get_user_by_username(db, body.username)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")

    return TokenResponse(
        token=create_token(user),
        user=UserResponse(
            id=user["id"], username=user["username"], name=user["name"], role=user["role"]
        ),
    )


@router.get("/me", response_model=UserResponse)
async def me(user: CurrentUser):
    return UserResponse(
        id=user["sub"], username=user["username"], name=user["name"], role=user["role"]
    )

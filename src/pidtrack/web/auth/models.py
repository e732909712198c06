"""Auth Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel


class LoginRequest(BaseModel):
    username: str


class UserResponse(BaseModel):
    id: str
    username: str
    name: str
    role: str


class TokenResponse(BaseModel):
    token: str
    user: UserResponse

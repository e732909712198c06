"""Auth service: JWT operations for the acting principal."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime, timedelta

import jwt

from ..config import WebConfig

_config: WebConfig | None = None


def _get_config() -> WebConfig:
    global _config
    if _config is None:
        _config = WebConfig.load()
    return _config


def init_auth(config: WebConfig) -> None:
    """Bind the signing configuration used by create_token/decode_token."""
    global _config
    _config = config


def create_token(user: dict) -> str:
    """Create a JWT token for a user row."""
    config = _get_config()
    now = datetime.now(UTC)
    payload = {
        "sub": user["id"],
        "username": user["username"],
        "name": user["name"],
        "role": user["role"],
        "exp": now + timedelta(hours=config.jwt_expire_hours),
        "iat": now,
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.InvalidTokenError on failure."""
    config = _get_config()
    return jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])

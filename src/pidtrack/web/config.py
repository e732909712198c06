"""Web server configuration."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class WebConfig:
    """Configuration for the web server."""

    host: str = "0.0.0.0"
    port: int = 8000
    db_path: str = ".pidtrack/pidtrack.db"
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24
    cors_origins: list[str] | None = None
    debug: bool = False
    seed_demo_data: bool = True
    # PID assignments to the same user/task type/project within this many
    # minutes are folded into one task.
    task_reuse_window_minutes: int = 5

    @classmethod
    def load(cls) -> WebConfig:
        config = cls()
        config.host = os.environ.get("PIDTRACK_HOST", config.host)
        config.port = int(os.environ.get("PIDTRACK_PORT", config.port))
        config.db_path = os.environ.get("PIDTRACK_DB_PATH", config.db_path)
        config.jwt_secret = os.environ.get("PIDTRACK_JWT_SECRET", "")
        config.jwt_expire_hours = int(
            os.environ.get("PIDTRACK_JWT_EXPIRE_HOURS", config.jwt_expire_hours)
        )
        config.debug = os.environ.get("PIDTRACK_DEBUG", "").lower() in ("1", "true")
        config.seed_demo_data = os.environ.get("PIDTRACK_SEED", "true").lower() not in (
            "0",
            "false",
            "no",
        )
        origins = os.environ.get("PIDTRACK_CORS_ORIGINS")
        if origins:
            config.cors_origins = [o.strip() for o in origins.split(",")]
        config.task_reuse_window_minutes = int(
            os.environ.get(
                "PIDTRACK_TASK_REUSE_WINDOW_MINUTES", config.task_reuse_window_minutes
            )
        )

        if not config.jwt_secret:
            # Sessions won't survive restarts, which is fine for local development.
            config.jwt_secret = secrets.token_hex(32)
            logger.warning(
                "PIDTRACK_JWT_SECRET not set -- using random ephemeral secret. "
                "Set PIDTRACK_JWT_SECRET for persistent sessions."
            )

        return config

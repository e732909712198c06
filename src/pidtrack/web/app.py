"""FastAPI app factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import WebConfig
from .errors import PersistenceError, TrackerError, ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """App lifespan: init DB, seed demo data, bind auth settings."""
    config: WebConfig = app.state.config

    # Init SQLite
    from .db.database import connect, init_db

    await init_db(config.db_path)

    # Seed demo data
    if config.seed_demo_data:
        from .db.seed import seed_db

        db = await connect()
        try:
            if await seed_db(db):
                logger.info("Seeded demo data")
        finally:
            await db.close()

    # Init auth
    from .auth.service import init_auth

    init_auth(config)

    yield


def create_app(config: WebConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or WebConfig.load()

    app = FastAPI(
        title="pidtrack",
        description="Work assignment and progress tracking for P&ID review",
        version="0.1.0",
        lifespan=lifespan,
        debug=config.debug,
    )
    app.state.config = config

    # CORS
    origins = config.cors_origins or [
        "http://localhost",
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    from .audit.router import router as audit_router
    from .auth.router import router as auth_router
    from .events.router import router as events_router
    from .metrics.router import router as metrics_router
    from .pid_work.router import router as pid_work_router
    from .registry.router import router as registry_router
    from .tasks.router import router as tasks_router

    app.include_router(audit_router)
    app.include_router(auth_router)
    app.include_router(events_router)
    app.include_router(metrics_router)
    app.include_router(pid_work_router)
    app.include_router(registry_router)
    app.include_router(tasks_router)

    # Error handlers
    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError):
        if isinstance(exc, PersistenceError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.__cause__)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies and params share the 400 taxonomy with service checks.
        errors = exc.errors()
        fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in errors]
        message = f"{fields[0]}: {errors[0]['msg']}" if errors else "Invalid request"
        error = ValidationError(message, fields=fields)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app

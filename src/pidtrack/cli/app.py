"""Main CLI application using Typer."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime
from typing import Annotated, Optional

import aiosqlite
import typer

from .output import console, print_error, print_info, print_metrics_table, print_success

app = typer.Typer(
    name="pidtrack",
    help="Work assignment and progress tracking for P&ID review",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@app.command("serve")
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", help="Bind address (default: PIDTRACK_HOST or 0.0.0.0)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port (default: PIDTRACK_PORT or 8000)"),
    ] = None,
    reload: Annotated[
        bool,
        typer.Option("--reload", help="Restart on code changes (development)"),
    ] = False,
):
    """Run the HTTP API.

    Examples:
        pidtrack serve
        pidtrack serve --port 9000 --reload
    """
    import uvicorn

    from ..web.config import WebConfig

    config = WebConfig.load()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO, format=LOG_FORMAT
    )

    uvicorn.run(
        "pidtrack.web.app:create_app",
        factory=True,
        host=host or config.host,
        port=port or config.port,
        reload=reload,
        log_level="debug" if config.debug else "info",
    )


@app.command("init-db")
def init_db(
    seed: Annotated[
        bool,
        typer.Option("--seed", help="Load demo users, a project and P&IDs"),
    ] = False,
):
    """Create the database (and optionally seed demo data)."""
    from ..web.config import WebConfig

    config = WebConfig.load()
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)

    try:
        seeded = asyncio.run(_init_db(config.db_path, seed))
    except Exception as e:
        print_error(f"Could not initialise {config.db_path}: {e}")
        raise typer.Exit(1) from None

    print_success(f"Database ready at {config.db_path}")
    if seed:
        print_info("Demo data loaded." if seeded else "Database already has users; seed skipped.")


async def _init_db(db_path: str, seed: bool) -> bool:
    from ..web.db.database import connect
    from ..web.db.database import init_db as _create
    from ..web.db.seed import seed_db

    await _create(db_path)
    if not seed:
        return False
    db = await connect(db_path)
    try:
        return await seed_db(db)
    finally:
        await db.close()


@app.command("metrics")
def metrics(
    day: Annotated[
        Optional[str],
        typer.Option("--date", "-d", help="Day to report, YYYY-MM-DD (default: today, UTC)"),
    ] = None,
    user: Annotated[
        Optional[str],
        typer.Option("--user", "-u", help="Only this username"),
    ] = None,
):
    """Show daily, weekly and monthly completion metrics.

    Examples:
        pidtrack metrics
        pidtrack metrics --date 2026-03-02 --user alice
    """
    from ..web.config import WebConfig

    try:
        target = date.fromisoformat(day) if day else datetime.now(UTC).date()
    except ValueError:
        print_error(f"Invalid date: {day}")
        raise typer.Exit(1) from None

    config = WebConfig.load()
    try:
        report, names = asyncio.run(_load_metrics(config.db_path, target, user))
    except (LookupError, aiosqlite.Error) as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    console.print(f"[bold]Metrics for {report['date']}[/bold]")
    console.print()
    print_metrics_table("Daily", report["daily"], names)
    print_metrics_table("Weekly (7 days)", report["weekly"], names)
    print_metrics_table("Monthly (30 days)", report["monthly"], names)


async def _load_metrics(
    db_path: str, target: date, username: str | None
) -> tuple[dict, dict[str, str]]:
    from ..web.db.database import connect
    from ..web.metrics import service as metrics_service
    from ..web.registry import service as registry

    db = await connect(db_path)
    try:
        user_id = None
        if username:
            found = await registry.get_user_by_username(db, username)
            if found is None:
                raise LookupError(f"Unknown user: {username}")
            user_id = found["id"]

        report = await metrics_service.get_metrics(db, target, user_id=user_id)
        cursor = await db.execute("SELECT id, name FROM users")
        names = {row["id"]: row["name"] for row in await cursor.fetchall()}
    finally:
        await db.close()
    return report, names


if __name__ == "__main__":
    app()

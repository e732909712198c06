"""Async SQLite connection management and transaction helpers."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

_db_path: str = ""

# One writer at a time per connection; BEGIN IMMEDIATE covers other connections.
_tx_locks: weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def timestamp(dt: datetime | None = None) -> str:
    """Render a UTC timestamp the way SQLite's CURRENT_TIMESTAMP does."""
    dt = dt or datetime.now(UTC)
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


async def connect(db_path: str | None = None) -> aiosqlite.Connection:
    """Open a connection configured for the service.

    Connections run in autocommit mode; multi-statement writes go through
    :func:`transaction`.
    """
    path = db_path or _db_path
    if not path:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    db = await aiosqlite.connect(path, isolation_level=None, timeout=10.0)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys=ON")
    return db


async def apply_schema(db: aiosqlite.Connection) -> None:
    await db.executescript(SCHEMA_PATH.read_text())


async def init_db(db_path: str) -> None:
    """Create the database file if needed and apply the schema."""
    global _db_path
    _db_path = db_path

    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    db = await connect(db_path)
    try:
        await db.execute("PRAGMA journal_mode=WAL")
        await apply_schema(db)
    finally:
        await db.close()
    logger.info("Database ready at %s", db_path)


def get_db_path() -> str:
    if not _db_path:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db_path


async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    """Yield a connection for the duration of one request."""
    db = await connect(get_db_path())
    try:
        yield db
    finally:
        await db.close()


@asynccontextmanager
async def transaction(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run a block as one write transaction.

    Commits on success. Any exception rolls everything back; database errors
    are re-raised as :class:`PersistenceError` with the original as cause.
    """
    lock = _tx_locks.get(db)
    if lock is None:
        lock = _tx_locks[db] = asyncio.Lock()

    async with lock:
        try:
            await db.execute("BEGIN IMMEDIATE")
        except aiosqlite.Error as e:
            raise PersistenceError("Could not start transaction") from e

        try:
            yield db
        except aiosqlite.Error as e:
            await db.rollback()
            logger.exception("Transaction rolled back")
            raise PersistenceError("The operation could not be saved") from e
        except BaseException:
            await db.rollback()
            raise

        try:
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            logger.exception("Commit failed")
            raise PersistenceError("The operation could not be saved") from e


@asynccontextmanager
async def savepoint(db: aiosqlite.Connection, name: str) -> AsyncIterator[None]:
    """Nested unit inside an open transaction.

    On error only the work since the savepoint is undone and the error is
    re-raised; the caller decides whether the outer transaction goes on.
    """
    await db.execute(f"SAVEPOINT {name}")
    try:
        yield
    except BaseException:
        await db.execute(f"ROLLBACK TO SAVEPOINT {name}")
        await db.execute(f"RELEASE SAVEPOINT {name}")
        raise
    await db.execute(f"RELEASE SAVEPOINT {name}")

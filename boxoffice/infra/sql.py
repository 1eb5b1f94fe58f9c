import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from .. import config

Gated = Callable[[], AsyncContextManager[None]]

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),  # heroku-style
)

SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    # writers queue on the file lock instead of failing fast
    "busy_timeout=5000",
    "synchronous=NORMAL",
)


def normalize_async_url(url: str) -> str:
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def make_gate(limit: int) -> Gated:
    """`async with gated():` admits at most `limit` coroutines at once."""
    sem = asyncio.Semaphore(max(1, limit))

    @asynccontextmanager
    async def gated():
        async with sem:
            yield

    return gated


def _apply_sqlite_pragmas(dbapi_connection, _record) -> None:
    cur = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cur.execute(f"PRAGMA {pragma};")
    cur.close()


def make_async_engine(
    database_url: str,
    *,
    pool_size: Optional[int] = None,
    gate_limit: Optional[int] = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession], Gated]:
    """
    Build the async engine, a session factory and a DB gate.

    The gate bounds how many coroutines talk to the database at once, so a
    burst of requests queues in the app instead of exhausting the pool.
    On Postgres it defaults to the pool size.
    """
    db_url = normalize_async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)

    if db_url.startswith("postgresql+asyncpg://"):
        pool_size = pool_size or config.DB_POOL_SIZE
        kw.update(
            pool_size=pool_size,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_timeout=config.DB_POOL_TIMEOUT,
        )

    engine = create_async_engine(db_url, **kw)
    if db_url.startswith("sqlite+aiosqlite://"):
        event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)

    sessions = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    limit = gate_limit or config.DB_GATE_LIMIT or pool_size or 10
    return engine, sessions, make_gate(limit)

"""Async engine, session factory and DB gate for the web app and poller.

Both share one engine and one gate, so the gate is built per engine and
handed to every TicketStore. sqlite enforces foreign keys (tickets point at
their purchase request) and gets a gate of 1, since it serializes writers
anyway; postgres gates at its pool size.
"""
import os
import asyncio
from typing import AsyncContextManager, Callable
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
)
from contextlib import asynccontextmanager

Gated = Callable[[], AsyncContextManager[None]]


def normalize_async_url(url: str) -> str:
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


# DB gate: bounds concurrent store operations between the HTTP handlers and
# the reconciliation poller, which share one engine.
@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    await sem.acquire()
    try:
        yield
    finally:
        sem.release()


def make_gate(limit: int) -> Gated:
    sem = asyncio.Semaphore(max(1, limit))

    def gated():
        return _gated(sem)

    return gated


def make_async_engine(database_url: str) -> tuple[
        AsyncEngine, async_sessionmaker[AsyncSession], Gated]:
    db_url = normalize_async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)

    pool_size = None
    if db_url.startswith("postgresql+asyncpg://"):
        pool_size = int(os.getenv("DB_POOL_SIZE", "5"))
        kw.update(
            pool_size=pool_size,
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "5")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        )

    engine = create_async_engine(db_url, **kw)

    if db_url.startswith("sqlite+aiosqlite://"):
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA busy_timeout=5000;")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    # sqlite serializes writers anyway; postgres defaults to the pool size
    default_gate = 1 if pool_size is None else pool_size
    gated = make_gate(int(os.getenv("DB_GATE_LIMIT", str(default_gate))))
    return engine, SessionAsync, gated

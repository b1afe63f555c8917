import json
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg
from .config import settings

_pool: asyncpg.Pool | None = None

async def _init_connection(conn: asyncpg.Connection) -> None:
    # jsonb columns round-trip as dicts
    await conn.set_type_codec(
        "jsonb",
        encoder=lambda value: json.dumps(value, default=str),
        decoder=json.loads,
        schema="pg_catalog",
    )

async def init_db_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is not set")
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=1,
            max_size=10,
            command_timeout=30,
            init=_init_connection,
        )
    return _pool

async def close_db_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None

async def get_pool() -> asyncpg.Pool:
    if _pool is None:
        return await init_db_pool()
    return _pool

@asynccontextmanager
async def acquire() -> AsyncIterator[asyncpg.Connection]:
    """Borrow one pooled connection for a single unit of work."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional
from urllib.parse import urlparse

import asyncpg

from genmedia.config import settings

logger = logging.getLogger("genmedia.db")

_pool: Optional[asyncpg.Pool] = None
_pool_lock = asyncio.Lock()


def redact_dsn(dsn: str) -> str:
    """postgresql://user:pw@host:5432/db -> postgresql://***@host:5432/db"""
    try:
        u = urlparse(dsn)
        return f"{u.scheme}://***@{u.hostname or ''}:{u.port or ''}/{(u.path or '').lstrip('/')}"
    except ValueError:
        return "<invalid-dsn>"


async def _setup_connection(conn: asyncpg.Connection) -> None:
    # rows come back with dicts for json/jsonb columns; parameters may be passed as dicts
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(typename, encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is not None:
        return _pool

    async with _pool_lock:
        if _pool is None:
            dsn = (settings.DATABASE_URL or "").strip()
            if not dsn:
                raise RuntimeError("DATABASE_URL is required")
            logger.info("db_pool_init", extra={"dsn": redact_dsn(dsn)})
            _pool = await asyncpg.create_pool(
                dsn=dsn,
                min_size=settings.DB_POOL_MIN,
                max_size=settings.DB_POOL_MAX,
                command_timeout=settings.DB_COMMAND_TIMEOUT,
                server_settings={"application_name": settings.SERVICE_NAME},
                init=_setup_connection,
            )
    return _pool


async def close_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.close()
        logger.info("db_pool_closed")

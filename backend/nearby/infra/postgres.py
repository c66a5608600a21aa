"""Process-wide asyncpg pool."""

from __future__ import annotations

from typing import Optional

import asyncpg

from nearby.settings import settings

_pool: Optional[asyncpg.Pool] = None


def _dsn() -> str:
	# asyncpg may try ::1 first for "localhost"; local Postgres usually listens on v4 only.
	return settings.postgres_url.replace("@localhost", "@127.0.0.1")


async def init_pool() -> asyncpg.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=_dsn(),
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
		)
	return _pool


async def get_pool() -> asyncpg.Pool:
	return _pool if _pool is not None else await init_pool()


async def ping() -> None:
	"""Round-trip ``SELECT 1``; raises whatever the driver raises."""
	pool = await get_pool()
	async with pool.acquire() as conn:
		await conn.fetchval("SELECT 1")


async def close_pool() -> None:
	global _pool
	pool, _pool = _pool, None
	if pool is not None:
		await pool.close()

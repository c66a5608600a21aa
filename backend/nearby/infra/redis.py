"""Shared Redis client behind a swappable proxy.

Modules import ``redis_client`` once; tests swap the target for fakeredis
with ``set_redis_client`` and every holder of the proxy follows.
"""

from __future__ import annotations

import redis.asyncio as redis

from nearby.settings import settings


class RedisProxy:
	def __init__(self, client: redis.Redis):
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	async def ping(self) -> None:
		if not await self._client.ping():
			raise redis.ConnectionError("redis ping returned false")

	def __getattr__(self, name):
		return getattr(self._client, name)


redis_client = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)

"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nearby.api import activities, ops, rooms
from nearby.gateway import RedisChangeFeed, get_dispatcher, set_gateway
from nearby.gateway.postgres import PostgresGateway
from nearby.infra import postgres
from nearby.infra.redis import redis_client
from nearby.obs import init as obs_init
from nearby.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	change_feed: RedisChangeFeed | None = None
	if settings.uses_postgres():
		await postgres.init_pool()
		set_gateway(
			PostgresGateway(
				redis=redis_client,
				dispatcher=get_dispatcher(),
				stream_key=settings.realtime_stream,
				stream_maxlen=settings.realtime_stream_maxlen,
			)
		)
		change_feed = RedisChangeFeed(
			redis=redis_client,
			dispatcher=get_dispatcher(),
			stream_key=settings.realtime_stream,
		)
		await change_feed.start()
		app.state.change_feed = change_feed
		logger.info("postgres gateway ready", extra={"stream": settings.realtime_stream})
	try:
		yield
	finally:
		if change_feed is not None:
			await change_feed.stop()
		if settings.uses_postgres():
			set_gateway(None)
			await postgres.close_pool()


app = FastAPI(title="Nearby Now", lifespan=lifespan)

allow_origins = list(settings.cors_allow_origins)
if "*" in allow_origins and not settings.is_dev():
	allow_origins = [origin for origin in allow_origins if origin != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials="*" not in allow_origins,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)

app.include_router(activities.router, tags=["activities"])
app.include_router(rooms.router, tags=["rooms"])
app.include_router(ops.router, tags=["ops"])


def run() -> None:
	uvicorn.run("nearby.main:app", host=settings.api_host, port=settings.api_port)

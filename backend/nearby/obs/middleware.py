"""Request timing, access log and request-id propagation."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from nearby.obs import logging as obs_logging
from nearby.obs import metrics
from nearby.settings import settings

REQUEST_ID_HEADER = "X-Request-Id"

_access_log = obs_logging.get_logger("nearby.http")


def route_label(request: Request) -> str:
	"""Matched route template, so ``/activities/{activity_id}`` is one series."""
	route = request.scope.get("route")
	path = getattr(route, "path", None)
	return path if path else request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		if not settings.obs_enabled:
			return await call_next(request)

		request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
		request.state.request_id = request_id
		started = time.perf_counter()
		status_code = 500
		with obs_logging.log_context(request_id=request_id):
			try:
				response = await call_next(request)
				status_code = response.status_code
			except Exception:
				_access_log.exception("http_request_error", extra={"method": request.method, "path": request.url.path})
				raise
			finally:
				elapsed = time.perf_counter() - started
				route = route_label(request)
				metrics.observe_request(route, request.method, status_code, elapsed)
				_access_log.info(
					"http_request",
					extra={
						"method": request.method,
						"route": route,
						"status": status_code,
						"latency_ms": round(elapsed * 1000, 3),
					},
				)
		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response


def install(app) -> None:
	app.add_middleware(ObservabilityMiddleware)

"""Operations endpoints: health checks and Prometheus metrics."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from nearby.infra import postgres
from nearby.infra.redis import redis_client
from nearby.settings import settings

router = APIRouter(prefix="", tags=["ops"])


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_metrics_access(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	token = settings.obs_admin_token
	if not token:
		return
	if _resolve_token(X_Admin_Token, authorization) != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok"}


@router.get("/health/ready")
async def health_ready() -> Response:
	checks: dict[str, str] = {"gateway": settings.gateway_backend}
	if settings.uses_postgres():
		for name, probe in (("postgres", postgres.ping), ("redis", redis_client.ping)):
			try:
				await probe()
				checks[name] = "ok"
			except Exception as exc:
				checks[name] = f"error:{type(exc).__name__}"
	status_code = status.HTTP_503_SERVICE_UNAVAILABLE if any(v.startswith("error:") for v in checks.values()) else status.HTTP_200_OK
	return JSONResponse(content={"status": "ok" if status_code == 200 else "degraded", "checks": checks}, status_code=status_code)


@router.get("/metrics")
async def metrics_endpoint(_: None = Depends(require_metrics_access)) -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

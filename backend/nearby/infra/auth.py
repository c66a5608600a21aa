"""Authentication helpers for FastAPI endpoints.

A Bearer JWT (HS256, ``sub`` claim) is always accepted. In development the
``X-User-Id`` header is honoured as well so local tools can impersonate users.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from nearby.obs import logging as obs_logging
from nearby.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def decode_access(token: str) -> Dict[str, Any]:
	options: Dict[str, Any] = {"require": ["sub", "exp"]}
	kwargs: Dict[str, Any] = {"algorithms": ["HS256"], "leeway": 5, "options": options}
	if settings.jwt_audience:
		kwargs["audience"] = settings.jwt_audience
	else:
		options["verify_aud"] = False
	return jwt.decode(token, settings.secret_key, **kwargs)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = decode_access(token)
	except InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	display_name = payload.get("name") or payload.get("display_name")
	return AuthenticatedUser(id=sub, display_name=str(display_name) if display_name else None)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user or fail with 401 not_authenticated."""
	user: Optional[AuthenticatedUser] = None
	if credentials and credentials.scheme.lower() == "bearer":
		user = verify_access_jwt(credentials.credentials)
	elif settings.is_dev() and x_user_id and x_user_id.strip():
		user = AuthenticatedUser(id=x_user_id.strip())
	if user is not None:
		obs_logging.bind_context(user_id=user.id)
		return user
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not_authenticated")

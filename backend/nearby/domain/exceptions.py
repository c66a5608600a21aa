"""Domain-level exceptions shared by the activities and rooms packages."""

from __future__ import annotations

from fastapi import status


class NearbyError(Exception):
	"""Base class for errors surfaced to callers of the core."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "nearby_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class NotAuthenticated(NearbyError):
	"""No current user id is available."""

	status_code = status.HTTP_401_UNAUTHORIZED
	detail = "not_authenticated"


class NotFoundError(NearbyError):
	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class ForbiddenError(NearbyError):
	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class ConflictError(NearbyError):
	"""The request is well formed but the current state rejects it."""

	status_code = status.HTTP_409_CONFLICT
	detail = "conflict"


class ValidationError(NearbyError):
	status_code = 422
	detail = "validation_error"


class TransientGatewayError(NearbyError):
	"""Network or store failure talking to the gateway. Never retried inside the core."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "gateway_unavailable"


def require_user_id(user_id: str | None) -> str:
	if user_id is None or not str(user_id).strip():
		raise NotAuthenticated()
	return str(user_id)

"""FastAPI routes for activity rooms."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from nearby.api import pagination
from nearby.domain.exceptions import NearbyError, ValidationError
from nearby.domain.rooms import schemas
from nearby.domain.rooms.service import RoomService
from nearby.infra.auth import AuthenticatedUser, get_current_user
from nearby.settings import clamp_limit, settings

router = APIRouter(tags=["rooms"])

_room_service = RoomService()


def _as_http_error(exc: Exception) -> HTTPException:
	if isinstance(exc, NearbyError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	if isinstance(exc, ValueError):
		return HTTPException(status_code=ValidationError.status_code, detail=str(exc))
	return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/activities/{activity_id}/room/events", response_model=schemas.EventPageResponse)
async def room_events_endpoint(
	activity_id: str,
	cursor: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.EventPageResponse:
	try:
		page = await _room_service.history(
			auth_user.id,
			activity_id,
			cursor=pagination.event_cursor(cursor),
			limit=clamp_limit(limit, default=settings.room_page_size, maximum=settings.feed_max_page_size),
		)
	except (NearbyError, ValueError) as exc:
		raise _as_http_error(exc) from exc
	return schemas.EventPageResponse(
		items=[schemas.RoomEventOut.from_event(event) for event in page.events],
		next_cursor=pagination.encode_event_cursor(page.next_cursor),
		has_more=page.has_more,
	)


@router.get("/activities/{activity_id}/room/state", response_model=schemas.RoomStateOut)
async def room_state_endpoint(
	activity_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomStateOut:
	try:
		state = await _room_service.state(activity_id)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.RoomStateOut(**state.to_dict())


@router.post(
	"/activities/{activity_id}/room/chat",
	response_model=schemas.RoomEventOut,
	status_code=status.HTTP_201_CREATED,
)
async def send_chat_endpoint(
	activity_id: str,
	payload: schemas.ChatSendRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomEventOut:
	try:
		event = await _room_service.send_chat(auth_user.id, activity_id, payload.text)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.RoomEventOut.from_event(event)


@router.post(
	"/activities/{activity_id}/room/quick",
	response_model=schemas.RoomEventOut,
	status_code=status.HTTP_201_CREATED,
)
async def send_quick_endpoint(
	activity_id: str,
	payload: schemas.QuickSendRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomEventOut:
	try:
		event = await _room_service.send_quick(auth_user.id, activity_id, payload.code)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.RoomEventOut.from_event(event)


@router.get("/room-events/{event_id}", response_model=schemas.RoomEventOut)
async def get_event_endpoint(
	event_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomEventOut:
	try:
		event = await _room_service.get_event(auth_user.id, event_id)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.RoomEventOut.from_event(event)

"""FastAPI routes for activities: feeds, lifecycle and membership."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from nearby.api import pagination
from nearby.domain.activities import schemas
from nearby.domain.activities.models import Place
from nearby.domain.activities.policy import FeedKind
from nearby.domain.activities.service import ActivityDraft, ActivityService, FeedPage
from nearby.domain.exceptions import NearbyError, ValidationError
from nearby.infra.auth import AuthenticatedUser, get_current_user
from nearby.settings import clamp_limit, settings

router = APIRouter(prefix="/activities", tags=["activities"])

_activity_service = ActivityService()


def _as_http_error(exc: Exception) -> HTTPException:
	if isinstance(exc, NearbyError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	if isinstance(exc, ValueError):
		return HTTPException(status_code=ValidationError.status_code, detail=str(exc))
	return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _feed_response(page: FeedPage) -> schemas.FeedPageResponse:
	return schemas.FeedPageResponse(
		items=[schemas.ActivityOut.from_activity(row) for row in page.rows],
		next_cursor=pagination.encode_activity_cursor(page.next_cursor),
		has_more=page.has_more,
	)


async def _feed(kind: FeedKind, user: AuthenticatedUser, cursor: Optional[str], limit: Optional[int]) -> schemas.FeedPageResponse:
	try:
		page = await _activity_service.feed_page(
			kind,
			user.id,
			cursor=pagination.activity_cursor(cursor),
			limit=clamp_limit(limit, default=settings.feed_page_size, maximum=settings.feed_max_page_size),
		)
	except (NearbyError, ValueError) as exc:
		raise _as_http_error(exc) from exc
	return _feed_response(page)


@router.get("/browse", response_model=schemas.FeedPageResponse)
async def browse_endpoint(
	cursor: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.FeedPageResponse:
	return await _feed(FeedKind.BROWSE, auth_user, cursor, limit)


@router.get("/created", response_model=schemas.FeedPageResponse)
async def created_endpoint(
	cursor: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.FeedPageResponse:
	return await _feed(FeedKind.CREATED, auth_user, cursor, limit)


@router.get("/joined", response_model=schemas.FeedPageResponse)
async def joined_endpoint(
	cursor: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.FeedPageResponse:
	return await _feed(FeedKind.JOINED, auth_user, cursor, limit)


@router.get("/history", response_model=schemas.FeedPageResponse)
async def history_endpoint(
	cursor: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.FeedPageResponse:
	return await _feed(FeedKind.HISTORY, auth_user, cursor, limit)


@router.post("", response_model=schemas.ActivityOut, status_code=status.HTTP_201_CREATED)
async def create_activity_endpoint(
	payload: schemas.ActivityCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ActivityOut:
	draft = ActivityDraft(
		title=payload.title_text,
		place=payload.place.to_place() if payload.place else Place(),
		gender_pref=payload.gender_pref,
		capacity=payload.capacity,
		start_time=payload.start_time,
		end_time=payload.end_time,
		expires_at=payload.expires_at,
	)
	try:
		activity = await _activity_service.create_activity(auth_user.id, draft)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.ActivityOut.from_activity(activity)


@router.get("/{activity_id}", response_model=schemas.ActivityOut)
async def get_activity_endpoint(
	activity_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ActivityOut:
	try:
		activity = await _activity_service.get_activity(activity_id)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.ActivityOut.from_activity(activity)


@router.patch("/{activity_id}", response_model=schemas.ActivityEditResponse)
async def edit_activity_endpoint(
	activity_id: str,
	payload: schemas.ActivityEditRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ActivityEditResponse:
	try:
		result = await _activity_service.edit_activity(auth_user.id, activity_id, payload.to_invite_edit())
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.ActivityEditResponse(
		activity=schemas.ActivityOut.from_activity(result.activity),
		changes=[change.to_dict() for change in result.changes],
		system_event_id=result.system_event.id if result.system_event else None,
	)


@router.post("/{activity_id}/join", response_model=schemas.MembershipOut)
async def join_activity_endpoint(
	activity_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MembershipOut:
	try:
		membership = await _activity_service.join_activity(auth_user.id, activity_id)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.MembershipOut.from_membership(membership)


@router.post("/{activity_id}/leave", response_model=schemas.MembershipOut)
async def leave_activity_endpoint(
	activity_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MembershipOut:
	try:
		membership = await _activity_service.leave_activity(auth_user.id, activity_id)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.MembershipOut.from_membership(membership)


@router.post("/{activity_id}/close", response_model=schemas.ActivityOut)
async def close_activity_endpoint(
	activity_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ActivityOut:
	try:
		activity = await _activity_service.close_activity(auth_user.id, activity_id)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.ActivityOut.from_activity(activity)


@router.get("/{activity_id}/members", response_model=schemas.MembersResponse)
async def list_members_endpoint(
	activity_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MembersResponse:
	try:
		members = await _activity_service.list_members(activity_id)
	except NearbyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.MembersResponse(
		items=[schemas.MembershipOut.from_membership(member) for member in members],
		count=len(members),
	)

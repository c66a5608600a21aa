"""Pydantic schemas for the activities API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from nearby.domain.activities.models import Activity, Membership, Place
from nearby.domain.rooms.diff import NOT_PROVIDED, InviteEdit

GENDER_PATTERN = "^(any|female|male)$"


class PlaceIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    address: Optional[str] = Field(default=None, max_length=300)
    text: Optional[str] = Field(default=None, max_length=200)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    place_id: Optional[str] = None
    location_source: Optional[str] = Field(default=None, max_length=32)

    def to_place(self) -> Place:
        return Place(
            name=self.name,
            address=self.address,
            text=self.text,
            lat=self.lat,
            lng=self.lng,
            place_id=self.place_id,
            location_source=self.location_source,
        )


class PlaceOut(PlaceIn):
    label: Optional[str] = None


class ActivityCreateRequest(BaseModel):
    title_text: str = Field(..., min_length=1, max_length=120)
    place: Optional[PlaceIn] = None
    gender_pref: str = Field(default="any", pattern=GENDER_PATTERN)
    capacity: Optional[int] = Field(default=None, ge=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ActivityEditRequest(BaseModel):
    """Partial edit. A field left out of the body is not touched; ``null`` clears it."""

    title_text: Optional[str] = Field(default=None, min_length=1, max_length=120)
    place: Optional[PlaceIn] = None
    gender_pref: Optional[str] = Field(default=None, pattern=GENDER_PATTERN)
    capacity: Optional[int] = Field(default=None, ge=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def to_invite_edit(self) -> InviteEdit:
        sent = self.model_fields_set

        def pick(name: str, value):
            return value if name in sent else NOT_PROVIDED

        return InviteEdit(
            title=pick("title_text", self.title_text),
            place=pick("place", self.place.to_place() if self.place is not None else None),
            gender_pref=pick("gender_pref", self.gender_pref),
            capacity=pick("capacity", self.capacity),
            start_time=pick("start_time", self.start_time),
            end_time=pick("end_time", self.end_time),
            expires_at=pick("expires_at", self.expires_at),
        )


class ActivityOut(BaseModel):
    id: str
    creator_id: str
    title_text: str
    place: PlaceOut
    gender_pref: str
    capacity: Optional[int] = None
    status: str
    expires_at: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_activity(cls, activity: Activity) -> "ActivityOut":
        place = activity.place
        return cls(
            id=activity.id,
            creator_id=activity.creator_id,
            title_text=activity.title,
            place=PlaceOut(
                name=place.name,
                address=place.address,
                text=place.text,
                lat=place.lat,
                lng=place.lng,
                place_id=place.place_id,
                location_source=place.location_source,
                label=place.label(),
            ),
            gender_pref=activity.gender_pref,
            capacity=activity.capacity,
            status=activity.status,
            expires_at=activity.expires_at,
            start_time=activity.start_time,
            end_time=activity.end_time,
            created_at=activity.created_at,
        )


class FeedPageResponse(BaseModel):
    items: List[ActivityOut]
    next_cursor: Optional[str] = None
    has_more: bool


class MembershipOut(BaseModel):
    activity_id: str
    user_id: str
    role: str
    state: str
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None

    @classmethod
    def from_membership(cls, membership: Membership) -> "MembershipOut":
        return cls(
            activity_id=membership.activity_id,
            user_id=membership.user_id,
            role=membership.role,
            state=membership.state,
            joined_at=membership.joined_at,
            left_at=membership.left_at,
        )


class MembersResponse(BaseModel):
    items: List[MembershipOut]
    count: int


class ActivityEditResponse(BaseModel):
    activity: ActivityOut
    changes: List[dict] = Field(default_factory=list)
    system_event_id: Optional[str] = None

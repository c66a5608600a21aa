"""Pydantic schemas for the room API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from nearby.domain.rooms import models, system_events


class ChatSendRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=models.CHAT_MAX_LENGTH)


class QuickSendRequest(BaseModel):
    code: str = Field(..., pattern="^(IM_HERE|LATE_10|CANCEL)$")


class SystemContentOut(BaseModel):
    key: Optional[str] = None
    params: dict = Field(default_factory=dict)
    parsed: bool = True


class RoomEventOut(BaseModel):
    id: str
    activity_id: str
    user_id: Optional[str] = None
    type: str
    content: str
    created_at: datetime
    system: Optional[SystemContentOut] = None

    @classmethod
    def from_event(cls, event: models.RoomEvent) -> "RoomEventOut":
        system: Optional[SystemContentOut] = None
        if event.type == models.EVENT_SYSTEM:
            payload = system_events.parse_system_content(event.content)
            if isinstance(payload, system_events.Unparseable):
                system = SystemContentOut(parsed=False)
            elif isinstance(payload, system_events.InviteUpdatedPayload):
                system = SystemContentOut(
                    key=payload.key,
                    params={"changes": [change.to_dict() for change in payload.changes]},
                )
            elif isinstance(payload, system_events.UnknownSystemPayload):
                system = SystemContentOut(key=payload.key, params=dict(payload.params))
            else:
                system = SystemContentOut(key=payload.key)
        return cls(
            id=event.id,
            activity_id=event.activity_id,
            user_id=event.user_id,
            type=event.type,
            content=event.content,
            created_at=event.created_at,
            system=system,
        )


class EventPageResponse(BaseModel):
    items: List[RoomEventOut]
    next_cursor: Optional[str] = None
    has_more: bool


class RoomStateOut(BaseModel):
    is_closed: bool
    is_expired: bool
    is_read_only: bool
    label: Optional[str] = None

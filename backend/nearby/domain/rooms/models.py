"""Domain models for activity rooms (the per-invite event log)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Tuple

from nearby.domain.activities.models import parse_timestamp


EventType = str

EVENT_CHAT: EventType = "chat"
EVENT_QUICK: EventType = "quick"
EVENT_SYSTEM: EventType = "system"
EVENT_TYPES = (EVENT_CHAT, EVENT_QUICK, EVENT_SYSTEM)

QUICK_IM_HERE = "IM_HERE"
QUICK_LATE_10 = "LATE_10"
QUICK_CANCEL = "CANCEL"
QUICK_CODES = (QUICK_IM_HERE, QUICK_LATE_10, QUICK_CANCEL)

CHAT_MAX_LENGTH = 2000


@dataclass(slots=True, frozen=True)
class RoomEvent:
    """Immutable room log entry. ``user_id`` is None for pure system events."""

    id: str
    activity_id: str
    user_id: Optional[str]
    type: EventType
    content: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RoomEvent":
        created_at = parse_timestamp(row.get("created_at"))
        if created_at is None:
            raise ValueError("missing_created_at")
        user_id = row.get("user_id")
        return cls(
            id=str(row["id"]),
            activity_id=str(row["activity_id"]),
            user_id=str(user_id) if user_id is not None else None,
            type=str(row["type"]),
            content=str(row.get("content") or ""),
            created_at=created_at,
        )

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "user_id": self.user_id,
            "type": self.type,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class RoomEventCursor:
    """Position of the oldest event of a page; the next page is strictly older."""

    created_at: datetime
    id: str

    @classmethod
    def before(cls, event: RoomEvent) -> "RoomEventCursor":
        return cls(created_at=event.created_at, id=event.id)


@dataclass(slots=True, frozen=True)
class EventPage:
    events: Tuple[RoomEvent, ...]
    next_cursor: Optional[RoomEventCursor]
    has_more: bool


@dataclass(slots=True, frozen=True)
class RoomState:
    is_closed: bool
    is_expired: bool
    is_read_only: bool
    label: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_closed": self.is_closed,
            "is_expired": self.is_expired,
            "is_read_only": self.is_read_only,
            "label": self.label,
        }

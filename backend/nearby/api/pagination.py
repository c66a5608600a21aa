from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import Optional

from nearby.domain.activities.models import ActivityCursor, parse_timestamp
from nearby.domain.rooms.models import RoomEventCursor


def encode_cursor(dt: datetime, id: str) -> str:
    payload = {"t": dt.isoformat(), "id": id}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(s: str) -> tuple[datetime, str]:
    try:
        data = json.loads(base64.urlsafe_b64decode(s.encode()).decode())
        dt = parse_timestamp(data["t"])
        last_id = str(data["id"])
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
        raise ValueError("invalid_cursor") from exc
    if dt is None or not last_id:
        raise ValueError("invalid_cursor")
    return (dt, last_id)


def activity_cursor(s: Optional[str]) -> Optional[ActivityCursor]:
    if not s:
        return None
    dt, last_id = decode_cursor(s)
    return ActivityCursor(created_at=dt, id=last_id)


def event_cursor(s: Optional[str]) -> Optional[RoomEventCursor]:
    if not s:
        return None
    dt, last_id = decode_cursor(s)
    return RoomEventCursor(created_at=dt, id=last_id)


def encode_activity_cursor(cursor: Optional[ActivityCursor]) -> Optional[str]:
    return encode_cursor(cursor.created_at, cursor.id) if cursor else None


def encode_event_cursor(cursor: Optional[RoomEventCursor]) -> Optional[str]:
    return encode_cursor(cursor.created_at, cursor.id) if cursor else None

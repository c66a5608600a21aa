"""Keyset pagination over activities ordered by (created_at desc, id desc)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence, Tuple

from nearby.domain.activities.models import (
	Activity,
	ActivityCursor,
	ActivityFilter,
	IdsFilter,
	feed_sort_key,
)

if TYPE_CHECKING:  # pragma: no cover
	from nearby.gateway.base import Gateway


@dataclass(slots=True, frozen=True)
class Page:
	rows: Tuple[Activity, ...]
	has_more: bool
	next_cursor: Optional[ActivityCursor] = None


EMPTY_PAGE = Page(rows=(), has_more=False, next_cursor=None)


def validate_limit(limit: int) -> int:
	if limit < 1:
		raise ValueError("invalid_limit")
	return limit


def next_cursor(rows: Sequence[Activity]) -> Optional[ActivityCursor]:
	"""Cursor for the page after ``rows``: the position of its last row."""
	if not rows:
		return None
	return ActivityCursor.after(rows[-1])


def build_page(rows: Sequence[Activity], limit: int) -> Page:
	# a full page means another one may exist; no COUNT round trip
	return Page(rows=tuple(rows), has_more=len(rows) == limit, next_cursor=next_cursor(rows))


async def fetch_page(
	gateway: "Gateway",
	activity_filter: ActivityFilter,
	cursor: Optional[ActivityCursor],
	limit: int,
) -> Page:
	"""Fetch the rows strictly older than ``cursor`` that match ``activity_filter``.

	The cursor is a position, not a row reference: it stays valid after the row
	it came from is gone. Gateway errors propagate untouched.
	"""
	validate_limit(limit)
	if isinstance(activity_filter, IdsFilter) and not activity_filter.ids:
		return EMPTY_PAGE
	rows = await gateway.query_activities(activity_filter, cursor, limit)
	ordered = sorted(rows, key=feed_sort_key, reverse=True)
	return build_page(ordered[:limit], limit)

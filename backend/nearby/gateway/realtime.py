"""Realtime change delivery.

Writes are described as ``ChangeEvent`` values. In-process gateways hand them
straight to a ``ChangeDispatcher``; the Postgres gateway appends them to a Redis
stream which ``RedisChangeFeed`` tails and re-dispatches locally.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

from nearby.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

TABLE_ACTIVITIES = "activities"
TABLE_MEMBERS = "activity_members"
TABLE_EVENTS = "room_events"

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"
EVENT_KINDS = (EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE)


@dataclass(slots=True, frozen=True)
class ChangeEvent:
	table: str
	event_type: str
	new: Optional[Mapping[str, Any]] = None
	old: Optional[Mapping[str, Any]] = None

	def row(self) -> Mapping[str, Any]:
		"""The most relevant row snapshot: ``new`` unless this is a delete."""
		if self.event_type == EVENT_DELETE:
			return self.old or {}
		return self.new or self.old or {}


ChangeHandler = Callable[[ChangeEvent], None]


def _matches(row: Mapping[str, Any], row_filter: Optional[Mapping[str, str]]) -> bool:
	if not row_filter:
		return True
	for key, expected in row_filter.items():
		if str(row.get(key)) != str(expected):
			return False
	return True


class ChangeDispatcher:
	"""Fan change events out to synchronous subscribers.

	Handler failures are logged and never reach the writer.
	"""

	def __init__(self) -> None:
		self._handlers: Dict[int, Tuple[str, Optional[Mapping[str, str]], ChangeHandler]] = {}
		self._ids = itertools.count(1)

	def subscribe(
		self,
		table: str,
		row_filter: Optional[Mapping[str, str]],
		on_change: ChangeHandler,
	) -> Callable[[], None]:
		token = next(self._ids)
		self._handlers[token] = (table, dict(row_filter) if row_filter else None, on_change)

		def unsubscribe() -> None:
			self._handlers.pop(token, None)

		return unsubscribe

	def subscriber_count(self, table: Optional[str] = None) -> int:
		if table is None:
			return len(self._handlers)
		return sum(1 for entry in self._handlers.values() if entry[0] == table)

	def dispatch(self, event: ChangeEvent) -> int:
		delivered = 0
		for table, row_filter, handler in list(self._handlers.values()):
			if table != event.table or not _matches(event.row(), row_filter):
				continue
			try:
				handler(event)
			except Exception:
				logger.exception(
					"change handler failed",
					extra={"table": event.table, "event_type": event.event_type},
				)
				continue
			delivered += 1
		return delivered

	def clear(self) -> None:
		self._handlers.clear()


def encode_change(event: ChangeEvent) -> Dict[str, str]:
	"""Flatten a change into Redis stream fields."""
	return {
		"table": event.table,
		"event_type": event.event_type,
		"new": json.dumps(dict(event.new) if event.new is not None else None, default=str),
		"old": json.dumps(dict(event.old) if event.old is not None else None, default=str),
	}


def _text(value: Any) -> str:
	if isinstance(value, (bytes, bytearray)):
		return value.decode("utf-8")
	return str(value)


def decode_change(fields: Mapping[Any, Any]) -> ChangeEvent:
	"""Inverse of ``encode_change``. Raises ValueError on anything unusable."""
	payload = {_text(key): _text(value) for key, value in fields.items()}
	table = payload.get("table")
	event_type = payload.get("event_type")
	if not table or event_type not in EVENT_KINDS:
		raise ValueError("invalid_change")
	try:
		new = json.loads(payload.get("new") or "null")
		old = json.loads(payload.get("old") or "null")
	except json.JSONDecodeError as exc:
		raise ValueError("invalid_change_payload") from exc
	if new is not None and not isinstance(new, dict):
		raise ValueError("invalid_change_payload")
	if old is not None and not isinstance(old, dict):
		raise ValueError("invalid_change_payload")
	return ChangeEvent(table=table, event_type=event_type, new=new, old=old)


class RedisStream(Protocol):
	async def xread(
		self,
		streams: Mapping[str, str],
		count: Optional[int] = None,
		block: Optional[int] = None,
	) -> list:
		...

	async def xadd(self, name: str, fields: Mapping[str, Any], maxlen: Optional[int] = None, approximate: bool = True) -> Any:
		...

	async def xrevrange(self, name: str, max: str = "+", min: str = "-", count: Optional[int] = None) -> list:
		...


async def publish_change(redis: RedisStream, stream_key: str, event: ChangeEvent, *, maxlen: Optional[int] = None) -> None:
	await redis.xadd(stream_key, encode_change(event), maxlen=maxlen, approximate=True)


@dataclass
class RedisChangeFeed:
	"""Tails the change stream and re-dispatches entries in this process."""

	redis: RedisStream
	dispatcher: ChangeDispatcher
	stream_key: str
	batch_size: int = 100
	block_ms: Optional[int] = 5000
	last_id: str = "0-0"
	_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

	async def prime(self) -> None:
		"""Skip history so only changes written after startup are delivered."""
		latest = await self.redis.xrevrange(self.stream_key, count=1)
		if latest:
			self.last_id = _text(latest[0][0])

	async def run_once(self) -> int:
		messages = await self.redis.xread({self.stream_key: self.last_id}, count=self.batch_size, block=self.block_ms)
		if not messages:
			return 0
		handled = 0
		for _stream, entries in messages:
			for entry_id, fields in entries:
				self.last_id = _text(entry_id)
				try:
					event = decode_change(fields)
				except ValueError as exc:
					obs_metrics.inc_change_feed_dropped("undecodable")
					logger.warning("dropping change feed entry", extra={"entry_id": self.last_id, "reason": str(exc)})
					continue
				self.dispatcher.dispatch(event)
				handled += 1
		return handled

	async def _run(self) -> None:
		while True:
			try:
				await self.run_once()
			except asyncio.CancelledError:
				raise
			except Exception:
				obs_metrics.inc_change_feed_dropped("read_failed")
				logger.exception("change feed read failed", extra={"stream": self.stream_key})
				await asyncio.sleep(1.0)

	async def start(self) -> None:
		if self._task is not None:
			return
		await self.prime()
		self._task = asyncio.create_task(self._run())

	async def stop(self) -> None:
		task, self._task = self._task, None
		if task is None:
			return
		task.cancel()
		with contextlib.suppress(asyncio.CancelledError):
			await task

"""JSON log output with per-task context fields."""

from __future__ import annotations

import json
import logging
import random
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from nearby.settings import settings

_LOGGER_NAME = "nearby"

# Fields bound for the current task (request id, caller, activity).
_FIELDS: ContextVar[Mapping[str, str]] = ContextVar("nearby_log_fields", default={})

_REDACT = ("token", "secret", "authorization", "password", "email", "address")
_COARSE_GEO = frozenset({"lat", "lng"})

_MAX_TEXT = 256
_MAX_ITEMS = 10

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Merge non-empty ``fields`` into the task context; pass the token to ``reset_context``."""
	merged = dict(_FIELDS.get())
	merged.update({key: value for key, value in fields.items() if value})
	return _FIELDS.set(merged)


def reset_context(token: Token) -> None:
	_FIELDS.reset(token)


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
	token = bind_context(**fields)
	try:
		yield
	finally:
		reset_context(token)


def current_context() -> Dict[str, str]:
	return dict(_FIELDS.get())


def _scrub(key: str, value: Any) -> Any:
	lowered = key.lower()
	if any(word in lowered for word in _REDACT):
		return "[redacted]"
	if lowered in _COARSE_GEO and isinstance(value, (int, float)):
		# ~1km; enough to debug a feed without pinning a person.
		return round(float(value), 2)
	if isinstance(value, str):
		return value if len(value) <= _MAX_TEXT else value[:_MAX_TEXT] + "..."
	if isinstance(value, datetime):
		return value.isoformat()
	if isinstance(value, Mapping):
		items = list(value.items())
		scrubbed = {str(k): _scrub(str(k), v) for k, v in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			scrubbed["_truncated"] = len(items) - _MAX_ITEMS
		return scrubbed
	if isinstance(value, (list, tuple, set, frozenset)):
		values = list(value)
		scrubbed_list = [_scrub(key, item) for item in values[:_MAX_ITEMS]]
		if len(values) > _MAX_ITEMS:
			scrubbed_list.append(f"+{len(values) - _MAX_ITEMS} more")
		return scrubbed_list
	return value


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record: service identity, task context, then ``extra`` fields."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		payload.update(_FIELDS.get())
		for key, value in vars(record).items():
			if key in _STANDARD_ATTRS or key in payload:
				continue
			payload[key] = _scrub(key, value)
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Drop a share of INFO records; everything else passes."""

	def __init__(self, rate: Optional[float] = None) -> None:
		super().__init__()
		self._rate = rate

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = settings.obs_log_sampling_rate_info if self._rate is None else self._rate
		rate = max(0.0, min(1.0, rate))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)

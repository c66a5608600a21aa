"""Gateway selection and process-wide change dispatch."""

from __future__ import annotations

from typing import Optional

from nearby.gateway.base import Gateway
from nearby.gateway.memory import MemoryGateway
from nearby.gateway.realtime import ChangeDispatcher, ChangeEvent, RedisChangeFeed

_DISPATCHER = ChangeDispatcher()
_MEMORY = MemoryGateway(dispatcher=_DISPATCHER)
_gateway: Optional[Gateway] = None


def get_dispatcher() -> ChangeDispatcher:
	return _DISPATCHER


def get_gateway() -> Gateway:
	return _gateway if _gateway is not None else _MEMORY


def set_gateway(gateway: Optional[Gateway]) -> None:
	global _gateway
	_gateway = gateway


def reset_memory_state() -> None:
	"""Testing helper to clear the in-process store and subscriptions."""
	global _gateway
	_gateway = None
	_MEMORY.reset()


__all__ = [
	"ChangeDispatcher",
	"ChangeEvent",
	"Gateway",
	"MemoryGateway",
	"RedisChangeFeed",
	"get_dispatcher",
	"get_gateway",
	"reset_memory_state",
	"set_gateway",
]

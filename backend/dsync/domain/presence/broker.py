"""Fan-out of core events to members' live connections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol

import socketio

from dsync.domain.chat import events
from dsync.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)


class Broker(Protocol):
	async def to_users(
		self,
		user_ids: Iterable[str],
		event: str,
		payload: dict,
		*,
		skip_sid: Optional[str] = None,
	) -> None:
		...


class SocketBroker:
	"""Emits into per-user rooms of a namespace; delivery is best-effort."""

	def __init__(self, namespace: socketio.AsyncNamespace) -> None:
		self._namespace = namespace

	async def to_users(
		self,
		user_ids: Iterable[str],
		event: str,
		payload: dict,
		*,
		skip_sid: Optional[str] = None,
	) -> None:
		for user_id in user_ids:
			obs_metrics.socket_event(self._namespace.namespace, event)
			try:
				await self._namespace.emit(event, payload, room=events.user_room(user_id), skip_sid=skip_sid)
			except Exception:
				obs_metrics.inc_fanout_failure(event)
				LOGGER.warning("fan-out emit failed", extra={"event": event, "target_user": user_id}, exc_info=True)


class NullBroker:
	async def to_users(self, user_ids, event, payload, *, skip_sid=None) -> None:
		return None


@dataclass(slots=True)
class Emitted:
	user_id: str
	event: str
	payload: dict
	skip_sid: Optional[str]


class RecordingBroker:
	"""Keeps every emit in memory; used by tests and tooling."""

	def __init__(self) -> None:
		self.emitted: List[Emitted] = []

	async def to_users(self, user_ids, event, payload, *, skip_sid=None) -> None:
		for user_id in user_ids:
			self.emitted.append(Emitted(user_id=user_id, event=event, payload=payload, skip_sid=skip_sid))

	def events_for(self, user_id: str) -> List[Emitted]:
		return [item for item in self.emitted if item.user_id == user_id]

	def clear(self) -> None:
		self.emitted.clear()

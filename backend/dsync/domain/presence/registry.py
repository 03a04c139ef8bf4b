"""Process-local presence registry.

Maps live connection ids to users and tracks the online set. A user may hold
several connections and goes offline when the last one leaves. Constructed
once at startup and handed to the namespace; `shutdown()` treats every
remaining connection as disconnected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Set

from dsync.infra.redis import RedisProxy, redis_client
from dsync.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class LastSeenStore(Protocol):
	async def save(self, user_id: str, at: datetime) -> None:
		...

	async def get(self, user_id: str) -> Optional[datetime]:
		...


class RedisLastSeenStore:
	"""Keeps `last_seen` in the `presence:{user_id}` hash."""

	def __init__(self, redis: RedisProxy = redis_client) -> None:
		self._redis = redis

	@staticmethod
	def key(user_id: str) -> str:
		return f"presence:{user_id}"

	async def save(self, user_id: str, at: datetime) -> None:
		await self._redis.hset(self.key(user_id), mapping={"last_seen": at.isoformat()})

	async def get(self, user_id: str) -> Optional[datetime]:
		raw = await self._redis.hget(self.key(user_id), "last_seen")
		if not raw:
			return None
		return datetime.fromisoformat(raw)


class MemoryLastSeenStore:
	def __init__(self) -> None:
		self.values: Dict[str, datetime] = {}

	async def save(self, user_id: str, at: datetime) -> None:
		self.values[user_id] = at

	async def get(self, user_id: str) -> Optional[datetime]:
		return self.values.get(user_id)


@dataclass(slots=True)
class Departure:
	user_id: str
	last_seen: datetime


class PresenceRegistry:
	def __init__(self, last_seen: Optional[LastSeenStore] = None, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self._last_seen: LastSeenStore = last_seen or RedisLastSeenStore()
		self._clock = clock
		self._user_by_sid: Dict[str, str] = {}
		self._sids_by_user: Dict[str, Set[str]] = {}
		self._running = False

	@property
	def running(self) -> bool:
		return self._running

	async def init(self) -> None:
		self._user_by_sid.clear()
		self._sids_by_user.clear()
		self._running = True
		obs_metrics.set_online_users(0)

	async def shutdown(self) -> List[Departure]:
		"""Disconnect everything still registered and persist last-seen for each user."""
		departures: List[Departure] = []
		for sid in list(self._user_by_sid):
			departure = await self.disconnect(sid)
			if departure is not None:
				departures.append(departure)
		self._running = False
		return departures

	async def connect(self, sid: str, user_id: str) -> bool:
		"""Bind a connection to a user; True when the user just came online."""
		current = self._user_by_sid.get(sid)
		if current == user_id:
			return False
		if current is not None:
			await self.disconnect(sid)
		self._user_by_sid[sid] = user_id
		sids = self._sids_by_user.setdefault(user_id, set())
		came_online = not sids
		sids.add(sid)
		obs_metrics.set_online_users(len(self._sids_by_user))
		return came_online

	async def disconnect(self, sid: str) -> Optional[Departure]:
		"""Drop a connection; returns a departure when it was the user's last one."""
		user_id = self._user_by_sid.pop(sid, None)
		if user_id is None:
			return None
		sids = self._sids_by_user.get(user_id, set())
		sids.discard(sid)
		if sids:
			return None
		self._sids_by_user.pop(user_id, None)
		obs_metrics.set_online_users(len(self._sids_by_user))
		at = self._clock()
		try:
			await self._last_seen.save(user_id, at)
		except Exception:
			LOGGER.warning("last seen not persisted", extra={"user_id": user_id}, exc_info=True)
		return Departure(user_id=user_id, last_seen=at)

	def user_for(self, sid: str) -> Optional[str]:
		return self._user_by_sid.get(sid)

	def sids_for(self, user_id: str) -> Set[str]:
		return set(self._sids_by_user.get(user_id, ()))

	def online_users(self) -> Set[str]:
		return set(self._sids_by_user)

	def is_online(self, user_id: str) -> bool:
		return user_id in self._sids_by_user

	async def last_seen(self, user_id: str) -> Optional[datetime]:
		return await self._last_seen.get(user_id)

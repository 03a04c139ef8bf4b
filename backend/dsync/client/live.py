"""Live channel client on top of python-socketio's AsyncClient."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

import socketio

from dsync.client.session import ChatSession
from dsync.domain.chat import events
from dsync.domain.chat.errors import SyncError

LOGGER = logging.getLogger(__name__)

_CHAT_EVENTS = (
	events.MESSAGE_CREATED,
	events.RECEIVE_MESSAGE,
	events.MESSAGE_EDITED,
	events.MESSAGE_DELETED,
	events.MESSAGE_LIKED,
	events.MESSAGE_READ,
	events.TYPING,
	events.STOP_TYPING,
)


class LiveChannel:
	"""Joins the user and the attached chats, and routes events to chat sessions.

	After a reconnect the user and chat rooms are joined again and every
	session merges its newest page, so events missed while offline show up
	exactly once.
	"""

	def __init__(
		self,
		url: str,
		user_id: str,
		*,
		token: Optional[str] = None,
		client: Optional[socketio.AsyncClient] = None,
		namespace: str = events.NAMESPACE,
	) -> None:
		self.url = url
		self.user_id = user_id
		self.token = token
		self.namespace = namespace
		self.sio = client or socketio.AsyncClient(reconnection=True)
		self.sessions: Dict[str, ChatSession] = {}
		self.online: Set[str] = set()
		self.last_seen: Dict[str, Optional[datetime]] = {}
		self._connected_once = False
		self._register()

	def _register(self) -> None:
		self.sio.on("connect", self._on_connect, namespace=self.namespace)
		self.sio.on(events.ONLINE_USERS, self._on_online_users, namespace=self.namespace)
		self.sio.on(events.USER_ONLINE, self._on_user_online, namespace=self.namespace)
		self.sio.on(events.USER_OFFLINE, self._on_user_offline, namespace=self.namespace)
		self.sio.on("sync-error", self._on_sync_error, namespace=self.namespace)
		for name in _CHAT_EVENTS:
			self.sio.on(name, self._router(name), namespace=self.namespace)

	def _router(self, name: str):
		async def handler(payload: Any) -> None:
			self.route(name, payload)

		return handler

	@property
	def sid(self) -> Optional[str]:
		"""Connection id, sent as X-Socket-Id so the sender's own fan-out is skipped."""
		if not self.sio.connected:
			return None
		return self.sio.get_sid(namespace=self.namespace)

	async def connect(self) -> None:
		auth = {"token": self.token} if self.token else None
		await self.sio.connect(self.url, auth=auth, namespaces=[self.namespace])

	async def disconnect(self) -> None:
		await self.sio.disconnect()

	async def attach(self, session: ChatSession) -> None:
		self.sessions[session.chat_id] = session
		if self.sio.connected:
			await self.sio.emit(events.JOIN_CHAT, {"chatId": session.chat_id}, namespace=self.namespace)

	def detach(self, chat_id: str) -> None:
		self.sessions.pop(chat_id, None)

	async def typing(self, chat_id: str, user_name: Optional[str] = None) -> None:
		payload = {"chatId": chat_id, "userId": self.user_id}
		if user_name:
			payload["userName"] = user_name
		await self.sio.emit(events.TYPING, payload, namespace=self.namespace)

	async def stop_typing(self, chat_id: str) -> None:
		await self.sio.emit(events.STOP_TYPING, {"chatId": chat_id, "userId": self.user_id}, namespace=self.namespace)

	def route(self, name: str, payload: Any) -> bool:
		if not isinstance(payload, dict):
			return False
		session = self.sessions.get(payload.get("chatId"))
		if session is None:
			return False
		return session.handle_event(name, payload)

	async def _on_connect(self) -> None:
		await self.sio.emit(events.JOIN, {"userId": self.user_id}, namespace=self.namespace)
		for chat_id in list(self.sessions):
			await self.sio.emit(events.JOIN_CHAT, {"chatId": chat_id}, namespace=self.namespace)
		if self._connected_once:
			for session in list(self.sessions.values()):
				try:
					await session.refresh()
				except SyncError as exc:
					LOGGER.warning("refresh after reconnect failed", extra={"chat_id": session.chat_id, "code": exc.code})
		self._connected_once = True

	async def _on_online_users(self, payload: Dict[str, Any]) -> None:
		self.online = set(payload.get("userIds") or ())

	async def _on_user_online(self, payload: Dict[str, Any]) -> None:
		user_id = payload.get("userId")
		if user_id:
			self.online.add(user_id)

	async def _on_user_offline(self, payload: Dict[str, Any]) -> None:
		user_id = payload.get("userId")
		if not user_id:
			return
		self.online.discard(user_id)
		last_seen = payload.get("lastSeen")
		self.last_seen[user_id] = datetime.fromisoformat(last_seen) if last_seen else None

	async def _on_sync_error(self, payload: Dict[str, Any]) -> None:
		LOGGER.warning("live channel rejected", extra={"code": (payload or {}).get("code")})

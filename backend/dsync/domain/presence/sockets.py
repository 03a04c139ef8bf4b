"""Socket.IO namespace for presence, chat rooms and transient relays."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import socketio

from dsync.domain.chat import events
from dsync.domain.presence.registry import Departure, PresenceRegistry
from dsync.infra.auth import parse_socket_token
from dsync.obs import metrics as obs_metrics
from dsync.settings import settings

LOGGER = logging.getLogger(__name__)


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _field(payload: Any, *names: str) -> Optional[str]:
	"""Read an id sent either bare or inside an object."""
	if isinstance(payload, (str, int)):
		value = str(payload).strip()
		return value or None
	if isinstance(payload, dict):
		for name in names:
			value = payload.get(name)
			if value is not None and str(value).strip():
				return str(value).strip()
	return None


def _chat_id(payload: Any) -> Optional[str]:
	chat_id = _field(payload, "chatId", "chat_id")
	if chat_id is None and isinstance(payload, dict) and isinstance(payload.get("chat"), dict):
		chat_id = _field(payload["chat"], "id", "_id")
	return chat_id


class SyncNamespace(socketio.AsyncNamespace):
	"""Live channel: per-user rooms for core fan-out, per-chat rooms for relays."""

	def __init__(self, registry: PresenceRegistry, namespace: str = events.NAMESPACE) -> None:
		super().__init__(namespace)
		self.registry = registry
		self._verified: Dict[str, str] = {}

	async def trigger_event(self, event: str, *args):
		# wire names are kebab-case
		return await super().trigger_event(event.replace("-", "_"), *args)

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		scope = environ.get("asgi.scope", environ)
		auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
		token = auth_payload.get("token") if isinstance(auth_payload, dict) else None
		token = token or _header(scope, "authorization")
		try:
			verified = parse_socket_token(token)
		except ValueError:
			raise ConnectionRefusedError("invalid_token")
		obs_metrics.socket_connected(self.namespace)
		if verified is not None:
			self._verified[sid] = verified
			await self._join_user(sid, verified)

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		self._verified.pop(sid, None)
		departure = await self.registry.disconnect(sid)
		if departure is None:
			return
		await self._announce_offline(departure, skip_sid=sid)
		await self._emit(events.ONLINE_USERS, events.online_users(self.registry.online_users()))

	async def shutdown(self) -> List[Departure]:
		"""Release every registered connection and tell the remaining sockets who left."""
		departures = await self.registry.shutdown()
		for departure in departures:
			await self._announce_offline(departure)
		if departures:
			LOGGER.info("presence registry shut down", extra={"users": len(departures)})
		return departures

	async def _announce_offline(self, departure: Departure, *, skip_sid: Optional[str] = None) -> None:
		await self._emit(
			events.USER_OFFLINE,
			events.user_offline(departure.user_id, departure.last_seen),
			skip_sid=skip_sid,
		)

	async def on_join(self, sid: str, payload: Any) -> None:
		obs_metrics.socket_event(self.namespace, events.JOIN)
		declared = _field(payload, "userId", "user_id")
		verified = self._verified.get(sid)
		if verified is not None:
			if declared and declared != verified:
				LOGGER.warning("declared identity ignored", extra={"sid": sid, "user_id": verified})
			user_id = verified
		elif settings.presence_trust_client_identity:
			user_id = declared
		else:
			await self.emit("sync-error", {"code": "unauthenticated"}, room=sid)
			return
		if not user_id:
			return
		await self._join_user(sid, user_id)

	async def _join_user(self, sid: str, user_id: str) -> None:
		previous = self.registry.user_for(sid)
		if previous is not None and previous != user_id:
			# a rebound socket stops receiving the previous user's fan-out
			await self.leave_room(sid, events.user_room(previous))
			departure = await self.registry.disconnect(sid)
			if departure is not None:
				await self._announce_offline(departure, skip_sid=sid)
		came_online = await self.registry.connect(sid, user_id)
		await self.enter_room(sid, events.user_room(user_id))
		if came_online:
			await self._emit(events.USER_ONLINE, events.user_online(user_id), skip_sid=sid)
		await self._emit(events.ONLINE_USERS, events.online_users(self.registry.online_users()))

	async def on_join_chat(self, sid: str, payload: Any) -> None:
		obs_metrics.socket_event(self.namespace, events.JOIN_CHAT)
		chat_id = _chat_id(payload)
		if not chat_id:
			return
		# membership is enforced by the core, which only emits into user rooms
		await self.enter_room(sid, events.chat_room(chat_id))

	async def on_typing(self, sid: str, payload: Any) -> None:
		await self._relay_typing(sid, events.TYPING, payload)

	async def on_stop_typing(self, sid: str, payload: Any) -> None:
		await self._relay_typing(sid, events.STOP_TYPING, payload)

	async def _relay_typing(self, sid: str, event: str, payload: Any) -> None:
		obs_metrics.socket_event(self.namespace, event)
		chat_id = _chat_id(payload)
		if not chat_id:
			return
		user_id = self.registry.user_for(sid) or _field(payload, "userId", "user_id")
		user_name = payload.get("userName") if isinstance(payload, dict) else None
		await self._emit(event, events.typing(chat_id, user_id, user_name), room=events.chat_room(chat_id), skip_sid=sid)

	async def on_send_message(self, sid: str, payload: Any) -> None:
		await self._relay_echo(sid, events.SEND_MESSAGE, payload)

	async def on_message_read(self, sid: str, payload: Any) -> None:
		await self._relay_echo(sid, events.MESSAGE_READ, payload)

	async def on_message_delivered(self, sid: str, payload: Any) -> None:
		await self._relay_echo(sid, events.MESSAGE_DELIVERED, payload)

	async def on_message_liked(self, sid: str, payload: Any) -> None:
		await self._relay_echo(sid, events.MESSAGE_LIKED, payload)

	async def on_message_edited(self, sid: str, payload: Any) -> None:
		await self._relay_echo(sid, events.MESSAGE_EDITED, payload)

	async def on_message_deleted(self, sid: str, payload: Any) -> None:
		await self._relay_echo(sid, events.MESSAGE_DELETED, payload)

	async def _relay_echo(self, sid: str, event: str, payload: Any) -> None:
		"""Re-broadcast a client's action echo to its chat room.

		The core already fans every action out to members' user rooms, so relays
		are off unless `sync_echo_relay_enabled` is set for older clients.
		"""
		obs_metrics.socket_event(self.namespace, event)
		if not settings.sync_echo_relay_enabled:
			return
		chat_id = _chat_id(payload)
		if not chat_id or not isinstance(payload, dict):
			return
		await self._emit(events.ECHO_RELAYS[event], payload, room=events.chat_room(chat_id), skip_sid=sid)

	async def _emit(self, event: str, payload: dict, *, room: Optional[str] = None, skip_sid: Optional[str] = None) -> None:
		obs_metrics.socket_event(self.namespace, event)
		await self.emit(event, payload, room=room, skip_sid=skip_sid)


"""Per-chat client session: optimistic actions reconciled against the server.

A session owns one chat's `TimelineState` and drives it only through
`timeline.reduce`. Local actions apply optimistically and are confirmed or
rolled back from the REST call's direct return value; live events from other
members arrive through `handle_event`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import ulid

from dsync.client import timeline
from dsync.client.api import ChatApi
from dsync.client.cache import MessageCache
from dsync.client.scroll import Viewport, should_load_more
from dsync.domain.chat import events
from dsync.domain.chat.errors import InvalidArgument, NotFound, SyncError, Transient
from dsync.domain.chat.schemas import MessageOut, ReceiptOut
from dsync.infra.attachments import kind_for_media_type
from dsync.settings import settings

LOGGER = logging.getLogger(__name__)

TEMP_ID_PREFIX = "local-"


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def new_temp_id() -> str:
	return f"{TEMP_ID_PREFIX}{ulid.new().str}"


class ChatSession:
	def __init__(
		self,
		chat_id: str,
		user_id: str,
		api: ChatApi,
		*,
		cache: Optional[MessageCache] = None,
		page_size: Optional[int] = None,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self.chat_id = chat_id
		self.user_id = user_id
		self.api = api
		self.cache = cache
		self.page_size = page_size or settings.messages_page_size
		self._clock = clock
		self.state = timeline.empty(chat_id)
		self.page = 0
		self.has_more = True
		self.loading = False
		self.typing: Set[str] = set()
		self.notices: List[str] = []
		self._uploads: Dict[str, bytes] = {}

	def dispatch(self, action: timeline.Action) -> timeline.TimelineState:
		self.state = timeline.reduce(self.state, action)
		self._sync_cache()
		return self.state

	def _sync_cache(self) -> None:
		if self.cache is None:
			return
		confirmed = [e.message for e in self.state.items() if isinstance(e, timeline.ConfirmedEntry)]
		self.cache.put(self.chat_id, confirmed)

	def entries(self) -> List[timeline.Entry]:
		return self.state.items()

	def _notice(self, action: str, exc: SyncError) -> None:
		LOGGER.warning("chat action rolled back", extra={"action": action, "chat_id": self.chat_id, "code": exc.code})
		self.notices.append(f"{action}_failed:{exc.code}")

	# history

	async def load_initial(self) -> None:
		if self.cache is not None:
			cached = self.cache.get(self.chat_id)
			if cached:
				self.dispatch(timeline.PageLoaded(tuple(cached)))
		self.loading = True
		try:
			page = await self.api.list_messages(self.chat_id, page=1, limit=self.page_size)
		finally:
			self.loading = False
		self.dispatch(timeline.PageLoaded(tuple(page.items)))
		self.page = 1
		self.has_more = page.has_more

	async def load_more(self) -> bool:
		"""Fetch the next older page; False when nothing was requested."""
		if self.loading or not self.has_more:
			return False
		self.loading = True
		try:
			page = await self.api.list_messages(self.chat_id, page=self.page + 1, limit=self.page_size)
		finally:
			self.loading = False
		self.dispatch(timeline.PageLoaded(tuple(page.items)))
		self.page += 1
		self.has_more = page.has_more
		return True

	async def on_scroll(self, viewport: Viewport) -> bool:
		if not should_load_more(viewport, has_more=self.has_more, loading=self.loading):
			return False
		return await self.load_more()

	async def refresh(self) -> None:
		"""Merge the newest page again, e.g. after the live channel reconnects."""
		page = await self.api.list_messages(self.chat_id, page=1, limit=self.page_size)
		self.dispatch(timeline.PageLoaded(tuple(page.items)))
		if self.page == 0:
			self.page = 1
			self.has_more = page.has_more

	# sends

	def _draft(self, content: str, *, kind: str = "text", file_name: Optional[str] = None, reply_to: Optional[str] = None) -> timeline.Draft:
		return timeline.Draft(
			chat_id=self.chat_id,
			sender_id=self.user_id,
			content=content,
			created_at=self._clock(),
			kind=kind,
			file_name=file_name,
			reply_to=reply_to,
		)

	async def send(self, content: str, *, reply_to: Optional[str] = None) -> str:
		"""Send a text message optimistically and return its temporary id."""
		text = (content or "").strip()
		if not text:
			raise InvalidArgument("content_required")
		temp_id = new_temp_id()
		self.dispatch(timeline.OptimisticAdded(temp_id, self._draft(text, reply_to=reply_to)))
		await self._deliver(temp_id)
		return temp_id

	async def upload(
		self,
		data: bytes,
		*,
		file_name: str,
		media_type: str = "application/octet-stream",
		reply_to: Optional[str] = None,
	) -> str:
		temp_id = new_temp_id()
		draft = self._draft(file_name, kind=kind_for_media_type(media_type), file_name=file_name, reply_to=reply_to)
		self._uploads[temp_id] = data
		self.dispatch(timeline.OptimisticAdded(temp_id, draft))
		await self._deliver(temp_id, media_type=media_type)
		return temp_id

	async def resend(self, temp_id: str, *, media_type: str = "application/octet-stream") -> bool:
		"""Retry a failed send under the same temporary id, which the server deduplicates on."""
		entry = self.state.local(temp_id)
		if entry is None or entry.status != timeline.STATUS_FAILED:
			return False
		self.dispatch(timeline.ResendStarted(temp_id))
		await self._deliver(temp_id, media_type=media_type)
		return True

	def discard(self, temp_id: str) -> None:
		self._uploads.pop(temp_id, None)
		self.dispatch(timeline.LocalDiscarded(temp_id))

	async def _deliver(self, temp_id: str, *, media_type: str = "application/octet-stream") -> None:
		entry = self.state.local(temp_id)
		if entry is None:
			return
		draft = entry.draft
		try:
			if temp_id in self._uploads:
				message = await self.api.upload(
					self.chat_id,
					self._uploads[temp_id],
					file_name=draft.file_name or draft.content,
					media_type=media_type,
					reply_to=draft.reply_to,
					client_msg_id=temp_id,
				)
			else:
				message = await self.api.send(
					self.chat_id,
					draft.content,
					kind=draft.kind,
					reply_to=draft.reply_to,
					client_msg_id=temp_id,
				)
		except SyncError as exc:
			LOGGER.info("send failed", extra={"chat_id": self.chat_id, "temp_id": temp_id, "code": exc.code})
			self.dispatch(timeline.SendFailed(temp_id, exc.code))
			return
		self._uploads.pop(temp_id, None)
		self.dispatch(timeline.SendConfirmed(temp_id, message))

	# mutations of confirmed messages

	async def _settle(
		self,
		action: str,
		previous: MessageOut,
		exc: SyncError,
		landed: Callable[[Optional[MessageOut]], bool],
	) -> bool:
		"""Reconcile a mutation the server did not confirm; True when it applied anyway.

		A definite failure restores `previous`. A `Transient` failure leaves the
		outcome unknown, so the canonical record is fetched and shown instead.
		"""
		if not isinstance(exc, Transient):
			self.dispatch(timeline.Restored(previous))
			self._notice(action, exc)
			return False
		current: Optional[MessageOut]
		try:
			current = await self.api.get_message(previous.id)
		except NotFound:
			current = None
		except SyncError as lookup_exc:
			LOGGER.warning(
				"chat action outcome unresolved",
				extra={"action": action, "chat_id": self.chat_id, "code": lookup_exc.code},
			)
			self.dispatch(timeline.Restored(previous))
			self._notice(action, exc)
			return False
		if current is None:
			self.dispatch(timeline.Deleted(previous.id))
		else:
			self.dispatch(timeline.Restored(current))
		if landed(current):
			return True
		self._notice(action, exc)
		return False

	async def edit(self, message_id: str, content: str) -> bool:
		previous = self.state.confirmed(message_id)
		if previous is None:
			return False
		self.dispatch(timeline.Edited(message_id, content))
		try:
			message = await self.api.edit(message_id, content)
		except SyncError as exc:
			return await self._settle(
				"edit", previous, exc, lambda current: current is not None and current.content == content
			)
		self.dispatch(timeline.Edited(message_id, message.content, message.is_edited))
		return True

	async def delete(self, message_id: str) -> bool:
		previous = self.state.confirmed(message_id)
		if previous is None:
			return False
		self.dispatch(timeline.Deleted(message_id))
		try:
			await self.api.delete(message_id)
		except SyncError as exc:
			return await self._settle("delete", previous, exc, lambda current: current is None)
		return True

	async def toggle_like(self, message_id: str) -> bool:
		previous = self.state.confirmed(message_id)
		if previous is None:
			return False
		return await self._like(previous, self.user_id not in previous.likes, toggle=True)

	async def set_liked(self, message_id: str, liked: bool) -> bool:
		previous = self.state.confirmed(message_id)
		if previous is None:
			return False
		return await self._like(previous, liked, toggle=False)

	async def _like(self, previous: MessageOut, liked: bool, *, toggle: bool) -> bool:
		others = [uid for uid in previous.likes if uid != self.user_id]
		optimistic = tuple(others + [self.user_id]) if liked else tuple(others)
		self.dispatch(timeline.LikesChanged(previous.id, optimistic))
		try:
			if toggle:
				likes = await self.api.toggle_like(previous.id)
			else:
				likes = await self.api.set_liked(previous.id, liked)
		except SyncError as exc:
			return await self._settle(
				"like", previous, exc, lambda current: current is not None and (self.user_id in current.likes) == liked
			)
		self.dispatch(timeline.LikesChanged(previous.id, tuple(likes)))
		return True

	async def mark_read(self, message_id: str) -> bool:
		message = self.state.confirmed(message_id)
		if message is None or message.sender.id == self.user_id:
			return False
		if any(receipt.user_id == self.user_id for receipt in message.read_by):
			return False
		try:
			result = await self.api.mark_read(message_id)
		except SyncError as exc:
			LOGGER.warning("mark read failed", extra={"message_id": message_id, "code": exc.code})
			return False
		self.dispatch(timeline.ReadChanged(message_id, tuple(result.read_by)))
		return True

	async def mark_all_read(self) -> int:
		count = 0
		for entry in self.state.items():
			if isinstance(entry, timeline.ConfirmedEntry) and await self.mark_read(entry.message.id):
				count += 1
		return count

	# live events

	def handle_event(self, event: str, payload: Dict[str, Any]) -> bool:
		"""Merge one live event addressed to this chat; False when ignored."""
		if not isinstance(payload, dict) or payload.get("chatId") not in (None, self.chat_id):
			return False
		if event in (events.MESSAGE_CREATED, events.RECEIVE_MESSAGE):
			message = MessageOut.model_validate(payload)
			if message.chat_id != self.chat_id:
				return False
			self.typing.discard(message.sender.id)
			self.dispatch(timeline.Received(message))
			return True
		message_id = payload.get("messageId")
		if event == events.MESSAGE_EDITED and message_id:
			self.dispatch(timeline.Edited(message_id, payload.get("content") or "", bool(payload.get("isEdited", True))))
			return True
		if event == events.MESSAGE_DELETED and message_id:
			self.dispatch(timeline.Deleted(message_id))
			return True
		if event == events.MESSAGE_LIKED and message_id:
			self.dispatch(timeline.LikesChanged(message_id, tuple(payload.get("likes") or ())))
			return True
		if event == events.MESSAGE_READ and message_id:
			receipts = tuple(ReceiptOut.model_validate(r) for r in payload.get("readBy") or ())
			self.dispatch(timeline.ReadChanged(message_id, receipts))
			return True
		if event in (events.TYPING, events.STOP_TYPING):
			user_id = payload.get("userId")
			if not user_id or user_id == self.user_id:
				return False
			if event == events.TYPING:
				self.typing.add(user_id)
			else:
				self.typing.discard(user_id)
			return True
		return False

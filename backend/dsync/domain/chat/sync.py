"""Message synchronisation core.

Every message-affecting action goes through `MessageSyncCore`: it validates
membership and ownership, persists to the store, returns the canonical record
to the caller and fans the change out to the other members' live connections.
The caller never receives its own action over the live channel; the direct
return value is what lets a client swap its optimistic entry for the canonical
record without a duplicate.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import asyncpg
import ulid

from dsync.domain.chat import events, models, policy
from dsync.domain.chat.errors import AccessDenied, Internal, InvalidArgument, NotFound, SyncError, Transient
from dsync.domain.chat.schemas import MessageOut, ReceiptOut
from dsync.domain.chat.store import RECEIPT_DELIVERED, RECEIPT_READ, ChatStore
from dsync.domain.presence.broker import Broker
from dsync.infra.attachments import AttachmentStore, kind_for_media_type, owned_by
from dsync.obs import metrics as obs_metrics
from dsync.settings import page_size, settings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class MessageSyncCore:
	def __init__(
		self,
		store: ChatStore,
		broker: Broker,
		attachments: AttachmentStore,
		*,
		clock: Callable[[], datetime] = _utcnow,
		timeout_seconds: Optional[float] = None,
	) -> None:
		self.store = store
		self.broker = broker
		self.attachments = attachments
		self._clock = clock
		self._timeout = timeout_seconds or settings.request_timeout_seconds

	async def _bounded(self, awaitable: Awaitable[T]) -> T:
		"""Await a store call under the configured timeout, mapping faults to typed failures."""
		try:
			return await asyncio.wait_for(awaitable, timeout=self._timeout)
		except asyncio.TimeoutError as exc:
			raise Transient("store_timeout") from exc
		except (asyncpg.PostgresConnectionError, ConnectionError) as exc:
			raise Transient("store_unavailable") from exc
		except asyncpg.PostgresError as exc:
			LOGGER.error("store call failed", exc_info=True)
			raise Internal("store_error") from exc

	async def _fanout(self, chat: models.Chat, actor_id: str, event: str, payload: dict, origin_sid: Optional[str]) -> None:
		recipients = chat.others(actor_id)
		if not recipients:
			return
		try:
			await self.broker.to_users(recipients, event, payload, skip_sid=origin_sid)
		except Exception:
			# the store write already happened; live delivery is best-effort
			obs_metrics.inc_fanout_failure(event)
			LOGGER.warning("fan-out failed", extra={"event": event, "chat_id": chat.id}, exc_info=True)

	async def _member_chat(self, chat_id: str, actor_id: str) -> models.Chat:
		chat = await self._bounded(self.store.get_chat(chat_id))
		# an unknown chat is reported like a foreign one
		if chat is None or not chat.is_member(actor_id):
			raise AccessDenied("not_chat_member")
		return chat

	async def canonicalize(self, messages: Sequence[models.Message]) -> List[models.CanonicalMessage]:
		"""Resolve senders and reply previews for display."""
		reply_ids = {m.reply_to_id for m in messages if m.reply_to_id}
		replies: Dict[str, models.Message] = {}
		if reply_ids:
			replies = await self._bounded(self.store.get_messages(reply_ids))
		user_ids = {m.sender_id for m in messages} | {r.sender_id for r in replies.values()}
		profiles = await self._bounded(self.store.get_profiles(user_ids)) if user_ids else {}

		def profile(user_id: str) -> models.UserProfile:
			return profiles.get(user_id) or models.UserProfile.placeholder(user_id)

		result: List[models.CanonicalMessage] = []
		for message in messages:
			preview = None
			reply = replies.get(message.reply_to_id) if message.reply_to_id else None
			if reply is not None:
				preview = models.ReplyPreview(
					id=reply.id,
					kind=reply.kind,
					content=reply.content,
					sender=profile(reply.sender_id),
				)
			result.append(models.CanonicalMessage(message=message, sender=profile(message.sender_id), reply_to=preview))
		return result

	async def _canonical_one(self, message: models.Message) -> models.CanonicalMessage:
		return (await self.canonicalize([message]))[0]

	async def send(
		self,
		actor_id: str,
		chat_id: str,
		content: Optional[str],
		kind: str = models.KIND_TEXT,
		*,
		attachment: Optional[models.Attachment] = None,
		reply_to_id: Optional[str] = None,
		client_msg_id: Optional[str] = None,
		origin_sid: Optional[str] = None,
	) -> models.CanonicalMessage:
		try:
			chat = await self._member_chat(chat_id, actor_id)
			kind = policy.normalise_kind(kind)
			body = policy.validate_payload(kind, content, attachment)
			if reply_to_id:
				reply = await self._bounded(self.store.get_message(reply_to_id))
				policy.require_reply_in_chat(reply, chat.id)
		except SyncError as exc:
			obs_metrics.inc_chat_rejected(exc.code)
			raise
		return await self._persist_send(
			chat,
			actor_id,
			kind,
			body,
			attachment=attachment,
			reply_to_id=reply_to_id,
			client_msg_id=client_msg_id,
			origin_sid=origin_sid,
		)

	async def _persist_send(
		self,
		chat: models.Chat,
		actor_id: str,
		kind: str,
		body: str,
		*,
		attachment: Optional[models.Attachment],
		reply_to_id: Optional[str],
		client_msg_id: Optional[str],
		origin_sid: Optional[str],
	) -> models.CanonicalMessage:
		now = self._clock()
		draft = models.Message(
			id=ulid.new().str,
			chat_id=chat.id,
			sender_id=actor_id,
			kind=kind,
			content=body,
			created_at=now,
			attachment=attachment,
			reply_to_id=reply_to_id,
			client_msg_id=client_msg_id or None,
		)
		message, created = await self._bounded(self.store.insert_message(draft))
		if not created:
			obs_metrics.inc_chat_send_replayed()
			LOGGER.info("send replayed", extra={"chat_id": chat.id, "message_id": message.id})
			return await self._canonical_one(message)

		deliveries = [models.Receipt(user_id=member, at=now) for member in chat.others(actor_id)]
		if deliveries:
			delivered = await self._bounded(self.store.add_receipts(message.id, RECEIPT_DELIVERED, deliveries))
			message.delivered_to = list(delivered or deliveries)
		# separate write; a stale pointer heals on the next send
		await self._bounded(self.store.set_latest_message(chat.id, message.id, now))

		canonical = await self._canonical_one(message)
		obs_metrics.inc_chat_send(kind)
		LOGGER.info(
			"message sent",
			extra={"chat_id": chat.id, "message_id": message.id, "kind": kind, "actor_id": actor_id},
		)
		await self._fanout(
			chat,
			actor_id,
			events.MESSAGE_CREATED,
			events.message_created(MessageOut.from_canonical(canonical)),
			origin_sid,
		)
		return canonical

	async def upload_and_send(
		self,
		actor_id: str,
		chat_id: str,
		data: bytes,
		*,
		media_type: Optional[str],
		file_name: str,
		reply_to_id: Optional[str] = None,
		client_msg_id: Optional[str] = None,
		origin_sid: Optional[str] = None,
	) -> models.CanonicalMessage:
		"""Store the file with the attachment collaborator, then send it as a message.

		Upload failures abort the send; nothing is persisted.
		"""
		file_name = (file_name or "").strip() or "file"
		kind = kind_for_media_type(media_type)
		try:
			body = policy.validate_caption(file_name)
			chat = await self._member_chat(chat_id, actor_id)
			if reply_to_id:
				reply = await self._bounded(self.store.get_message(reply_to_id))
				policy.require_reply_in_chat(reply, chat.id)
		except SyncError as exc:
			obs_metrics.inc_chat_rejected(exc.code)
			raise
		stored = await self.attachments.upload(
			data,
			media_type=media_type or "application/octet-stream",
			file_name=file_name,
			owner_id=actor_id,
		)
		attachment = models.Attachment(
			url=stored.url,
			file_name=stored.file_name,
			media_type=stored.media_type,
			size_bytes=stored.size_bytes,
			key=stored.key,
		)
		try:
			canonical = await self._persist_send(
				chat,
				actor_id,
				kind,
				body,
				attachment=attachment,
				reply_to_id=reply_to_id,
				client_msg_id=client_msg_id,
				origin_sid=origin_sid,
			)
		except SyncError:
			await self._cleanup_attachment(attachment, actor_id)
			raise
		stored_attachment = canonical.message.attachment
		if stored_attachment is None or stored_attachment.key != attachment.key:
			# replayed send kept the earlier upload
			await self._cleanup_attachment(attachment, actor_id)
		return canonical

	async def _cleanup_attachment(self, attachment: Optional[models.Attachment], owner_id: str) -> None:
		if attachment is None:
			return
		key = attachment.key or self.attachments.key_from_url(attachment.url)
		if not key:
			return
		if not owned_by(key, owner_id):
			# a linked URL into someone else's upload is never removed
			LOGGER.info("attachment cleanup skipped", extra={"key": key, "owner_id": owner_id})
			return
		try:
			await self.attachments.delete(key)
		except Exception:
			obs_metrics.inc_attachment_cleanup_failure()
			LOGGER.warning("attachment cleanup failed", extra={"key": key}, exc_info=True)

	async def edit(
		self,
		actor_id: str,
		message_id: str,
		content: Optional[str],
		*,
		origin_sid: Optional[str] = None,
	) -> models.CanonicalMessage:
		try:
			message = policy.require_message(await self._bounded(self.store.get_message(message_id)))
			policy.require_sender(message, actor_id)
			policy.require_editable(message)
			body = policy.validate_text(content)
		except SyncError as exc:
			obs_metrics.inc_chat_rejected(exc.code)
			raise
		updated = policy.require_message(await self._bounded(self.store.update_content(message.id, body)))
		obs_metrics.inc_chat_edit()
		LOGGER.info("message edited", extra={"chat_id": message.chat_id, "message_id": message.id})
		chat = await self._bounded(self.store.get_chat(message.chat_id))
		if chat is not None:
			await self._fanout(
				chat,
				actor_id,
				events.MESSAGE_EDITED,
				events.message_edited(updated.id, updated.chat_id, updated.content),
				origin_sid,
			)
		return await self._canonical_one(updated)

	async def delete(self, actor_id: str, message_id: str, *, origin_sid: Optional[str] = None) -> models.Message:
		try:
			message = policy.require_message(await self._bounded(self.store.get_message(message_id)))
			policy.require_sender(message, actor_id)
		except SyncError as exc:
			obs_metrics.inc_chat_rejected(exc.code)
			raise
		await self._cleanup_attachment(message.attachment, message.sender_id)
		await self._bounded(self.store.delete_message(message.id))
		obs_metrics.inc_chat_delete()
		LOGGER.info("message deleted", extra={"chat_id": message.chat_id, "message_id": message.id})
		chat = await self._bounded(self.store.get_chat(message.chat_id))
		if chat is not None:
			await self._fanout(
				chat,
				actor_id,
				events.MESSAGE_DELETED,
				events.message_deleted(message.id, message.chat_id),
				origin_sid,
			)
		return message

	async def _like_target(self, actor_id: str, message_id: str) -> tuple[models.Message, models.Chat]:
		try:
			message = policy.require_message(await self._bounded(self.store.get_message(message_id)))
			chat = await self._member_chat(message.chat_id, actor_id)
		except SyncError as exc:
			obs_metrics.inc_chat_rejected(exc.code)
			raise
		return message, chat

	async def _apply_like(
		self,
		actor_id: str,
		message: models.Message,
		chat: models.Chat,
		liked: bool,
		origin_sid: Optional[str],
	) -> List[str]:
		if liked:
			likes = await self._bounded(self.store.add_like(message.id, actor_id))
		else:
			likes = await self._bounded(self.store.remove_like(message.id, actor_id))
		if likes is None:
			raise NotFound("message_not_found")
		obs_metrics.inc_chat_like("like" if liked else "unlike")
		LOGGER.info(
			"like updated",
			extra={"chat_id": chat.id, "message_id": message.id, "liked": liked, "actor_id": actor_id},
		)
		await self._fanout(
			chat,
			actor_id,
			events.MESSAGE_LIKED,
			events.message_liked(message.id, chat.id, likes),
			origin_sid,
		)
		return likes

	async def toggle_like(self, actor_id: str, message_id: str, *, origin_sid: Optional[str] = None) -> List[str]:
		"""Add the actor to the like set if absent, otherwise remove them.

		Not idempotent: a retried toggle after an unknown outcome can undo itself.
		Callers that retry should use `set_liked`.
		"""
		message, chat = await self._like_target(actor_id, message_id)
		return await self._apply_like(actor_id, message, chat, actor_id not in message.likes, origin_sid)

	async def set_liked(
		self,
		actor_id: str,
		message_id: str,
		liked: bool,
		*,
		origin_sid: Optional[str] = None,
	) -> List[str]:
		message, chat = await self._like_target(actor_id, message_id)
		return await self._apply_like(actor_id, message, chat, bool(liked), origin_sid)

	async def mark_read(
		self,
		actor_id: str,
		message_id: str,
		*,
		origin_sid: Optional[str] = None,
	) -> List[models.Receipt]:
		try:
			message = policy.require_message(await self._bounded(self.store.get_message(message_id)))
		except SyncError as exc:
			obs_metrics.inc_chat_rejected(exc.code)
			raise
		if message.sender_id == actor_id:
			return list(message.read_by)
		try:
			chat = await self._member_chat(message.chat_id, actor_id)
		except SyncError as exc:
			obs_metrics.inc_chat_rejected(exc.code)
			raise
		if message.has_read(actor_id):
			return list(message.read_by)
		receipt = models.Receipt(user_id=actor_id, at=self._clock())
		read_by = await self._bounded(self.store.add_receipts(message.id, RECEIPT_READ, [receipt]))
		read_by = list(read_by if read_by is not None else [*message.read_by, receipt])
		obs_metrics.inc_chat_read()
		LOGGER.info("message read", extra={"chat_id": chat.id, "message_id": message.id, "actor_id": actor_id})
		await self._fanout(
			chat,
			actor_id,
			events.MESSAGE_READ,
			events.message_read(message.id, chat.id, actor_id, [ReceiptOut.from_receipt(r) for r in read_by]),
			origin_sid,
		)
		return read_by

	async def list_messages(
		self,
		actor_id: str,
		chat_id: str,
		*,
		page: int = 1,
		limit: Optional[int] = None,
	) -> models.MessagePage:
		"""One page of a chat, newest page first, items oldest first within the page."""
		if page < 1:
			raise InvalidArgument("invalid_page")
		size = page_size(limit)
		await self._member_chat(chat_id, actor_id)
		offset = (page - 1) * size
		rows = await self._bounded(self.store.list_messages(chat_id, offset=offset, limit=size + 1))
		has_more = len(rows) > size
		rows = rows[:size]
		rows.reverse()
		return models.MessagePage(items=await self.canonicalize(rows), page=page, limit=size, has_more=has_more)

	async def get_message(self, actor_id: str, message_id: str) -> models.CanonicalMessage:
		message = policy.require_message(await self._bounded(self.store.get_message(message_id)))
		await self._member_chat(message.chat_id, actor_id)
		return await self._canonical_one(message)


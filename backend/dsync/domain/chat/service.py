"""Chat listing and creation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import ulid

from dsync.domain.chat import models, policy
from dsync.domain.chat.store import ChatStore
from dsync.domain.chat.sync import MessageSyncCore

LOGGER = logging.getLogger(__name__)


class ChatService:
	def __init__(self, store: ChatStore, core: MessageSyncCore) -> None:
		self.store = store
		self.core = core

	async def _views(self, chats: Sequence[models.Chat]) -> List[models.ChatView]:
		user_ids = {member for chat in chats for member in chat.members}
		profiles = await self.store.get_profiles(user_ids) if user_ids else {}
		latest_ids = [chat.latest_message_id for chat in chats if chat.latest_message_id]
		latest: Dict[str, models.CanonicalMessage] = {}
		if latest_ids:
			found = await self.store.get_messages(latest_ids)
			for canonical in await self.core.canonicalize(list(found.values())):
				latest[canonical.message.id] = canonical
		views: List[models.ChatView] = []
		for chat in chats:
			members = tuple(profiles.get(uid) or models.UserProfile.placeholder(uid) for uid in chat.members)
			views.append(
				models.ChatView(
					chat=chat,
					members=members,
					latest_message=latest.get(chat.latest_message_id) if chat.latest_message_id else None,
				)
			)
		return views

	async def list_chats(self, actor_id: str) -> List[models.ChatView]:
		"""Chats the actor belongs to, most recent activity first."""
		chats = await self.store.list_chats_for_user(actor_id)
		return await self._views(chats)

	async def get_chat(self, actor_id: str, chat_id: str) -> models.ChatView:
		chat = policy.require_chat(await self.store.get_chat(chat_id))
		policy.require_member(chat, actor_id)
		return (await self._views([chat]))[0]

	async def access_direct(self, actor_id: str, other_id: str) -> Tuple[models.ChatView, bool]:
		"""Return the direct chat between two users, creating it on first access."""
		other_id = (other_id or "").strip()
		policy.validate_direct_pair(actor_id, other_id)
		key = models.ConversationKey.from_participants(actor_id, other_id)
		now = datetime.now(timezone.utc)
		chat, created = await self.store.create_chat(
			models.Chat(
				id=ulid.new().str,
				kind=models.CHAT_DIRECT,
				members=key.participants(),
				created_at=now,
				updated_at=now,
				direct_key=key.value,
			)
		)
		if created:
			LOGGER.info("direct chat created", extra={"chat_id": chat.id, "actor_id": actor_id})
		return (await self._views([chat]))[0], created

	async def create_group(self, actor_id: str, name: Optional[str], users: Sequence[str]) -> models.ChatView:
		members = policy.group_members(actor_id, users, name)
		now = datetime.now(timezone.utc)
		chat, _ = await self.store.create_chat(
			models.Chat(
				id=ulid.new().str,
				kind=models.CHAT_GROUP,
				members=tuple(members),
				name=(name or "").strip(),
				admin_id=actor_id,
				created_at=now,
				updated_at=now,
			)
		)
		LOGGER.info("group chat created", extra={"chat_id": chat.id, "actor_id": actor_id, "members": len(members)})
		return (await self._views([chat]))[0]

	async def upsert_profile(self, actor_id: str, name: Optional[str], avatar: Optional[str]) -> models.UserProfile:
		existing = (await self.store.get_profiles([actor_id])).get(actor_id)
		profile = models.UserProfile(
			user_id=actor_id,
			name=name if name is not None else (existing.name if existing else None),
			avatar=avatar if avatar is not None else (existing.avatar if existing else None),
		)
		return await self.store.upsert_profile(profile)

	async def get_profile(self, user_id: str) -> models.UserProfile:
		return (await self.store.get_profiles([user_id])).get(user_id) or models.UserProfile.placeholder(user_id)

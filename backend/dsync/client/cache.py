"""Bounded local cache of recent messages per chat."""

from __future__ import annotations

from collections import OrderedDict, deque
from typing import Deque, Dict, Iterable, List, Optional

from dsync.domain.chat.schemas import MessageOut
from dsync.settings import settings


class MessageCache:
	"""LRU over chats, ring buffer of the newest messages within each chat.

	Touching a chat (read or write) makes it most recent; the least recently
	used chat is evicted once `max_chats` is exceeded.
	"""

	def __init__(self, max_chats: Optional[int] = None, max_messages: Optional[int] = None) -> None:
		self.max_chats = max_chats or settings.client_cache_max_chats
		self.max_messages = max_messages or settings.client_cache_max_messages
		self._chats: "OrderedDict[str, Deque[MessageOut]]" = OrderedDict()

	def __len__(self) -> int:
		return len(self._chats)

	def __contains__(self, chat_id: object) -> bool:
		return chat_id in self._chats

	def chat_ids(self) -> List[str]:
		return list(self._chats)

	def _touch(self, chat_id: str) -> Deque[MessageOut]:
		bucket = self._chats.get(chat_id)
		if bucket is None:
			bucket = deque(maxlen=self.max_messages)
			self._chats[chat_id] = bucket
		self._chats.move_to_end(chat_id)
		while len(self._chats) > self.max_chats:
			self._chats.popitem(last=False)
		return bucket

	def get(self, chat_id: str) -> List[MessageOut]:
		if chat_id not in self._chats:
			return []
		return list(self._touch(chat_id))

	def put(self, chat_id: str, messages: Iterable[MessageOut]) -> None:
		"""Replace a chat's cached messages with the newest `max_messages` of `messages`."""
		ordered = sorted(_unique(messages), key=lambda m: (m.created_at, m.seq, m.id))
		bucket = self._touch(chat_id)
		bucket.clear()
		bucket.extend(ordered[-self.max_messages :])

	def upsert(self, chat_id: str, message: MessageOut) -> None:
		bucket = self._touch(chat_id)
		for index, cached in enumerate(bucket):
			if cached.id == message.id:
				bucket[index] = message
				return
		bucket.append(message)

	def remove(self, chat_id: str, message_id: str) -> None:
		bucket = self._chats.get(chat_id)
		if bucket is None:
			return
		kept = [m for m in bucket if m.id != message_id]
		bucket.clear()
		bucket.extend(kept)

	def evict(self, chat_id: str) -> None:
		self._chats.pop(chat_id, None)

	def clear(self) -> None:
		self._chats.clear()


def _unique(messages: Iterable[MessageOut]) -> List[MessageOut]:
	by_id: Dict[str, MessageOut] = {}
	for message in messages:
		by_id[message.id] = message
	return list(by_id.values())

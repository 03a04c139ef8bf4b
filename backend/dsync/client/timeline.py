"""Per-chat message timeline as a pure reducer.

Each entry is either a local optimistic draft keyed by its temporary id or a
confirmed record keyed by its canonical id. `reduce(state, action)` returns a
new state and never mutates the old one. Merging is idempotent: a canonical id
that has been seen once is never inserted again, which absorbs duplicate
broadcasts, overlapping pages and reconnect replays.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from dsync.domain.chat.schemas import MessageOut, ReceiptOut

STATUS_SENDING = "sending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class Draft:
	chat_id: str
	sender_id: str
	content: str
	created_at: datetime
	kind: str = "text"
	file_name: Optional[str] = None
	reply_to: Optional[str] = None


@dataclass(frozen=True)
class LocalEntry:
	temp_id: str
	draft: Draft
	status: str = STATUS_SENDING
	error: Optional[str] = None

	@property
	def key(self) -> str:
		return self.temp_id


@dataclass(frozen=True)
class ConfirmedEntry:
	message: MessageOut

	status = STATUS_SENT

	@property
	def key(self) -> str:
		return self.message.id


Entry = Union[LocalEntry, ConfirmedEntry]


@dataclass(frozen=True)
class TimelineState:
	chat_id: str
	order: Tuple[str, ...] = ()
	entries: Mapping[str, Entry] = field(default_factory=dict)
	seen: FrozenSet[str] = frozenset()

	def __len__(self) -> int:
		return len(self.order)

	def __contains__(self, key: object) -> bool:
		return key in self.entries

	def items(self) -> List[Entry]:
		return [self.entries[key] for key in self.order]

	def get(self, key: str) -> Optional[Entry]:
		return self.entries.get(key)

	def confirmed(self, message_id: str) -> Optional[MessageOut]:
		entry = self.entries.get(message_id)
		return entry.message if isinstance(entry, ConfirmedEntry) else None

	def local(self, temp_id: str) -> Optional[LocalEntry]:
		entry = self.entries.get(temp_id)
		return entry if isinstance(entry, LocalEntry) else None

	def oldest_confirmed(self) -> Optional[MessageOut]:
		for key in self.order:
			entry = self.entries[key]
			if isinstance(entry, ConfirmedEntry):
				return entry.message
		return None


# Actions


@dataclass(frozen=True)
class OptimisticAdded:
	temp_id: str
	draft: Draft


@dataclass(frozen=True)
class SendConfirmed:
	temp_id: str
	message: MessageOut


@dataclass(frozen=True)
class SendFailed:
	temp_id: str
	error: Optional[str] = None


@dataclass(frozen=True)
class ResendStarted:
	temp_id: str


@dataclass(frozen=True)
class LocalDiscarded:
	temp_id: str


@dataclass(frozen=True)
class Received:
	message: MessageOut


@dataclass(frozen=True)
class PageLoaded:
	messages: Tuple[MessageOut, ...]


@dataclass(frozen=True)
class Edited:
	message_id: str
	content: str
	is_edited: bool = True


@dataclass(frozen=True)
class Deleted:
	message_id: str


@dataclass(frozen=True)
class LikesChanged:
	message_id: str
	likes: Tuple[str, ...]


@dataclass(frozen=True)
class ReadChanged:
	message_id: str
	read_by: Tuple[ReceiptOut, ...]


@dataclass(frozen=True)
class Restored:
	"""Put a confirmed record back as it was, e.g. when an optimistic change is rolled back."""

	message: MessageOut


Action = Union[
	OptimisticAdded,
	SendConfirmed,
	SendFailed,
	ResendStarted,
	LocalDiscarded,
	Received,
	PageLoaded,
	Edited,
	Deleted,
	LikesChanged,
	ReadChanged,
	Restored,
]


def empty(chat_id: str) -> TimelineState:
	return TimelineState(chat_id=chat_id)


def _sort_key(message: MessageOut) -> Tuple[datetime, int, str]:
	return (message.created_at, message.seq, message.id)


def _insert_position(state: TimelineState, message: MessageOut) -> int:
	"""Index keeping confirmed records chronological; pending drafts stay last."""
	key = _sort_key(message)
	index = len(state.order)
	while index > 0:
		entry = state.entries[state.order[index - 1]]
		if isinstance(entry, LocalEntry) or _sort_key(entry.message) > key:
			index -= 1
			continue
		break
	return index


def _with_entry(state: TimelineState, key: str, entry: Entry, *, seen: Optional[FrozenSet[str]] = None) -> TimelineState:
	entries = dict(state.entries)
	entries[key] = entry
	return replace(state, entries=entries, seen=seen if seen is not None else state.seen)


def _insert_confirmed(state: TimelineState, message: MessageOut) -> TimelineState:
	index = _insert_position(state, message)
	order = state.order[:index] + (message.id,) + state.order[index:]
	entries = dict(state.entries)
	entries[message.id] = ConfirmedEntry(message)
	return replace(state, order=order, entries=entries, seen=state.seen | {message.id})


def _replace_key(state: TimelineState, old_key: str, message: MessageOut) -> TimelineState:
	order = tuple(message.id if key == old_key else key for key in state.order)
	entries = dict(state.entries)
	entries.pop(old_key, None)
	entries[message.id] = ConfirmedEntry(message)
	return replace(state, order=order, entries=entries, seen=state.seen | {message.id})


def _drop_key(state: TimelineState, key: str) -> TimelineState:
	if key not in state.entries:
		return state
	entries = dict(state.entries)
	entries.pop(key)
	return replace(state, order=tuple(k for k in state.order if k != key), entries=entries)


def _update_confirmed(state: TimelineState, message_id: str, **changes) -> TimelineState:
	current = state.confirmed(message_id)
	if current is None:
		return state
	return _with_entry(state, message_id, ConfirmedEntry(current.model_copy(update=changes)))


def _on_optimistic(state: TimelineState, action: OptimisticAdded) -> TimelineState:
	if action.temp_id in state.entries:
		return state
	entries = dict(state.entries)
	entries[action.temp_id] = LocalEntry(temp_id=action.temp_id, draft=action.draft)
	return replace(state, order=state.order + (action.temp_id,), entries=entries)


def _on_confirmed(state: TimelineState, action: SendConfirmed) -> TimelineState:
	message = action.message
	if message.id in state.entries or message.id in state.seen:
		# a broadcast or replay got here first; keep that entry
		return _drop_key(state, action.temp_id)
	if state.local(action.temp_id) is None:
		return _insert_confirmed(state, message)
	return _replace_key(state, action.temp_id, message)


def _on_failed(state: TimelineState, action: SendFailed) -> TimelineState:
	entry = state.local(action.temp_id)
	if entry is None:
		return state
	return _with_entry(state, action.temp_id, replace(entry, status=STATUS_FAILED, error=action.error))


def _on_resend(state: TimelineState, action: ResendStarted) -> TimelineState:
	entry = state.local(action.temp_id)
	if entry is None:
		return state
	return _with_entry(state, action.temp_id, replace(entry, status=STATUS_SENDING, error=None))


def _on_discarded(state: TimelineState, action: LocalDiscarded) -> TimelineState:
	if state.local(action.temp_id) is None:
		return state
	return _drop_key(state, action.temp_id)


def _merge_one(state: TimelineState, message: MessageOut) -> TimelineState:
	if message.id in state.seen or message.id in state.entries:
		return state
	if message.client_msg_id and state.local(message.client_msg_id) is not None:
		return _replace_key(state, message.client_msg_id, message)
	return _insert_confirmed(state, message)


def _on_received(state: TimelineState, action: Received) -> TimelineState:
	return _merge_one(state, action.message)


def _on_page(state: TimelineState, action: PageLoaded) -> TimelineState:
	for message in sorted(action.messages, key=_sort_key):
		state = _merge_one(state, message)
	return state


def _on_edited(state: TimelineState, action: Edited) -> TimelineState:
	return _update_confirmed(state, action.message_id, content=action.content, is_edited=action.is_edited)


def _on_deleted(state: TimelineState, action: Deleted) -> TimelineState:
	# stays in `seen` so a late duplicate cannot bring it back
	return replace(_drop_key(state, action.message_id), seen=state.seen | {action.message_id})


def _on_likes(state: TimelineState, action: LikesChanged) -> TimelineState:
	return _update_confirmed(state, action.message_id, likes=list(action.likes))


def _on_read(state: TimelineState, action: ReadChanged) -> TimelineState:
	return _update_confirmed(state, action.message_id, read_by=list(action.read_by))


def _on_restored(state: TimelineState, action: Restored) -> TimelineState:
	message = action.message
	if message.id in state.entries:
		return _with_entry(state, message.id, ConfirmedEntry(message))
	return _insert_confirmed(state, message)


_HANDLERS: Dict[type, Callable[[TimelineState, Action], TimelineState]] = {
	OptimisticAdded: _on_optimistic,
	SendConfirmed: _on_confirmed,
	SendFailed: _on_failed,
	ResendStarted: _on_resend,
	LocalDiscarded: _on_discarded,
	Received: _on_received,
	PageLoaded: _on_page,
	Edited: _on_edited,
	Deleted: _on_deleted,
	LikesChanged: _on_likes,
	ReadChanged: _on_read,
	Restored: _on_restored,
}


def reduce(state: TimelineState, action: Action) -> TimelineState:
	handler = _HANDLERS.get(type(action))
	if handler is None:
		raise TypeError(f"unknown timeline action: {type(action).__name__}")
	return handler(state, action)


def reduce_all(state: TimelineState, actions: Sequence[Action]) -> TimelineState:
	for action in actions:
		state = reduce(state, action)
	return state

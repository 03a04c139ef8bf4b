"""Lightweight service container for the chat core.

Defaults to in-memory collaborators; `configure_postgres` swaps in the
asyncpg-backed store once a pool is available.
"""

from __future__ import annotations

from typing import Optional

import asyncpg

from dsync.domain.chat.service import ChatService
from dsync.domain.chat.store import ChatStore, MemoryChatStore, PostgresChatStore
from dsync.domain.chat.sync import MessageSyncCore
from dsync.domain.presence.broker import Broker, NullBroker
from dsync.domain.presence.registry import PresenceRegistry
from dsync.infra.attachments import AttachmentStore, LocalAttachmentStore

_store: ChatStore = MemoryChatStore()
_broker: Broker = NullBroker()
_attachments: AttachmentStore = LocalAttachmentStore()
_registry: PresenceRegistry = PresenceRegistry()
_core = MessageSyncCore(_store, _broker, _attachments)
_service = ChatService(_store, _core)


def configure(
	*,
	store: Optional[ChatStore] = None,
	broker: Optional[Broker] = None,
	attachments: Optional[AttachmentStore] = None,
	registry: Optional[PresenceRegistry] = None,
) -> None:
	global _store, _broker, _attachments, _registry, _core, _service
	if store is not None:
		_store = store
	if broker is not None:
		_broker = broker
	if attachments is not None:
		_attachments = attachments
	if registry is not None:
		_registry = registry
	_core = MessageSyncCore(_store, _broker, _attachments)
	_service = ChatService(_store, _core)


def configure_postgres(pool: asyncpg.Pool) -> None:
	configure(store=PostgresChatStore(pool))


def reset() -> None:
	"""Fresh in-memory store; used by tests."""
	configure(store=MemoryChatStore())


def get_store() -> ChatStore:
	return _store


def get_broker() -> Broker:
	return _broker


def get_attachments() -> AttachmentStore:
	return _attachments


def get_registry() -> PresenceRegistry:
	return _registry


def get_core() -> MessageSyncCore:
	return _core


def get_service() -> ChatService:
	return _service

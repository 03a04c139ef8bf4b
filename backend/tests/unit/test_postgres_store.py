import contextlib
from datetime import datetime, timezone

import pytest

from dsync.domain.chat import models
from dsync.domain.chat.errors import Internal
from dsync.domain.chat.store import PostgresChatStore


class VanishingChatConnection:
    """Reports a direct-key conflict, then finds no chat behind it."""

    async def fetchval(self, sql, *args):
        if "SELECT id FROM chats" in sql:
            return "chat-gone"
        return None

    async def fetchrow(self, sql, *args):
        return None

    def transaction(self):
        @contextlib.asynccontextmanager
        async def _tx():
            yield

        return _tx()


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        @contextlib.asynccontextmanager
        async def _acquire():
            yield self.conn

        return _acquire()


@pytest.mark.asyncio
async def test_direct_conflict_without_stored_chat_raises_internal():
    store = PostgresChatStore(FakePool(VanishingChatConnection()))
    now = datetime.now(timezone.utc)
    chat = models.Chat(
        id="chat-new",
        kind="direct",
        members=("user-a", "user-b"),
        created_at=now,
        updated_at=now,
        direct_key=models.ConversationKey.from_participants("user-a", "user-b").value,
    )

    with pytest.raises(Internal) as exc:
        await store.create_chat(chat)

    assert exc.value.code == "direct_chat_missing"

import pytest

from dsync.domain.chat import models, policy
from dsync.domain.chat.errors import AccessDenied, InvalidArgument, NotFound


@pytest.mark.asyncio
async def test_access_direct_twice_returns_same_chat(chat_service):
    first, created = await chat_service.access_direct("user-a", "user-b")
    second, created_again = await chat_service.access_direct("user-b", "user-a")

    assert created is True
    assert created_again is False
    assert first.chat.id == second.chat.id
    assert first.chat.direct_key == "direct:user-a:user-b"


@pytest.mark.asyncio
async def test_access_direct_rejects_self_chat(chat_service):
    with pytest.raises(InvalidArgument) as exc:
        await chat_service.access_direct("user-a", "user-a")
    assert exc.value.code == "cannot_chat_with_self"


@pytest.mark.asyncio
async def test_create_group_dedups_invitees_and_sets_admin(chat_service):
    view = await chat_service.create_group("user-a", "crew", ["user-b", "user-b", "user-a", "user-c"])

    assert view.chat.kind == models.CHAT_GROUP
    assert view.chat.members == ("user-a", "user-b", "user-c")
    assert view.chat.admin_id == "user-a"
    assert view.chat.name == "crew"


@pytest.mark.asyncio
async def test_create_group_needs_two_other_users(chat_service):
    with pytest.raises(InvalidArgument) as exc:
        await chat_service.create_group("user-a", "duo", ["user-b", "user-a", "user-b"])
    assert exc.value.code == "group_needs_more_users"


@pytest.mark.asyncio
async def test_list_chats_newest_activity_first_with_latest_message(chat_service, core):
    older, _ = await chat_service.access_direct("user-a", "user-b")
    newer, _ = await chat_service.access_direct("user-a", "user-c")
    await chat_service.upsert_profile("user-b", "Bea", None)
    sent = await core.send("user-b", older.chat.id, "ping")

    views = await chat_service.list_chats("user-a")

    assert [view.chat.id for view in views] == [older.chat.id, newer.chat.id]
    assert views[0].latest_message.message.id == sent.message.id
    assert views[0].latest_message.sender.name == "Bea"
    assert {p.user_id for p in views[0].members} == {"user-a", "user-b"}


@pytest.mark.asyncio
async def test_get_chat_checks_membership(chat_service):
    view, _ = await chat_service.access_direct("user-a", "user-b")

    with pytest.raises(AccessDenied):
        await chat_service.get_chat("intruder", view.chat.id)
    with pytest.raises(NotFound):
        await chat_service.get_chat("user-a", "missing")


@pytest.mark.asyncio
async def test_upsert_profile_merges_fields(chat_service):
    await chat_service.upsert_profile("user-a", "Ada", "https://cdn.example/a.png")
    profile = await chat_service.upsert_profile("user-a", None, None)

    assert profile.name == "Ada"
    assert profile.avatar == "https://cdn.example/a.png"
    assert (await chat_service.get_profile("nobody")).name is None


def test_validate_text_limits(monkeypatch):
    from dsync.settings import settings

    monkeypatch.setattr(settings, "text_max_length", 5)
    assert policy.validate_text("hello") == "hello"
    with pytest.raises(InvalidArgument) as exc:
        policy.validate_text("hello!")
    assert exc.value.code == "content_too_long"


def test_normalise_kind():
    assert policy.normalise_kind(None) == "text"
    assert policy.normalise_kind(" Image ") == "image"
    with pytest.raises(InvalidArgument):
        policy.normalise_kind("sticker")


def test_group_name_required():
    with pytest.raises(InvalidArgument) as exc:
        policy.group_members("user-a", ["user-b", "user-c"], "  ")
    assert exc.value.code == "group_name_required"


def test_conversation_key_is_order_independent():
    one = models.ConversationKey.from_participants("b", "a")
    two = models.ConversationKey.from_participants("a", "b")
    assert one.value == two.value == "direct:a:b"

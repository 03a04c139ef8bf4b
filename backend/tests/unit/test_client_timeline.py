from datetime import datetime, timedelta, timezone

import pytest

from dsync.client import timeline
from dsync.domain.chat.schemas import MessageOut, ReceiptOut, UserOut

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _message(message_id: str, minute: int, *, seq: int = 0, client_msg_id=None, sender="user-a", content=None):
    return MessageOut(
        id=message_id,
        chat_id="chat-1",
        sender=UserOut(id=sender),
        kind="text",
        content=content or message_id,
        created_at=T0 + timedelta(minutes=minute),
        seq=seq or minute,
        client_msg_id=client_msg_id,
    )


def _draft(content="hi", minute=30):
    return timeline.Draft(chat_id="chat-1", sender_id="user-a", content=content, created_at=T0 + timedelta(minutes=minute))


def _keys(state):
    return [entry.key for entry in state.items()]


def test_optimistic_entry_is_sending_then_replaced_in_place():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.PageLoaded((_message("m1", 1), _message("m2", 2))),
            timeline.OptimisticAdded("local-1", _draft()),
        ],
    )
    assert state.local("local-1").status == timeline.STATUS_SENDING
    assert _keys(state) == ["m1", "m2", "local-1"]

    confirmed = timeline.reduce(state, timeline.SendConfirmed("local-1", _message("m3", 3, client_msg_id="local-1")))

    assert _keys(confirmed) == ["m1", "m2", "m3"]
    assert confirmed.get("m3").status == timeline.STATUS_SENT
    assert "local-1" not in confirmed


def test_duplicate_broadcast_after_confirmation_is_noop():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.OptimisticAdded("local-1", _draft()),
            timeline.SendConfirmed("local-1", _message("m1", 1, client_msg_id="local-1")),
        ],
    )

    again = timeline.reduce(state, timeline.Received(_message("m1", 1, client_msg_id="local-1")))

    assert again == state


def test_broadcast_before_confirmation_takes_over_the_local_entry():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.OptimisticAdded("local-1", _draft()),
            timeline.Received(_message("m1", 1, client_msg_id="local-1")),
            timeline.SendConfirmed("local-1", _message("m1", 1, client_msg_id="local-1")),
        ],
    )

    assert _keys(state) == ["m1"]


def test_failed_send_keeps_content_and_can_be_resent():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.OptimisticAdded("local-1", _draft("keep me")),
            timeline.SendFailed("local-1", "transient"),
        ],
    )
    entry = state.local("local-1")
    assert entry.status == timeline.STATUS_FAILED
    assert entry.error == "transient"
    assert entry.draft.content == "keep me"

    retried = timeline.reduce(state, timeline.ResendStarted("local-1"))
    assert retried.local("local-1").status == timeline.STATUS_SENDING
    assert retried.local("local-1").error is None

    discarded = timeline.reduce(retried, timeline.LocalDiscarded("local-1"))
    assert len(discarded) == 0


def test_overlapping_pages_merge_without_duplicates():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.PageLoaded((_message("m3", 3), _message("m4", 4))),
            timeline.PageLoaded((_message("m1", 1), _message("m2", 2), _message("m3", 3))),
        ],
    )

    assert _keys(state) == ["m1", "m2", "m3", "m4"]
    assert state.oldest_confirmed().id == "m1"


def test_broadcast_during_pagination_appears_once():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.PageLoaded((_message("m5", 5), _message("m6", 6))),
            timeline.Received(_message("m7", 7)),
            timeline.PageLoaded((_message("m6", 6), _message("m7", 7))),
            timeline.PageLoaded((_message("m3", 3), _message("m4", 4))),
        ],
    )

    assert _keys(state) == ["m3", "m4", "m5", "m6", "m7"]


def test_received_messages_stay_ahead_of_pending_drafts():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.OptimisticAdded("local-1", _draft()),
            timeline.Received(_message("m1", 1, sender="user-b")),
        ],
    )

    assert _keys(state) == ["m1", "local-1"]


def test_deleted_message_cannot_come_back_from_a_stale_page():
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.PageLoaded((_message("m1", 1), _message("m2", 2))),
            timeline.Deleted("m1"),
            timeline.PageLoaded((_message("m1", 1),)),
        ],
    )

    assert _keys(state) == ["m2"]


def test_restored_brings_back_a_deleted_message_in_position():
    original = _message("m1", 1)
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.PageLoaded((original, _message("m2", 2))),
            timeline.Deleted("m1"),
            timeline.Restored(original),
        ],
    )

    assert _keys(state) == ["m1", "m2"]


def test_edit_likes_and_reads_update_confirmed_entries():
    receipt = ReceiptOut(user_id="user-b", at=T0)
    state = timeline.reduce_all(
        timeline.empty("chat-1"),
        [
            timeline.PageLoaded((_message("m1", 1),)),
            timeline.Edited("m1", "fixed"),
            timeline.LikesChanged("m1", ("user-b",)),
            timeline.ReadChanged("m1", (receipt,)),
        ],
    )

    message = state.confirmed("m1")
    assert message.content == "fixed"
    assert message.is_edited is True
    assert message.likes == ["user-b"]
    assert [r.user_id for r in message.read_by] == ["user-b"]


def test_updates_for_unknown_ids_are_ignored():
    state = timeline.empty("chat-1")

    assert timeline.reduce(state, timeline.Edited("nope", "x")) == state
    assert timeline.reduce(state, timeline.SendFailed("nope")) == state


def test_reduce_does_not_mutate_previous_state():
    state = timeline.reduce(timeline.empty("chat-1"), timeline.PageLoaded((_message("m1", 1),)))
    timeline.reduce(state, timeline.Received(_message("m2", 2)))

    assert _keys(state) == ["m1"]


def test_unknown_action_is_a_type_error():
    with pytest.raises(TypeError):
        timeline.reduce(timeline.empty("chat-1"), object())

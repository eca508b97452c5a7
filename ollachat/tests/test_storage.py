"""Tests for chat, message and vote storage."""

from datetime import datetime, timedelta, timezone

import pytest

from ollachat.core.frames import ChatMessage, Role
from ollachat.storage import chats

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def redis_url():
    try:
        import redis

        r = redis.from_url("redis://localhost:6379/14", decode_responses=True)
        r.ping()
        r.flushdb()
        r.close()
        return "redis://localhost:6379/14"
    except Exception:
        pytest.skip("Redis not available")


def test_save_and_get_chat(fake_redis):
    saved = chats.save_chat(fake_redis, "c1", "alice", "Greeting")
    loaded = chats.get_chat_by_id(fake_redis, "c1")
    assert loaded.id == "c1"
    assert loaded.user_id == "alice"
    assert loaded.title == "Greeting"
    assert loaded.to_wire()["createdAt"] == saved.to_wire()["createdAt"]
    assert chats.get_chat_by_id(fake_redis, "missing") is None


def test_unreadable_chat_is_none(fake_redis):
    fake_redis.set(chats.CHAT_PREFIX + "c1", "{broken")
    assert chats.get_chat_by_id(fake_redis, "c1") is None


def test_history_newest_first(fake_redis):
    chats.save_chat(fake_redis, "old", "alice", "Old")
    chats.save_chat(fake_redis, "new", "alice", "New")
    chats.save_chat(fake_redis, "other", "bob", "Bob's")
    fake_redis.zadd(chats.USER_CHATS_PREFIX + "alice", {"old": 1.0, "new": 2.0})
    assert [c.id for c in chats.get_chats_by_user_id(fake_redis, "alice")] == ["new", "old"]
    assert chats.get_chats_by_user_id(fake_redis, "nobody") == []


def test_delete_chat_removes_messages_and_votes(fake_redis):
    chats.save_chat(fake_redis, "c1", "alice", "t")
    chats.save_messages(fake_redis, "c1", [ChatMessage(id="u1", role=Role.USER, content="hi")])
    chats.vote_message(fake_redis, "c1", "u1", "up")

    assert chats.delete_chat_by_id(fake_redis, "c1") is True
    assert chats.get_chat_by_id(fake_redis, "c1") is None
    assert chats.get_messages_by_chat_id(fake_redis, "c1") == []
    assert chats.get_votes_by_chat_id(fake_redis, "c1") == []
    assert chats.get_chats_by_user_id(fake_redis, "alice") == []
    assert chats.delete_chat_by_id(fake_redis, "c1") is False


def test_messages_upsert_and_order(fake_redis):
    later = ChatMessage(id="a1", role=Role.ASSISTANT, content="Hi", created_at=T0 + timedelta(seconds=1))
    first = ChatMessage(id="u1", role=Role.USER, content="hello", created_at=T0)
    assert chats.save_messages(fake_redis, "c1", [later, first]) == 2

    grown = ChatMessage(id="a1", role=Role.ASSISTANT, content="Hi there", created_at=later.created_at)
    assert chats.save_messages(fake_redis, "c1", [grown]) == 1
    assert chats.save_messages(fake_redis, "c1", []) == 0

    stored = chats.get_messages_by_chat_id(fake_redis, "c1")
    assert [(m.id, m.content) for m in stored] == [("u1", "hello"), ("a1", "Hi there")]


def test_vote_overwrites_previous_vote(fake_redis):
    chats.vote_message(fake_redis, "c1", "a1", "up")
    chats.vote_message(fake_redis, "c1", "a1", "down")
    chats.vote_message(fake_redis, "c1", "a2", "up")
    votes = {v.message_id: v for v in chats.get_votes_by_chat_id(fake_redis, "c1")}
    assert votes["a1"].is_upvoted is False
    assert votes["a2"].to_wire() == {"chatId": "c1", "messageId": "a2", "isUpvoted": True}


def test_vote_rejects_unknown_type(fake_redis):
    with pytest.raises(ValueError):
        chats.vote_message(fake_redis, "c1", "a1", "sideways")


def test_storage_against_live_redis(redis_url):
    r = chats.connect(redis_url)
    try:
        chats.save_chat(r, "live-1", "alice", "Live")
        chats.save_messages(r, "live-1", [ChatMessage(id="u1", role=Role.USER, content="hi")])
        chats.vote_message(r, "live-1", "u1", "up")
        assert [c.id for c in chats.get_chats_by_user_id(r, "alice")] == ["live-1"]
        assert chats.get_messages_by_chat_id(r, "live-1")[0].content == "hi"
        assert chats.get_votes_by_chat_id(r, "live-1")[0].is_upvoted is True
        assert chats.delete_chat_by_id(r, "live-1") is True
        assert chats.get_chat_by_id(r, "live-1") is None
    finally:
        r.flushdb()
        r.close()

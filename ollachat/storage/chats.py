"""Chats, messages and votes in Redis.

Keys:
  ollachat:chat:<id>          JSON Chat
  ollachat:user_chats:<user>  sorted set of chat ids, score = created timestamp
  ollachat:messages:<chat>    hash message id -> JSON ChatMessage
  ollachat:votes:<chat>       hash message id -> JSON Vote
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ollachat.core.frames import ChatMessage, format_timestamp, utcnow

logger = logging.getLogger(__name__)

CHAT_PREFIX = "ollachat:chat:"
USER_CHATS_PREFIX = "ollachat:user_chats:"
MESSAGES_PREFIX = "ollachat:messages:"
VOTES_PREFIX = "ollachat:votes:"

VoteType = Literal["up", "down"]
VOTE_TYPES = ("up", "down")


class Chat(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    title: str = ""
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "createdAt": format_timestamp(self.created_at),
        }


class Vote(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(alias="chatId")
    message_id: str = Field(alias="messageId")
    is_upvoted: bool = Field(alias="isUpvoted")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def connect(redis_url: str) -> Any:
    """Sync Redis client (used in request context)."""
    import redis

    return redis.from_url(redis_url, decode_responses=True)


def save_chat(redis_client: Any, chat_id: str, user_id: str, title: str) -> Chat:
    chat = Chat(id=chat_id, user_id=user_id, title=title)
    pipe = redis_client.pipeline()
    pipe.set(CHAT_PREFIX + chat_id, json.dumps(chat.to_wire()))
    pipe.zadd(USER_CHATS_PREFIX + user_id, {chat_id: chat.created_at.timestamp()})
    pipe.execute()
    logger.info("chat saved", extra={"chat_id": chat_id, "user_id": user_id})
    return chat


def _load_chat(raw: str | None) -> Chat | None:
    if not raw:
        return None
    try:
        return Chat.model_validate_json(raw)
    except ValidationError:
        return None


def get_chat_by_id(redis_client: Any, chat_id: str) -> Chat | None:
    return _load_chat(redis_client.get(CHAT_PREFIX + chat_id))


def get_chats_by_user_id(redis_client: Any, user_id: str) -> list[Chat]:
    """Newest first."""
    ids = redis_client.zrevrange(USER_CHATS_PREFIX + user_id, 0, -1) or []
    if not ids:
        return []
    out = []
    for raw in redis_client.mget([CHAT_PREFIX + cid for cid in ids]):
        chat = _load_chat(raw)
        if chat is not None:
            out.append(chat)
    return out


def delete_chat_by_id(redis_client: Any, chat_id: str) -> bool:
    """Remove the chat with its messages and votes. False if it did not exist."""
    chat = get_chat_by_id(redis_client, chat_id)
    if chat is None:
        return False
    pipe = redis_client.pipeline()
    pipe.delete(CHAT_PREFIX + chat_id)
    pipe.delete(MESSAGES_PREFIX + chat_id)
    pipe.delete(VOTES_PREFIX + chat_id)
    pipe.zrem(USER_CHATS_PREFIX + chat.user_id, chat_id)
    pipe.execute()
    logger.info("chat deleted", extra={"chat_id": chat_id})
    return True


def save_messages(redis_client: Any, chat_id: str, messages: Iterable[ChatMessage]) -> int:
    """Upsert by message id. Returns how many were written."""
    mapping = {m.id: json.dumps(m.to_wire()) for m in messages}
    if not mapping:
        return 0
    redis_client.hset(MESSAGES_PREFIX + chat_id, mapping=mapping)
    return len(mapping)


def get_messages_by_chat_id(redis_client: Any, chat_id: str) -> list[ChatMessage]:
    """Oldest first."""
    raw = redis_client.hgetall(MESSAGES_PREFIX + chat_id) or {}
    out = []
    for value in raw.values():
        try:
            out.append(ChatMessage.model_validate_json(value))
        except ValidationError:
            logger.warning("skipping unreadable stored message", extra={"chat_id": chat_id})
    out.sort(key=lambda m: m.created_at)
    return out


def vote_message(redis_client: Any, chat_id: str, message_id: str, vote_type: str) -> Vote:
    """One vote per message; voting again overwrites."""
    if vote_type not in VOTE_TYPES:
        raise ValueError(f"vote type must be one of {VOTE_TYPES}, got {vote_type!r}")
    vote = Vote(chat_id=chat_id, message_id=message_id, is_upvoted=vote_type == "up")
    redis_client.hset(VOTES_PREFIX + chat_id, message_id, json.dumps(vote.to_wire()))
    return vote


def get_votes_by_chat_id(redis_client: Any, chat_id: str) -> list[Vote]:
    raw = redis_client.hgetall(VOTES_PREFIX + chat_id) or {}
    out = []
    for value in raw.values():
        try:
            out.append(Vote.model_validate_json(value))
        except ValidationError:
            continue
    return out

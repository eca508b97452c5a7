"""Client side of the chat: consumes the framed stream the way the browser does."""

from ollachat.client.cache import KeyedCache
from ollachat.client.chat_client import HISTORY_KEY, ChatClient, votes_key
from ollachat.client.draft import DraftStore
from ollachat.client.session import ChatSession

__all__ = [
    "ChatClient",
    "ChatSession",
    "DraftStore",
    "HISTORY_KEY",
    "KeyedCache",
    "votes_key",
]

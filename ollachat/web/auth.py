"""Users and sessions in Redis. Session id travels in the ollachat_sid cookie."""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
from typing import Any

from flask import request

logger = logging.getLogger(__name__)

USERS_SET_KEY = "ollachat:users"
USER_PREFIX = "ollachat:user:"
SESSION_PREFIX = "ollachat:session:"
SESSION_TTL = 86400  # 24h, refreshed on access
SESSION_COOKIE_NAME = "ollachat_sid"
PBKDF2_ITERATIONS = 100_000
MIN_LOGIN_LENGTH = 2
MIN_PASSWORD_LENGTH = 6


def _hash_password(password: str, salt: bytes | None = None) -> tuple[str, str]:
    """Return (hex_hash, hex_salt). If salt is None, generate new."""
    if salt is None:
        salt = secrets.token_bytes(32)
    h = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return h.hex(), salt.hex()


def verify_password(password: str, stored_hash: str, stored_salt_hex: str) -> bool:
    try:
        salt = bytes.fromhex(stored_salt_hex)
    except ValueError:
        return False
    h, _ = _hash_password(password, salt)
    return secrets.compare_digest(h, stored_hash)


def create_user(redis_client: Any, login: str, password: str) -> dict[str, Any]:
    """Raises ValueError if the login is taken or credentials are too short."""
    if len(login) < MIN_LOGIN_LENGTH:
        raise ValueError(f"Login must be at least {MIN_LOGIN_LENGTH} characters")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if redis_client.sismember(USERS_SET_KEY, login):
        raise ValueError("User already exists")
    password_hash, salt_hex = _hash_password(password)
    data = {
        "password_hash": password_hash,
        "salt": salt_hex,
        "display_name": login,
    }
    redis_client.set(USER_PREFIX + login, json.dumps(data))
    redis_client.sadd(USERS_SET_KEY, login)
    logger.info("user created", extra={"login": login})
    return {"login": login, "display_name": login}


def get_user(redis_client: Any, login: str) -> dict[str, Any] | None:
    raw = redis_client.get(USER_PREFIX + login)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def verify_user(redis_client: Any, login: str, password: str) -> dict[str, Any] | None:
    """Check credentials. Returns the public user dict or None."""
    data = get_user(redis_client, login)
    if not data:
        return None
    if not verify_password(password, data["password_hash"], data["salt"]):
        return None
    return {"login": login, "display_name": data.get("display_name", login)}


def create_session(redis_client: Any, login: str) -> str:
    sid = secrets.token_urlsafe(32)
    redis_client.setex(SESSION_PREFIX + sid, SESSION_TTL, json.dumps({"login": login}))
    return sid


def get_session(redis_client: Any, session_id: str) -> dict[str, Any] | None:
    """Session payload; refreshes TTL on access."""
    if not session_id:
        return None
    key = SESSION_PREFIX + session_id
    raw = redis_client.get(key)
    if not raw:
        return None
    redis_client.expire(key, SESSION_TTL)
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def delete_session(redis_client: Any, session_id: str) -> None:
    if session_id:
        redis_client.delete(SESSION_PREFIX + session_id)


def get_current_user(redis_client: Any) -> dict[str, Any] | None:
    """User of the request's session cookie, or None."""
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if not sid:
        return None
    sess = get_session(redis_client, sid)
    if not sess or not sess.get("login"):
        return None
    login = sess["login"]
    user = get_user(redis_client, login)
    if not user:
        return None
    return {"id": login, "login": login, "display_name": user.get("display_name", login)}

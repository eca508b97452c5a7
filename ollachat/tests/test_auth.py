"""Tests for users and sessions."""

import pytest

pytest.importorskip("flask")

from flask import Flask

from ollachat.web.auth import (
    SESSION_COOKIE_NAME,
    SESSION_PREFIX,
    USERS_SET_KEY,
    _hash_password,
    create_session,
    create_user,
    delete_session,
    get_current_user,
    get_session,
    get_user,
    verify_password,
    verify_user,
)


def test_hash_password_deterministic_with_salt():
    h1, s1 = _hash_password("secret")
    h2, s2 = _hash_password("secret", bytes.fromhex(s1))
    assert h1 == h2
    assert s1 == s2


def test_verify_password():
    h, s = _hash_password("mypass")
    assert verify_password("mypass", h, s) is True
    assert verify_password("wrong", h, s) is False
    assert verify_password("mypass", h, "not-hex") is False


def test_create_and_verify_user(fake_redis):
    assert create_user(fake_redis, "alice", "secret1") == {"login": "alice", "display_name": "alice"}
    assert fake_redis.sismember(USERS_SET_KEY, "alice")
    assert "secret1" not in str(get_user(fake_redis, "alice"))
    assert verify_user(fake_redis, "alice", "secret1") == {"login": "alice", "display_name": "alice"}
    assert verify_user(fake_redis, "alice", "wrong") is None
    assert verify_user(fake_redis, "nobody", "secret1") is None


@pytest.mark.parametrize(
    "login,password",
    [("a", "secret1"), ("alice", "short")],
)
def test_create_user_rejects_short_credentials(fake_redis, login, password):
    with pytest.raises(ValueError):
        create_user(fake_redis, login, password)


def test_create_user_rejects_duplicate(fake_redis):
    create_user(fake_redis, "alice", "secret1")
    with pytest.raises(ValueError, match="already exists"):
        create_user(fake_redis, "alice", "secret2")


def test_session_lifecycle(fake_redis):
    sid = create_session(fake_redis, "alice")
    assert get_session(fake_redis, sid) == {"login": "alice"}
    assert get_session(fake_redis, "") is None
    delete_session(fake_redis, sid)
    assert get_session(fake_redis, sid) is None
    assert SESSION_PREFIX + sid not in fake_redis.kv


def test_get_current_user_from_cookie(fake_redis):
    create_user(fake_redis, "alice", "secret1")
    sid = create_session(fake_redis, "alice")
    app = Flask(__name__)
    with app.test_request_context(headers={"Cookie": f"{SESSION_COOKIE_NAME}={sid}"}):
        assert get_current_user(fake_redis) == {"id": "alice", "login": "alice", "display_name": "alice"}
    with app.test_request_context():
        assert get_current_user(fake_redis) is None
    with app.test_request_context(headers={"Cookie": f"{SESSION_COOKIE_NAME}=bogus"}):
        assert get_current_user(fake_redis) is None

"""HTTP service: chat streaming, chat deletion, votes, history, sessions. Storage in Redis."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Iterator, TypeVar

from flask import Flask, Response, jsonify, make_response, request, stream_with_context
from pydantic import ValidationError

from ollachat.config import get_config
from ollachat.core.errors import (
    AuthorizationError,
    BackendConnectionError,
    BadRequestError,
    ChatError,
    NotFoundError,
)
from ollachat.core.frames import ChatMessage, ModelSelection, Role
from ollachat.models.catalog import MODELS, default_model, find_model
from ollachat.models.gateway import TITLE_MAX_CHARS, ModelGateway
from ollachat.storage import chats
from ollachat.stream.producer import ProducerStream, StreamProducer
from ollachat.web.auth import (
    SESSION_COOKIE_NAME,
    SESSION_TTL,
    create_session,
    create_user,
    delete_session,
    get_current_user,
    verify_user,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MODEL_COOKIE_NAME = "model-id"

_config = get_config()

app = Flask(__name__)
app.secret_key = _config.server.secret_key
if _config.server.secret_key == "change-me-in-production":
    logger.warning("SECRET_KEY not set; using default. Set SECRET_KEY in production.")


def get_redis() -> Any:
    return chats.connect(_config.redis.url)


def get_gateway() -> ModelGateway:
    return ModelGateway.from_settings(_config.ollama)


def _require_user(redis_client: Any) -> dict[str, Any]:
    user = get_current_user(redis_client)
    if not user:
        raise AuthorizationError()
    return user


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise BadRequestError("JSON object body required")
    return body


def _drive(agen: AsyncIterator[T], loop: asyncio.AbstractEventLoop) -> Iterator[T]:
    """Run an async generator from a WSGI response on its own loop.

    Closing this generator (client disconnect) closes agen, which releases the
    upstream call; the loop is closed last.
    """
    try:
        while True:
            try:
                yield loop.run_until_complete(agen.__anext__())
            except StopAsyncIteration:
                return
    finally:
        try:
            loop.run_until_complete(agen.aclose())
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()


def _parse_model(raw: Any) -> ModelSelection:
    if isinstance(raw, str):
        raw = {"id": raw}
    if not isinstance(raw, dict) or not raw.get("id"):
        raise BadRequestError("model is required")
    if not raw.get("apiIdentifier"):
        known = find_model(raw["id"])
        if known is None:
            raise BadRequestError(f"unknown model {raw['id']!r}")
        return known.selection()
    try:
        return ModelSelection.model_validate(raw)
    except ValidationError as e:
        raise BadRequestError(f"invalid model: {e.error_count()} error(s)") from e


def _parse_messages(raw: Any) -> list[ChatMessage]:
    if not isinstance(raw, list) or not raw:
        raise BadRequestError("messages must be a non-empty list")
    try:
        return [ChatMessage.model_validate(m) for m in raw]
    except ValidationError as e:
        raise BadRequestError(f"invalid messages: {e.error_count()} error(s)") from e


@app.errorhandler(ChatError)
def _handle_chat_error(e: ChatError):
    if e.status_code >= 500:
        logger.error("request failed", extra={"path": request.path, "error": e.message})
        return Response(ChatError.public_message, status=e.status_code, mimetype="text/plain")
    return Response(e.message, status=e.status_code, mimetype="text/plain")


# ----- Chat -----
@app.route("/api/chat", methods=["POST"])
def chat_submit():
    body = _json_body()
    messages = _parse_messages(body.get("messages"))
    model = _parse_model(body.get("model"))
    logger.info(
        "chat request",
        extra={
            "chat_id": body.get("id"),
            "message_count": len(messages),
            "last_role": messages[-1].role.value,
            "model": model.api_identifier,
        },
    )
    loop = asyncio.new_event_loop()
    producer = StreamProducer(get_gateway())
    try:
        stream = loop.run_until_complete(producer.open(messages, model))
    except BackendConnectionError as e:
        loop.close()
        logger.error("could not open upstream stream", extra={"error": e.message})
        return jsonify({"error": BackendConnectionError.public_message}), 500
    except Exception:
        loop.close()
        logger.exception("unexpected failure opening upstream stream")
        return jsonify({"error": BackendConnectionError.public_message}), 500
    logger.info("stream initialized", extra={"message_id": stream.message_id})
    wire = _drive(stream.encoded(), loop)
    resp = Response(
        stream_with_context(wire),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
    resp.call_on_close(lambda: _release(wire, stream, loop))
    return resp


def _release(wire: Iterator[str], stream: ProducerStream, loop: asyncio.AbstractEventLoop) -> None:
    """Response closed. Covers the case where the server never started iterating the body."""
    wire.close()
    if loop.is_closed():
        return
    try:
        loop.run_until_complete(stream.aclose())
        loop.run_until_complete(loop.shutdown_asyncgens())
    except Exception:
        logger.exception("releasing unstarted stream failed", extra={"message_id": stream.message_id})
    finally:
        loop.close()
    logger.info("stream closed before it was sent", extra={"message_id": stream.message_id})


def _owned_chat(redis_client: Any, chat_id: str | None) -> chats.Chat:
    if not chat_id:
        raise NotFoundError()
    user = _require_user(redis_client)
    chat = chats.get_chat_by_id(redis_client, chat_id)
    if chat is None:
        raise NotFoundError()
    if chat.user_id != user["id"]:
        raise AuthorizationError()
    return chat


@app.route("/api/chat", methods=["DELETE"])
def chat_delete():
    chat_id = request.args.get("id")
    if not chat_id:
        raise NotFoundError()
    r = get_redis()
    try:
        chat = _owned_chat(r, chat_id)
        chats.delete_chat_by_id(r, chat.id)
    except ChatError:
        raise
    except Exception as e:
        logger.exception("delete chat failed")
        raise ChatError(str(e)) from e
    return Response("Chat deleted", status=200, mimetype="text/plain")


@app.route("/api/chat", methods=["GET"])
def chat_get():
    r = get_redis()
    chat = _owned_chat(r, request.args.get("id"))
    messages = chats.get_messages_by_chat_id(r, chat.id)
    return jsonify({"chat": chat.to_wire(), "messages": [m.to_wire() for m in messages]})


@app.route("/api/messages", methods=["POST"])
def messages_save():
    """Persist a finalized transcript. The first save creates the chat and its title."""
    body = _json_body()
    chat_id = body.get("chatId")
    if not chat_id:
        raise BadRequestError("chatId is required")
    messages = _parse_messages(body.get("messages"))
    r = get_redis()
    user = _require_user(r)
    chat = chats.get_chat_by_id(r, chat_id)
    if chat is None:
        first_user = next((m for m in messages if m.role is Role.USER), messages[0])
        chat = chats.save_chat(r, chat_id, user["id"], _title_for(first_user.content))
    elif chat.user_id != user["id"]:
        raise AuthorizationError()
    saved = chats.save_messages(r, chat.id, messages)
    return jsonify({"ok": True, "chatId": chat.id, "saved": saved})


def _title_for(content: str) -> str:
    try:
        title = asyncio.run(get_gateway().generate_title(content))
    except BackendConnectionError as e:
        logger.warning("title generation failed: %s", e.message)
        title = ""
    except Exception as e:
        # the transcript is saved either way
        logger.warning("title generation failed: %s", e, exc_info=True)
        title = ""
    return title or content.strip()[:TITLE_MAX_CHARS]


@app.route("/api/history", methods=["GET"])
def history():
    r = get_redis()
    user = _require_user(r)
    return jsonify([c.to_wire() for c in chats.get_chats_by_user_id(r, user["id"])])


# ----- Votes -----
@app.route("/api/vote", methods=["GET"])
def vote_list():
    chat_id = request.args.get("chatId")
    if not chat_id:
        return Response("chatId is required", status=400, mimetype="text/plain")
    try:
        votes = chats.get_votes_by_chat_id(get_redis(), chat_id)
    except Exception as e:
        # a missing vote list only hides thumbs in the UI
        logger.warning("fetching votes failed: %s", e)
        return jsonify([])
    return jsonify([v.to_wire() for v in votes])


@app.route("/api/vote", methods=["PATCH"])
def vote_update():
    body = request.get_json(silent=True) or {}
    chat_id = body.get("chatId")
    message_id = body.get("messageId")
    vote_type = body.get("type")
    if not chat_id or not message_id or not vote_type:
        return Response("messageId and type are required", status=400, mimetype="text/plain")
    if vote_type not in chats.VOTE_TYPES:
        return Response("type must be 'up' or 'down'", status=400, mimetype="text/plain")
    try:
        chats.vote_message(get_redis(), chat_id, message_id, vote_type)
    except Exception:
        logger.exception("voting failed")
        return Response("Internal server error", status=500, mimetype="text/plain")
    return Response("Message voted", status=200, mimetype="text/plain")


# ----- Models -----
@app.route("/api/models", methods=["GET"])
def models_list():
    selected = find_model(request.cookies.get(MODEL_COOKIE_NAME)) or default_model(
        _config.ollama.default_model
    )
    return jsonify({"models": [m.to_wire() for m in MODELS], "selected": selected.id})


@app.route("/api/model", methods=["POST"])
def model_select():
    model_id = _json_body().get("modelId")
    model = find_model(model_id)
    if model is None:
        raise BadRequestError(f"unknown model {model_id!r}")
    resp = make_response(jsonify({"ok": True, "selected": model.id}))
    resp.set_cookie(MODEL_COOKIE_NAME, model.id, samesite="Lax")
    return resp


# ----- Sessions -----
def _set_session_cookie(resp: Response, sid: str) -> None:
    resp.set_cookie(
        SESSION_COOKIE_NAME,
        sid,
        max_age=SESSION_TTL,
        httponly=True,
        samesite="Lax",
        secure=_config.server.secure_cookies,
    )


def _credentials() -> tuple[str, str]:
    body = _json_body()
    login = (body.get("login") or "").strip()
    password = body.get("password") or ""
    if not login or not password:
        raise BadRequestError("login and password are required")
    return login, password


@app.route("/api/register", methods=["POST"])
def register():
    login, password = _credentials()
    r = get_redis()
    try:
        user = create_user(r, login, password)
    except ValueError as e:
        raise BadRequestError(str(e)) from e
    resp = make_response(jsonify({"logged_in": True, **user}))
    _set_session_cookie(resp, create_session(r, login))
    return resp


@app.route("/api/login", methods=["POST"])
def login():
    login_name, password = _credentials()
    r = get_redis()
    user = verify_user(r, login_name, password)
    if not user:
        logger.info("login failed", extra={"login": login_name})
        raise AuthorizationError()
    resp = make_response(jsonify({"logged_in": True, **user}))
    _set_session_cookie(resp, create_session(r, login_name))
    return resp


@app.route("/api/logout", methods=["POST"])
def logout():
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if sid:
        delete_session(get_redis(), sid)
    resp = make_response(jsonify({"logged_in": False}))
    resp.delete_cookie(SESSION_COOKIE_NAME)
    return resp


@app.route("/api/session", methods=["GET"])
def api_session():
    user = get_current_user(get_redis())
    if user:
        return jsonify({"logged_in": True, "login": user["login"], "display_name": user["display_name"]})
    return jsonify({"logged_in": False})


@app.route("/api/health")
def api_health():
    return jsonify({"ok": True})

"""Entry point: `ollachat serve` runs the HTTP service, `ollachat chat PROMPT` streams one reply."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING

from ollachat.config import get_config
from ollachat.core.logging_config import setup_logging

if TYPE_CHECKING:
    from ollachat.config.loader import Config

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ollachat", description="Streaming chat in front of a local Ollama runtime."
    )
    sub = parser.add_subparsers(dest="command", required=True)
    serve = sub.add_parser("serve", help="run the HTTP service")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    chat = sub.add_parser("chat", help="stream one reply to stdout")
    chat.add_argument("prompt")
    chat.add_argument("--model", default=None, help="catalog model id (default from config)")
    chat.add_argument("--url", default="http://localhost:3000", help="chat service base URL")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    config = get_config()
    if args.command == "serve":
        setup_logging(config.logging.level, use_json=config.logging.json_output)
        serve(config, host=args.host, port=args.port)
        return
    # stdout carries the reply; keep log noise out of it
    setup_logging("WARNING", use_json=config.logging.json_output)
    sys.exit(asyncio.run(run_chat(args.url, args.prompt, args.model or config.ollama.default_model)))


def serve(config: Config, host: str | None = None, port: int | None = None) -> None:
    from ollachat.web.app import app

    host = host or config.server.host
    port = port or config.server.port
    logger.info("serving", extra={"host": host, "port": port})
    app.run(host=host, port=port, debug=False, threaded=True)


async def run_chat(url: str, prompt: str, model_id: str) -> int:
    """Exit code: 0 finalized, 1 failed, 2 bad arguments, 130 stopped with Ctrl-C."""
    from ollachat.client import ChatClient, ChatSession
    from ollachat.models.catalog import find_model
    from ollachat.stream.consumer import ConsumerState

    model = find_model(model_id)
    if model is None:
        print(f"unknown model: {model_id}", file=sys.stderr)
        return 2

    printed = 0

    def on_update(message) -> None:
        nonlocal printed
        sys.stdout.write(message.content[printed:])
        sys.stdout.flush()
        printed = len(message.content)

    def on_error(text: str) -> None:
        print(f"\n{text}", file=sys.stderr)

    loop = asyncio.get_running_loop()
    async with ChatClient(url) as client:
        session = ChatSession(client, model=model.selection(), persist=False)
        loop.add_signal_handler(signal.SIGINT, session.stop)
        try:
            consumer = await session.send(prompt, on_update=on_update, on_error=on_error)
        finally:
            loop.remove_signal_handler(signal.SIGINT)
    sys.stdout.write("\n")
    if consumer.state is ConsumerState.FINALIZED:
        return 0
    if consumer.state is ConsumerState.CANCELLED:
        return 130
    return 1


if __name__ == "__main__":
    main()

"""CLI entry point for the Studio Assistant.

This provides a simple terminal-based chat interface for testing and
development. For production, use the FastAPI server (studio_assistant/server.py).

Usage:
    python -m studio_assistant.main            # normal mode (quiet)
    python -m studio_assistant.main --debug    # debug mode (shows API calls)
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from studio_assistant.agent import create_studio_agent, describe_failure, stream_chat
from studio_assistant.config import ConfigurationError, load_mindbody_credentials
from studio_assistant.services.mindbody_client import MindbodySession
from studio_assistant.tools.mindbody import build_mindbody_tools

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("studio_assistant").setLevel(logging.DEBUG if debug else logging.INFO)


async def _chat_loop() -> None:
    agent = create_studio_agent()
    session = MindbodySession()
    registry = build_mindbody_tools(session.client(load_mindbody_credentials()))
    history: list[dict[str, str]] = []

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            if user_input.lower() == "new":
                history.clear()
                print("\n>> New conversation started.\n")
                continue

            print("\nAssistant: ", end="", flush=True)
            reply = ""
            try:
                async for event in stream_chat(agent, history, user_input, registry):
                    if event["type"] == "text":
                        print(event["text"], end="", flush=True)
                    elif event["type"] == "tool":
                        logger.debug("Tool %s(%s)", event["name"], event["args"])
                    elif event["type"] == "done":
                        reply = event["message"]
            except Exception as exc:
                logger.exception("Error processing message")
                failure = describe_failure(exc)
                print(f"\n{failure['error']}\n     {failure['hint']}\n")
                continue

            print("\n")
            history.append({"role": "user", "content": user_input})
            if reply.strip():
                history.append({"role": "assistant", "content": reply})
    finally:
        await session.aclose()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Studio Assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Studio Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    try:
        asyncio.run(_chat_loop())
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}")
    except KeyboardInterrupt:
        print("\n\nGoodbye!")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Smoke test for a running conversation service.

Opens a conversation of the given kind, sends one or more messages in order,
prints each reply to stdout, then closes the conversation.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Iterable

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from parley.client import ParleyClient
from parley.errors import ParleyHTTPError
from parley.kinds import known_kinds
from parley.utils import load_env


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parley smoke test")
    parser.add_argument("messages", nargs="*", default=["Reply only: ok"])
    parser.add_argument("--kind", choices=known_kinds(), default="grok")
    parser.add_argument("--url", default=None, help="Service URL (default: PARLEY_URL)")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(list(argv))


async def _run(args: argparse.Namespace) -> int:
    async with ParleyClient(args.url) as client:
        conversation_id = await client.open_conversation(args.kind)
        print(f"Opened {args.kind} conversation {conversation_id}")
        try:
            # Queue everything at once; replies must still come back in order.
            started = time.monotonic()
            tasks = [
                asyncio.create_task(client.send_message(conversation_id, message))
                for message in args.messages
            ]
            for message, task in zip(args.messages, tasks):
                reply = await task
                print(f"[{time.monotonic() - started:6.1f}s] > {message}")
                print(reply)
        finally:
            await client.close_conversation(conversation_id)
            print("Closed conversation")
    return 0


def main(argv: Iterable[str]) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    load_env()
    try:
        return asyncio.run(_run(args))
    except ParleyHTTPError as e:
        print(f"Service error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

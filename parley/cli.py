#!/usr/bin/env python3
"""
Command-line client for the conversation service.

Usage:
    parley start <kind>
    parley close <kind>
    parley converse <kind> <message>
    parley headless <on|off>
    parley list
    parley stop

The active conversation id per kind is remembered in a local state file
(PARLEY_STATE_FILE). If the service is not running, it is started in the
background and the request is retried once.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import subprocess
import sys
from typing import Awaitable, Callable, Iterable, TypeVar

import aiohttp

from parley.client import ParleyClient
from parley.errors import ParleyHTTPError
from parley.kinds import known_kinds
from parley.state import ConversationState
from parley.utils import get_state_path, load_env, parse_bool

T = TypeVar("T")


def spawn_service() -> None:
    """Start the service detached from this process."""
    subprocess.Popen(
        [sys.executable, "-m", "parley.service"],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )


def _spawn_wait_s() -> float:
    try:
        return float(os.getenv("PARLEY_SPAWN_WAIT_S", "2"))
    except ValueError:
        return 2.0


async def call_service(
    client: ParleyClient,
    call: Callable[[ParleyClient], Awaitable[T]],
    *,
    spawn: Callable[[], None] = spawn_service,
) -> T:
    try:
        return await call(client)
    except aiohttp.ClientConnectorError:
        print("Conversation service not running. Starting it now...")
        spawn()
        await asyncio.sleep(_spawn_wait_s())
        return await call(client)


async def start_conversation(client: ParleyClient, state: ConversationState, kind: str) -> int:
    if state.get(kind):
        print(f"{kind} conversation is already active")
        return 0
    conversation_id = await call_service(client, lambda c: c.open_conversation(kind))
    state.set(kind, conversation_id)
    print(f"{kind} conversation started with ID: {conversation_id}")
    return 0


async def close_conversation(client: ParleyClient, state: ConversationState, kind: str) -> int:
    conversation_id = state.get(kind)
    if not conversation_id:
        print(f"No active {kind} conversation")
        return 0
    try:
        await call_service(client, lambda c: c.close_conversation(conversation_id))
    except ParleyHTTPError as e:
        if e.status != 404:
            raise
        print(f"{kind} conversation was no longer open on the service")
    state.clear(kind)
    print(f"{kind} conversation closed")
    return 0


async def converse(
    client: ParleyClient, state: ConversationState, kind: str, message: str
) -> int:
    conversation_id = state.get(kind)
    if not conversation_id:
        print(f"No active {kind} conversation. Start one first with: parley start {kind}")
        return 0
    try:
        response = await call_service(client, lambda c: c.send_message(conversation_id, message))
    except ParleyHTTPError as e:
        if e.status != 404:
            raise
        state.clear(kind)
        print(f"{kind} conversation is gone (service restarted or reset). Start a new one.")
        return 1
    print(response)
    return 0


async def set_headless(client: ParleyClient, state: ConversationState, mode: bool) -> int:
    await call_service(client, lambda c: c.set_headless(mode))
    # Config changes close every conversation on the service.
    state.clear_all()
    print(f"Headless mode {'enabled' if mode else 'disabled'} successfully")
    return 0


async def list_conversations(client: ParleyClient, state: ConversationState) -> int:
    items = await call_service(client, lambda c: c.list_conversations())
    if not items:
        print("No open conversations")
        return 0
    for item in items:
        mark = "*" if state.get(str(item.get("kind"))) == item.get("conversationId") else " "
        print(
            f"{mark} {item.get('conversationId')}  {item.get('kind')}  "
            f"{item.get('status')}  pending={item.get('pending')}"
        )
    return 0


async def stop_service(client: ParleyClient, state: ConversationState) -> int:
    try:
        await client.stop_service()
    except aiohttp.ClientConnectorError:
        print("Conversation service is not running")
        return 0
    state.clear_all()
    print("Conversation service stopped")
    return 0


def _parse_args(argv: Iterable[str]) -> argparse.Namespace:
    kinds = known_kinds()
    parser = argparse.ArgumentParser(prog="parley", description="Conversation service client")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("start", help="Start a new conversation")
    p.add_argument("kind", choices=kinds)

    p = sub.add_parser("close", help="Close the active conversation")
    p.add_argument("kind", choices=kinds)

    p = sub.add_parser("converse", help="Send a message to the active conversation")
    p.add_argument("kind", choices=kinds)
    p.add_argument("message", nargs="+")

    p = sub.add_parser("headless", help="Configure driver headless mode")
    p.add_argument("mode", choices=["on", "off", "true", "false"])

    sub.add_parser("list", help="List open conversations")
    sub.add_parser("stop", help="Stop the conversation service")
    return parser.parse_args(list(argv))


async def run(args: argparse.Namespace, client: ParleyClient, state: ConversationState) -> int:
    if args.command == "start":
        return await start_conversation(client, state, args.kind)
    if args.command == "close":
        return await close_conversation(client, state, args.kind)
    if args.command == "converse":
        return await converse(client, state, args.kind, " ".join(args.message))
    if args.command == "headless":
        return await set_headless(client, state, parse_bool(args.mode))
    if args.command == "list":
        return await list_conversations(client, state)
    if args.command == "stop":
        return await stop_service(client, state)
    raise ValueError(f"Unknown command: {args.command}")


async def _main(args: argparse.Namespace) -> int:
    state = ConversationState.load(get_state_path())
    async with ParleyClient() as client:
        return await run(args, client, state)


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    load_env()
    try:
        return asyncio.run(_main(args))
    except ParleyHTTPError as e:
        print(f"Error: {e.detail or e}", file=sys.stderr)
        return 1
    except aiohttp.ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

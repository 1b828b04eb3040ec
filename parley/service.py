#!/usr/bin/env python3
"""
Parley - conversation orchestration service

Keeps long-lived conversations open against slow, incrementally-rendering
chat drivers and serializes the messages of each conversation.

Run:
    python -m parley.service

Drivers are plug-ins; point each kind at a factory, e.g.
    PARLEY_DRIVER_GROK=mypkg.grok:GrokDriver
"""

from __future__ import annotations

import asyncio
import logging

from parley.config import ConfigCoordinator, GlobalConfig
from parley.drivers.registry import DriverRegistry
from parley.manager import ConversationManager
from parley.server import create_app, start_server
from parley.utils import get_service_settings, load_env

log = logging.getLogger("service")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def serve() -> None:
    settings = get_service_settings()

    manager = ConversationManager(
        DriverRegistry(),
        config=GlobalConfig(headless=settings.headless),
    )
    coordinator = ConfigCoordinator(manager, grace_s=settings.shutdown_grace_s)

    runner = await start_server(
        create_app(manager, coordinator),
        host=settings.host,
        port=settings.port,
    )
    log.info(f"Conversation service listening on http://{settings.host}:{settings.port}")

    try:
        await coordinator.stopped.wait()
        log.info("Stopping conversation service")
    finally:
        if manager.accepting:
            manager.stop_accepting()
            await manager.reset_all()
        await runner.cleanup()


def main() -> None:
    load_env()
    _configure_logging(get_service_settings().log_level)
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        log.info("Shutting down...")


if __name__ == "__main__":
    main()

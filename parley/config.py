"""Global configuration and the reset coordinator.

Any configuration change invalidates every live conversation and driver:
the coordinator pauses intake, resets everything, then installs the new
version, so no message is ever processed against a stale configuration.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from parley.errors import ValidationError

if TYPE_CHECKING:
    from parley.manager import ConversationManager

log = logging.getLogger("config")


@dataclass(frozen=True)
class GlobalConfig:
    headless: bool = False
    version: int = 0

    def to_dict(self) -> dict[str, object]:
        return {"headless": self.headless, "version": self.version}


_MUTABLE_FIELDS = {"headless": bool}


def validate_patch(patch: object) -> dict[str, object]:
    if not isinstance(patch, dict) or not patch:
        raise ValidationError("Config patch must be a non-empty object")

    clean: dict[str, object] = {}
    for key, value in patch.items():
        expected = _MUTABLE_FIELDS.get(key)
        if expected is None:
            raise ValidationError(f"Unknown config field: {key}")
        if not isinstance(value, expected):
            raise ValidationError(f"Invalid {key} value")
        clean[key] = value
    return clean


class ConfigCoordinator:
    """Serializes config transitions and shutdown against the manager."""

    def __init__(self, manager: ConversationManager, *, grace_s: float = 0.5):
        self.manager = manager
        self.grace_s = grace_s
        self.stopped = asyncio.Event()
        self.stopping = False
        self._lock = asyncio.Lock()

    @property
    def config(self) -> GlobalConfig:
        return self.manager.config

    async def update_config(self, patch: object) -> GlobalConfig:
        changes = validate_patch(patch)

        async with self._lock:
            async with self.manager.paused():
                await self.manager.reset_all()
                current = self.manager.config
                new = replace(current, **changes, version=current.version + 1)
                self.manager.install_config(new)
        return new

    async def shutdown(self) -> None:
        """Reset everything and signal the service to exit after a grace delay."""
        async with self._lock:
            if self.stopping:
                return
            self.stopping = True
            log.info("Shutdown requested")
            self.manager.stop_accepting()
            await self.manager.reset_all()

        loop = asyncio.get_running_loop()
        loop.call_later(self.grace_s, self.stopped.set)

"""Ports (interfaces) for driver implementations.

A driver hosts an interactive, incrementally-rendering chat agent. The rest
of the system (manager, runtime) depends on these contracts rather than on a
concrete automation backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


# Opaque per-conversation handle (a browser page, a remote session id, ...).
SessionHandle = object


@dataclass(frozen=True)
class PollState:
    """One observation of the rendered reply."""

    text: str = ""
    completed_count: int = 0


class Driver(Protocol):
    """Shared, expensive resource backing every conversation of one kind."""

    async def start(self) -> None: ...

    async def open_session(self) -> SessionHandle: ...

    async def send(self, session: SessionHandle, message: str) -> PollState: ...

    async def poll(self, session: SessionHandle) -> PollState: ...

    async def close_session(self, session: SessionHandle) -> None: ...

    async def teardown(self) -> None: ...


class DriverFactoryPort(Protocol):
    async def create(self, kind: str, *, headless: bool) -> Driver: ...

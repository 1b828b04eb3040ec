"""Scripted in-memory driver used across the test suite."""

from __future__ import annotations

import asyncio
from collections import defaultdict

from parley.drivers.ports import PollState
from parley.errors import DriverInitError


class FakeDriver:
    """Echoes each message back as the reply.

    `gate` (when set) blocks every send until released, `fail_on` makes sends
    of those messages raise, and per-session concurrency is tracked so tests
    can assert turns never overlap. `open_gate` and `teardown_gate` hold
    session opening and teardown the same way.
    """

    def __init__(self, kind: str = "grok", *, headless: bool = False):
        self.kind = kind
        self.headless = headless
        self.started = False
        self.torn_down = False
        self.fail_on: set[str] = set()
        self.fail_close = False
        self.fail_teardown = False
        self.fail_open = False
        self.gate: asyncio.Event | None = None
        self.open_gate: asyncio.Event | None = None
        self.teardown_gate: asyncio.Event | None = None

        self.opened: list[str] = []
        self.closed: list[str] = []
        self.sent: list[tuple[str, str]] = []
        self.polls = 0

        self._text: dict[str, str] = defaultdict(str)
        self._completed: dict[str, int] = defaultdict(int)
        self._active: dict[str, int] = defaultdict(int)
        self.max_active = 0

    async def start(self) -> None:
        self.started = True

    async def open_session(self) -> str:
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.fail_open:
            raise RuntimeError("page failed to load")
        session = f"{self.kind}-{len(self.opened) + 1}"
        self.opened.append(session)
        return session

    async def send(self, session: str, message: str) -> PollState:
        self._active[session] += 1
        self.max_active = max(self.max_active, self._active[session])
        try:
            self.sent.append((session, message))
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0.001)
            if message in self.fail_on:
                raise RuntimeError(f"send failed: {message}")
            self._text[session] = f"echo: {message}"
            self._completed[session] += 1
            return PollState(self._text[session], self._completed[session])
        finally:
            self._active[session] -= 1

    async def poll(self, session: str) -> PollState:
        self.polls += 1
        return PollState(self._text[session], self._completed[session])

    async def close_session(self, session: str) -> None:
        if self.fail_close:
            raise RuntimeError("page close failed")
        self.closed.append(session)

    async def teardown(self) -> None:
        self.torn_down = True
        if self.teardown_gate is not None:
            await self.teardown_gate.wait()
        if self.fail_teardown:
            raise RuntimeError("browser close failed")


class FakeDriverFactory:
    def __init__(self):
        self.created: list[FakeDriver] = []
        self.fail = False
        # Per-kind events that hold `create` until set.
        self.gates: dict[str, asyncio.Event] = {}
        self.requested: list[str] = []
        # Applied to each driver right after creation.
        self.configure = None

    async def create(self, kind: str, *, headless: bool) -> FakeDriver:
        self.requested.append(kind)
        if kind in self.gates:
            await self.gates[kind].wait()
        if self.fail:
            raise DriverInitError(f"Failed to launch {kind} browser")
        driver = FakeDriver(kind, headless=headless)
        if self.configure:
            self.configure(driver)
        await driver.start()
        self.created.append(driver)
        return driver

    def latest(self, kind: str) -> FakeDriver:
        return [d for d in self.created if d.kind == kind][-1]


async def wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)

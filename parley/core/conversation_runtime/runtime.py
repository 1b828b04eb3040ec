"""ConversationRuntime.

This is the single place that owns, for one conversation:
- serialization (ordered message queue, one turn in flight)
- deferred resolution of each caller's future
- cancellation of queued work when the conversation closes

It depends only on the Driver port, never on a concrete backend.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field

from parley.drivers.ports import Driver, PollState, SessionHandle
from parley.drivers.stabilize import (
    CompletionMode,
    StabilizationPolicy,
    await_stable_response,
)
from parley.errors import (
    ConversationCancelledError,
    DriverSendError,
    NotFoundError,
    ParleyError,
)

log = logging.getLogger("runtime")


@dataclass
class _QueueEntry:
    message: str
    done: asyncio.Future[str]
    enqueued_at: float = field(default_factory=time.monotonic)


class ConversationRuntime:
    def __init__(
        self,
        *,
        conversation_id: str,
        driver: Driver,
        session: SessionHandle,
        policy: StabilizationPolicy,
    ):
        self.conversation_id = conversation_id
        self.driver = driver
        self.session = session
        self.policy = policy

        self._pending: deque[_QueueEntry] = deque()
        self._task: asyncio.Task | None = None

        self.processing = False
        self.closing = False

    def pending_count(self) -> int:
        return len(self._pending)

    def enqueue(self, message: str) -> asyncio.Future[str]:
        """Queue a message; the returned future resolves with the reply."""
        if self.closing:
            raise NotFoundError(self.conversation_id)

        done: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending.append(_QueueEntry(message=message, done=done))
        self.ensure_draining()
        return done

    def ensure_draining(self) -> None:
        if self._task and not self._task.done():
            return
        if self.processing or not self._pending:
            return
        self._task = asyncio.create_task(self._drain())

    def cancel_queued(self) -> int:
        """Reject queued entries; the in-flight one (if any) is left alone."""
        dropped = 0
        while self._pending:
            item = self._pending.popleft()
            if not item.done.done():
                item.done.set_exception(
                    ConversationCancelledError(
                        f"Conversation {self.conversation_id} closed before the message was sent"
                    )
                )
                dropped += 1
        return dropped

    async def close(self) -> int:
        """Stop accepting work, cancel the queue, wait for the in-flight turn."""
        self.closing = True
        dropped = self.cancel_queued()
        if dropped:
            log.info(f"[{self.conversation_id}] Cancelled {dropped} queued message(s)")
        task = self._task
        if task and not task.done():
            await asyncio.shield(task)
        return dropped

    async def _drain(self) -> None:
        while not self.processing and self._pending:
            self.processing = True
            entry = self._pending.popleft()
            try:
                if entry.done.done():
                    # Caller gave up before its turn came.
                    continue
                waited = time.monotonic() - entry.enqueued_at
                log.debug(f"[{self.conversation_id}] Turn start (queued {waited:.2f}s)")
                try:
                    reply = await self._run_turn(entry.message)
                except asyncio.CancelledError:
                    if not entry.done.done():
                        entry.done.cancel()
                    raise
                except ParleyError as e:
                    log.warning(f"[{self.conversation_id}] Turn failed: {e}")
                    if not entry.done.done():
                        entry.done.set_exception(e)
                except Exception as e:
                    log.exception(f"[{self.conversation_id}] Driver error during turn")
                    if not entry.done.done():
                        err = DriverSendError(f"Failed to send message: {e}")
                        err.__cause__ = e
                        entry.done.set_exception(err)
                else:
                    if not entry.done.done():
                        entry.done.set_result(reply)
            finally:
                self.processing = False

    async def _run_turn(self, message: str) -> str:
        baseline = 0
        if self.policy.mode is CompletionMode.COUNT:
            baseline = (await self.driver.poll(self.session)).completed_count

        initial = await self.driver.send(self.session, message)
        if not isinstance(initial, PollState):
            initial = None

        return await await_stable_response(
            lambda: self.driver.poll(self.session),
            self.policy,
            initial=initial,
            baseline_count=baseline,
        )

"""Response stabilization.

Drivers render replies incrementally and never say when they are done. The
helpers here infer completion from repeated observations of the output:

- count mode: wait until the driver reports more completed markers than the
  baseline taken before sending (or any text shows up), settle briefly, then
  take one final reading;
- stability mode: wait until the same non-empty text has been read
  `stable_polls` times in a row after its first appearance.

Running out of time is not an error: the best text seen so far is returned.

`stabilize()` is the pure form over a sequence of readings, used for
deterministic tests. `await_stable_response()` is the live polling loop. Both
feed the same tracker, so a given sequence of readings yields the same text.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from itertools import islice
from typing import Awaitable, Callable, Iterable

from parley.drivers.ports import PollState

log = logging.getLogger("stabilize")


class CompletionMode(str, Enum):
    COUNT = "count"
    STABILITY = "stability"


@dataclass(frozen=True)
class StabilizationPolicy:
    mode: CompletionMode = CompletionMode.STABILITY
    timeout_s: float = 20.0
    interval_s: float = 1.0
    stable_polls: int = 3
    settle_s: float = 1.0
    fallback_text: str = ""

    def __post_init__(self) -> None:
        if self.timeout_s <= 0 or self.interval_s <= 0:
            raise ValueError("timeout_s and interval_s must be positive")
        if self.stable_polls < 1:
            raise ValueError("stable_polls must be at least 1")
        if self.settle_s < 0:
            raise ValueError("settle_s must not be negative")

    @property
    def max_polls(self) -> int:
        """Number of readings that fit in the time budget."""
        return max(1, math.ceil(self.timeout_s / self.interval_s))


class _Tracker:
    """Accumulates readings and decides when the reply has settled."""

    def __init__(self, policy: StabilizationPolicy, baseline_count: int):
        self.policy = policy
        self.baseline_count = baseline_count
        self.best = ""
        self.readings = 0
        self._previous = ""
        self._unchanged = 0

    def observe(self, state: PollState) -> bool:
        self.readings += 1
        text = state.text or ""
        if text.strip():
            self.best = text

        if self.policy.mode is CompletionMode.COUNT:
            return state.completed_count > self.baseline_count or bool(text.strip())

        if text.strip() and text == self._previous:
            self._unchanged += 1
            return self._unchanged >= self.policy.stable_polls

        self._unchanged = 0
        self._previous = text
        return False

    def settle(self, state: PollState) -> None:
        text = state.text or ""
        if text.strip():
            self.best = text

    def result(self) -> str:
        return self.best or self.policy.fallback_text


def _coerce(reading: PollState | str) -> PollState:
    if isinstance(reading, PollState):
        return reading
    return PollState(text=str(reading))


def stabilize(
    readings: Iterable[PollState | str],
    policy: StabilizationPolicy,
    *,
    baseline_count: int = 0,
) -> str:
    """Resolve a reply from a sequence of readings.

    The first element is the reading returned by the send itself. At most
    `policy.max_polls` readings are examined; in count mode the reading that
    follows the completion signal is the final (post-settle) one.
    """
    tracker = _Tracker(policy, baseline_count)
    stream = iter(readings)
    for reading in islice(stream, policy.max_polls):
        if tracker.observe(_coerce(reading)):
            if policy.mode is CompletionMode.COUNT:
                final = next(stream, None)
                if final is not None:
                    tracker.settle(_coerce(final))
            return tracker.result()
    return tracker.result()


async def await_stable_response(
    poll: Callable[[], Awaitable[PollState]],
    policy: StabilizationPolicy,
    *,
    initial: PollState | None = None,
    baseline_count: int = 0,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Poll the driver until its output settles or the budget runs out."""
    tracker = _Tracker(policy, baseline_count)
    deadline = clock() + policy.timeout_s
    state = initial if initial is not None else await poll()

    while True:
        if tracker.observe(state):
            if policy.mode is CompletionMode.COUNT:
                await sleep(policy.settle_s)
                tracker.settle(await poll())
            log.debug(f"Output settled after {tracker.readings} reading(s)")
            return tracker.result()

        if tracker.readings >= policy.max_polls or clock() >= deadline:
            break

        await sleep(policy.interval_s)
        state = await poll()

    log.info(
        f"Output did not settle within {policy.timeout_s:g}s "
        f"({tracker.readings} reading(s)); returning best effort"
    )
    return tracker.result()

"""Kind registry: the backing services a conversation can target."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass

from parley.drivers.stabilize import CompletionMode, StabilizationPolicy

log = logging.getLogger("kinds")


@dataclass(frozen=True)
class KindSpec:
    name: str
    policy: StabilizationPolicy
    # Default `module:attr` driver factory; PARLEY_DRIVER_<KIND> overrides it.
    driver: str | None = None


KIND_SPECS = {
    "gemini": KindSpec(
        name="gemini",
        policy=StabilizationPolicy(
            mode=CompletionMode.COUNT,
            timeout_s=120.0,
            interval_s=0.5,
            settle_s=1.0,
        ),
    ),
    "grok": KindSpec(
        name="grok",
        policy=StabilizationPolicy(
            mode=CompletionMode.STABILITY,
            timeout_s=20.0,
            interval_s=1.0,
            stable_polls=3,
            fallback_text="No response received",
        ),
    ),
}


def known_kinds() -> list[str]:
    return sorted(KIND_SPECS)


def normalize_kind(kind: object) -> str | None:
    if not isinstance(kind, str):
        return None
    name = kind.strip().lower()
    return name if name in KIND_SPECS else None


def get_kind_spec(kind: str) -> KindSpec | None:
    return KIND_SPECS.get(kind)


def _env_number(name: str, default: float, *, allow_zero: bool = False) -> float:
    """Read a timing override; unusable values fall back to `default`."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning(f"Ignoring {name}={raw!r}: not a number")
        return default
    if not math.isfinite(value) or value < 0 or (value == 0 and not allow_zero):
        log.warning(f"Ignoring {name}={raw!r}: out of range")
        return default
    return value


def policy_for_kind(kind: str) -> StabilizationPolicy:
    """Kind default policy with PARLEY_<KIND>_* timing overrides applied."""
    spec = KIND_SPECS[kind]
    base = spec.policy
    prefix = f"PARLEY_{kind.upper()}_"
    stable_polls = int(_env_number(prefix + "STABLE_POLLS", base.stable_polls))
    if stable_polls < 1:
        log.warning(f"Ignoring {prefix}STABLE_POLLS: must be at least 1")
        stable_polls = base.stable_polls
    return StabilizationPolicy(
        mode=base.mode,
        timeout_s=_env_number(prefix + "TIMEOUT_S", base.timeout_s),
        interval_s=_env_number(prefix + "INTERVAL_S", base.interval_s),
        stable_polls=stable_polls,
        settle_s=_env_number(prefix + "SETTLE_S", base.settle_s, allow_zero=True),
        fallback_text=base.fallback_text,
    )


def driver_target_for_kind(kind: str) -> str | None:
    env = (os.getenv(f"PARLEY_DRIVER_{kind.upper()}") or "").strip()
    if env:
        return env
    spec = KIND_SPECS.get(kind)
    return spec.driver if spec else None

"""Driver ports, registry and response stabilization."""

from parley.drivers.ports import Driver, DriverFactoryPort, PollState, SessionHandle
from parley.drivers.registry import DriverRegistry, load_factory
from parley.drivers.stabilize import (
    CompletionMode,
    StabilizationPolicy,
    await_stable_response,
    stabilize,
)

__all__ = [
    "CompletionMode",
    "Driver",
    "DriverFactoryPort",
    "DriverRegistry",
    "PollState",
    "SessionHandle",
    "StabilizationPolicy",
    "await_stable_response",
    "load_factory",
    "stabilize",
]

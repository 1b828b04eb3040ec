"""Driver registry.

Maps a kind to its concrete driver implementation. Drivers are plug-ins
named by a `package.module:attr` target, imported lazily the first time a
conversation of that kind is opened. Callers depend on the `Driver` port.
"""

from __future__ import annotations

import importlib
import logging
from typing import Callable

from parley.drivers.ports import Driver
from parley.errors import DriverInitError
from parley import kinds

log = logging.getLogger("drivers")


def load_factory(target: str) -> Callable[..., Driver]:
    module_name, sep, attr = (target or "").partition(":")
    if not sep or not module_name or not attr:
        raise DriverInitError(f"Invalid driver target {target!r} (expected 'module:attr')")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise DriverInitError(f"Cannot import driver module {module_name!r}: {e}") from e

    factory: object = module
    for part in attr.split("."):
        factory = getattr(factory, part, None)
        if factory is None:
            raise DriverInitError(f"Driver target {target!r} not found")
    if not callable(factory):
        raise DriverInitError(f"Driver target {target!r} is not callable")
    return factory


class DriverRegistry:
    """Default `DriverFactoryPort`: resolve, construct and start a driver."""

    def __init__(self, targets: dict[str, str] | None = None):
        self._targets = dict(targets or {})

    def target_for(self, kind: str) -> str | None:
        return self._targets.get(kind) or kinds.driver_target_for_kind(kind)

    async def create(self, kind: str, *, headless: bool) -> Driver:
        target = self.target_for(kind)
        if not target:
            raise DriverInitError(
                f"No driver configured for kind {kind!r} "
                f"(set PARLEY_DRIVER_{kind.upper()}=module:attr)"
            )

        factory = load_factory(target)
        try:
            driver = factory(kind=kind, headless=headless)
            await driver.start()
        except DriverInitError:
            raise
        except Exception as e:
            raise DriverInitError(f"Failed to start {kind} driver: {e}") from e

        log.info(f"Started {kind} driver ({target}, headless={headless})")
        return driver

"""Conversation manager - owns conversations and the drivers behind them."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from parley.config import GlobalConfig
from parley.core.conversation_runtime import (
    Conversation,
    ConversationInfo,
    ConversationRuntime,
    ConversationStatus,
)
from parley.drivers.ports import Driver, DriverFactoryPort
from parley.errors import (
    DriverError,
    DriverInitError,
    NotFoundError,
    ParleyError,
    ServiceUnavailableError,
    ValidationError,
)
from parley.kinds import known_kinds, normalize_kind, policy_for_kind

log = logging.getLogger("manager")


@dataclass
class _DriverSlot:
    """A driver instance plus the conversations (and opens) holding it."""

    kind: str
    driver: Driver
    config_version: int
    refs: set[str] = field(default_factory=set)


class ConversationManager:
    """Registry of conversations with ref-counted drivers, one per kind.

    Concurrent conversations of the same kind share one driver. The
    per-conversation queue does not serialize access to that shared driver
    across conversations; whether a backend copes with that is up to the
    driver.
    """

    def __init__(self, driver_factory: DriverFactoryPort, config: GlobalConfig | None = None):
        self._driver_factory = driver_factory
        self.config = config or GlobalConfig()

        self.conversations: dict[str, Conversation] = {}
        self._drivers: dict[str, _DriverSlot] = {}
        self._kind_locks: dict[str, asyncio.Lock] = {}

        self._ready = asyncio.Event()
        self._ready.set()
        self.accepting = True

    # -----------------
    # Gate
    # -----------------

    async def _wait_ready(self) -> None:
        if not self.accepting:
            raise ServiceUnavailableError("Service is shutting down")
        await self._ready.wait()
        if not self.accepting:
            raise ServiceUnavailableError("Service is shutting down")

    @asynccontextmanager
    async def paused(self) -> AsyncIterator[None]:
        """Hold new opens/messages until the block exits."""
        self._ready.clear()
        try:
            yield
        finally:
            if self.accepting:
                self._ready.set()

    def stop_accepting(self) -> None:
        self.accepting = False
        # Waiters wake up and see accepting=False.
        self._ready.set()

    def install_config(self, config: GlobalConfig) -> None:
        if self.conversations or self._drivers:
            raise RuntimeError("Cannot install config while conversations or drivers are live")
        self.config = config
        log.info(f"Installed config v{config.version} (headless={config.headless})")

    # -----------------
    # Drivers
    # -----------------

    def driver_count(self) -> int:
        return len(self._drivers)

    def _interrupted(self, version: int) -> bool:
        """True once a transition or shutdown has begun since `version` was read."""
        return (
            self.config.version != version or not self._ready.is_set() or not self.accepting
        )

    async def _acquire_driver(self, kind: str, ref: str, version: int) -> _DriverSlot:
        lock = self._kind_locks.setdefault(kind, asyncio.Lock())
        async with lock:
            if self._interrupted(version):
                raise DriverInitError("Configuration changed while opening the conversation")

            slot = self._drivers.get(kind)
            if slot and slot.config_version != version:
                # Stale driver left behind by a transition; drop it.
                await self._teardown_slot(slot)
                slot = None

            if slot is None:
                try:
                    driver = await self._driver_factory.create(
                        kind, headless=self.config.headless
                    )
                except DriverInitError:
                    raise
                except Exception as e:
                    raise DriverInitError(f"Failed to start {kind} driver: {e}") from e

                if self._interrupted(version):
                    # A reset began while the driver was launching.
                    log.warning(f"Config changed while starting {kind} driver; discarding it")
                    try:
                        await driver.teardown()
                    except Exception:
                        log.exception(f"Failed to tear down discarded {kind} driver")
                    raise DriverInitError("Configuration changed while opening the conversation")

                slot = _DriverSlot(kind=kind, driver=driver, config_version=version)
                self._drivers[kind] = slot

            slot.refs.add(ref)
            return slot

    async def _release_driver(self, slot: _DriverSlot, ref: str) -> None:
        slot.refs.discard(ref)
        if slot.refs or self._drivers.get(slot.kind) is not slot:
            return
        await self._teardown_slot(slot)

    async def _teardown_slot(self, slot: _DriverSlot) -> None:
        if self._drivers.get(slot.kind) is slot:
            del self._drivers[slot.kind]
        log.info(f"Tearing down {slot.kind} driver")
        await slot.driver.teardown()

    # -----------------
    # Conversations
    # -----------------

    async def open_conversation(self, kind: object) -> str:
        name = normalize_kind(kind)
        if name is None:
            known = " or ".join(known_kinds())
            raise ValidationError(f"Valid kind ({known}) is required")

        policy = policy_for_kind(name)
        await self._wait_ready()

        conversation_id = uuid.uuid4().hex
        version = self.config.version
        slot = await self._acquire_driver(name, conversation_id, version)

        try:
            session = await slot.driver.open_session()
        except Exception as e:
            await self._release_driver(slot, conversation_id)
            if isinstance(e, DriverInitError):
                raise
            raise DriverInitError(f"Failed to open {name} session: {e}") from e

        if self._interrupted(version):
            log.warning(f"Config changed while opening {name} conversation; discarding it")
            try:
                await slot.driver.close_session(session)
            except Exception:
                log.exception(f"Failed to close discarded {name} session")
            await self._release_driver(slot, conversation_id)
            raise DriverInitError("Configuration changed while opening the conversation")

        runtime = ConversationRuntime(
            conversation_id=conversation_id,
            driver=slot.driver,
            session=session,
            policy=policy,
        )
        self.conversations[conversation_id] = Conversation(
            id=conversation_id,
            kind=name,
            session=session,
            config_version=version,
            runtime=runtime,
        )
        log.info(f"Opened {name} conversation {conversation_id}")
        return conversation_id

    def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if not conversation or conversation.status is not ConversationStatus.OPEN:
            raise NotFoundError(conversation_id)
        return conversation

    async def send_message(self, conversation_id: str, message: str) -> str:
        """Queue a message on a conversation and wait for its settled reply."""
        await self._wait_ready()
        conversation = self.get_conversation(conversation_id)
        if conversation.config_version != self.config.version:
            raise NotFoundError(conversation_id)
        return await conversation.runtime.enqueue(message)

    async def close_conversation(self, conversation_id: str) -> None:
        conversation = self.get_conversation(conversation_id)
        conversation.status = ConversationStatus.CLOSING

        slot = self._drivers.get(conversation.kind)
        try:
            await conversation.runtime.close()
            await self._close_session(conversation, slot)
        finally:
            conversation.status = ConversationStatus.CLOSED
            self.conversations.pop(conversation_id, None)
            if slot is not None and conversation_id in slot.refs:
                await self._release_driver(slot, conversation_id)
            log.info(f"Closed {conversation.kind} conversation {conversation_id}")

    async def _close_session(self, conversation: Conversation, slot: _DriverSlot | None) -> None:
        if slot is None or conversation.id not in slot.refs:
            # Driver already gone; the session went with it.
            return
        try:
            await slot.driver.close_session(conversation.session)
        except Exception as e:
            raise DriverError(f"Failed to close {conversation.kind} session: {e}") from e

    async def reset_all(self) -> None:
        """Close every conversation and tear down every driver (best-effort)."""
        for conversation_id in list(self.conversations):
            try:
                await self.close_conversation(conversation_id)
            except NotFoundError:
                continue
            except ParleyError as e:
                log.warning(f"Reset: {e}")
            except Exception:
                log.exception(f"Reset: failed to close conversation {conversation_id}")

        for slot in list(self._drivers.values()):
            if self._drivers.get(slot.kind) is not slot:
                continue
            try:
                await self._teardown_slot(slot)
            except Exception:
                log.exception(f"Reset: failed to tear down {slot.kind} driver")

        log.info("All conversations and drivers reset")

    def list_conversations(self) -> list[ConversationInfo]:
        return [
            ConversationInfo(
                id=c.id,
                kind=c.kind,
                status=c.status.value,
                pending=c.runtime.pending_count(),
                processing=c.runtime.processing,
            )
            for c in self.conversations.values()
        ]

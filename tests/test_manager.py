"""Tests for ConversationManager - registry and driver lifecycle."""

import asyncio

import pytest

from parley.errors import (
    ConversationCancelledError,
    DriverError,
    DriverInitError,
    NotFoundError,
    ValidationError,
)
from tests.fakes import wait_for


# =============================================================================
# Opening
# =============================================================================


class TestOpenConversation:
    @pytest.mark.asyncio
    async def test_rejects_unknown_kind(self, manager, driver_factory):
        with pytest.raises(ValidationError):
            await manager.open_conversation("bard")
        with pytest.raises(ValidationError):
            await manager.open_conversation(None)

        assert driver_factory.created == []

    @pytest.mark.asyncio
    async def test_kind_is_case_insensitive(self, manager):
        conversation_id = await manager.open_conversation(" Grok ")

        assert manager.get_conversation(conversation_id).kind == "grok"

    @pytest.mark.asyncio
    async def test_same_kind_shares_one_driver(self, manager, driver_factory):
        a = await manager.open_conversation("grok")
        b = await manager.open_conversation("grok")

        assert a != b
        assert len(driver_factory.created) == 1
        driver = driver_factory.latest("grok")
        assert driver.opened == ["grok-1", "grok-2"]

    @pytest.mark.asyncio
    async def test_concurrent_opens_create_one_driver(self, manager, driver_factory):
        ids = await asyncio.gather(*(manager.open_conversation("gemini") for _ in range(4)))

        assert len(set(ids)) == 4
        assert len(driver_factory.created) == 1
        assert manager.driver_count() == 1

    @pytest.mark.asyncio
    async def test_one_driver_per_kind(self, manager, driver_factory):
        await manager.open_conversation("grok")
        await manager.open_conversation("gemini")

        assert sorted(d.kind for d in driver_factory.created) == ["gemini", "grok"]
        assert manager.driver_count() == 2

    @pytest.mark.asyncio
    async def test_driver_init_failure(self, manager, driver_factory):
        driver_factory.fail = True

        with pytest.raises(DriverInitError):
            await manager.open_conversation("grok")

        assert manager.conversations == {}
        assert manager.driver_count() == 0

    @pytest.mark.asyncio
    async def test_session_failure_releases_unused_driver(self, manager, driver_factory):
        driver_factory.configure = lambda d: setattr(d, "fail_open", True)

        with pytest.raises(DriverInitError):
            await manager.open_conversation("grok")

        assert driver_factory.latest("grok").torn_down is True
        assert manager.driver_count() == 0

    @pytest.mark.asyncio
    async def test_bad_timing_env_does_not_leak_driver(
        self, manager, driver_factory, monkeypatch
    ):
        monkeypatch.setenv("PARLEY_GROK_STABLE_POLLS", "0")
        monkeypatch.setenv("PARLEY_GROK_INTERVAL_S", "0")

        conversation_id = await manager.open_conversation("grok")
        policy = manager.get_conversation(conversation_id).runtime.policy
        assert policy.stable_polls == 3
        assert policy.interval_s == 1.0

        await manager.close_conversation(conversation_id)
        driver = driver_factory.latest("grok")
        assert driver.closed == ["grok-1"]
        assert driver.torn_down is True
        assert manager.driver_count() == 0

    @pytest.mark.asyncio
    async def test_session_failure_keeps_shared_driver(self, manager, driver_factory):
        await manager.open_conversation("grok")
        driver = driver_factory.latest("grok")
        driver.fail_open = True

        with pytest.raises(DriverInitError):
            await manager.open_conversation("grok")

        assert driver.torn_down is False
        assert manager.driver_count() == 1


# =============================================================================
# Closing
# =============================================================================


class TestCloseConversation:
    @pytest.mark.asyncio
    async def test_unknown_id(self, manager):
        with pytest.raises(NotFoundError):
            await manager.close_conversation("nope")

    @pytest.mark.asyncio
    async def test_close_twice(self, manager):
        conversation_id = await manager.open_conversation("grok")
        await manager.close_conversation(conversation_id)

        with pytest.raises(NotFoundError):
            await manager.close_conversation(conversation_id)

    @pytest.mark.asyncio
    async def test_last_close_tears_down_driver(self, manager, driver_factory):
        a = await manager.open_conversation("grok")
        b = await manager.open_conversation("grok")
        driver = driver_factory.latest("grok")

        await manager.close_conversation(a)
        assert driver.torn_down is False
        assert driver.closed == ["grok-1"]

        await manager.close_conversation(b)
        assert driver.torn_down is True
        assert manager.driver_count() == 0

    @pytest.mark.asyncio
    async def test_reopen_after_teardown_creates_new_driver(self, manager, driver_factory):
        a = await manager.open_conversation("grok")
        await manager.close_conversation(a)
        await manager.open_conversation("grok")

        assert len(driver_factory.created) == 2

    @pytest.mark.asyncio
    async def test_session_close_failure_still_cleans_up(self, manager, driver_factory):
        conversation_id = await manager.open_conversation("grok")
        driver = driver_factory.latest("grok")
        driver.fail_close = True

        with pytest.raises(DriverError):
            await manager.close_conversation(conversation_id)

        assert manager.conversations == {}
        assert driver.torn_down is True

    @pytest.mark.asyncio
    async def test_close_cancels_queued_messages(self, manager, driver_factory):
        conversation_id = await manager.open_conversation("grok")
        driver = driver_factory.latest("grok")
        driver.gate = asyncio.Event()

        first = asyncio.create_task(manager.send_message(conversation_id, "first"))
        await wait_for(lambda: driver.sent)
        queued = [
            asyncio.create_task(manager.send_message(conversation_id, f"q{i}"))
            for i in range(3)
        ]
        await wait_for(
            lambda: manager.get_conversation(conversation_id).runtime.pending_count() == 3
        )

        closing = asyncio.create_task(manager.close_conversation(conversation_id))
        results = await asyncio.gather(*queued, return_exceptions=True)
        assert all(isinstance(r, ConversationCancelledError) for r in results)

        driver.gate.set()
        await closing
        assert await first == "echo: first"
        assert [m for _, m in driver.sent] == ["first"]


# =============================================================================
# Messages
# =============================================================================


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_send_returns_settled_reply(self, manager):
        conversation_id = await manager.open_conversation("grok")

        assert await manager.send_message(conversation_id, "hi") == "echo: hi"

    @pytest.mark.asyncio
    async def test_unknown_or_closed_conversation(self, manager, driver_factory):
        with pytest.raises(NotFoundError):
            await manager.send_message("missing", "hi")

        conversation_id = await manager.open_conversation("grok")
        await manager.close_conversation(conversation_id)
        with pytest.raises(NotFoundError):
            await manager.send_message(conversation_id, "hi")
        assert driver_factory.latest("grok").sent == []

    @pytest.mark.asyncio
    async def test_conversations_interleave_but_keep_their_own_order(
        self, manager, driver_factory
    ):
        a = await manager.open_conversation("grok")
        b = await manager.open_conversation("grok")
        driver = driver_factory.latest("grok")
        resolved: list[str] = []

        async def send(cid, message):
            reply = await manager.send_message(cid, message)
            resolved.append(message)
            return reply

        results = await asyncio.gather(
            send(a, "hi"), send(b, "yo"), send(a, "again")
        )

        assert results == ["echo: hi", "echo: yo", "echo: again"]
        assert resolved.index("hi") < resolved.index("again")
        sent_to_a = [m for s, m in driver.sent if s == "grok-1"]
        assert sent_to_a == ["hi", "again"]
        assert driver.max_active == 1

    @pytest.mark.asyncio
    async def test_list_conversations(self, manager):
        a = await manager.open_conversation("grok")
        b = await manager.open_conversation("gemini")

        infos = {i.id: i for i in manager.list_conversations()}

        assert set(infos) == {a, b}
        assert infos[b].kind == "gemini"
        assert infos[a].to_dict()["status"] == "open"


# =============================================================================
# Reset
# =============================================================================


class TestResetAll:
    @pytest.mark.asyncio
    async def test_closes_everything(self, manager, driver_factory):
        for kind in ("grok", "grok", "gemini"):
            await manager.open_conversation(kind)

        await manager.reset_all()

        assert manager.conversations == {}
        assert manager.driver_count() == 0
        assert all(d.torn_down for d in driver_factory.created)

    @pytest.mark.asyncio
    async def test_is_best_effort(self, manager, driver_factory):
        await manager.open_conversation("grok")
        await manager.open_conversation("gemini")
        driver_factory.latest("grok").fail_close = True
        driver_factory.latest("grok").fail_teardown = True

        await manager.reset_all()

        assert manager.conversations == {}
        assert manager.driver_count() == 0
        assert driver_factory.latest("gemini").torn_down is True

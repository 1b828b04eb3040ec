"""Shared test fixtures for the parley test suite."""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from parley.config import ConfigCoordinator
from parley.manager import ConversationManager
from parley.server import create_app
from tests.fakes import FakeDriverFactory


@pytest.fixture(autouse=True)
def fast_policies(monkeypatch):
    """Shrink per-kind timings so turns settle in milliseconds."""
    for kind in ("GROK", "GEMINI"):
        monkeypatch.setenv(f"PARLEY_{kind}_INTERVAL_S", "0.001")
        monkeypatch.setenv(f"PARLEY_{kind}_TIMEOUT_S", "0.5")
        monkeypatch.setenv(f"PARLEY_{kind}_SETTLE_S", "0")
        monkeypatch.delenv(f"PARLEY_DRIVER_{kind}", raising=False)


@pytest.fixture
def driver_factory() -> FakeDriverFactory:
    return FakeDriverFactory()


@pytest_asyncio.fixture
async def manager(driver_factory):
    return ConversationManager(driver_factory)


@pytest_asyncio.fixture
async def coordinator(manager):
    return ConfigCoordinator(manager, grace_s=0.01)


@pytest_asyncio.fixture
async def http(manager, coordinator):
    app = create_app(manager, coordinator)
    async with TestClient(TestServer(app)) as client:
        yield client

"""Shared fixtures for chatsync tests."""

from collections.abc import AsyncIterator

import pytest
from factories import ALICE, FakeService

from chatsync import ActiveRoom, ChatApi, ClientConfig, InMemoryTransport, Scheduler


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        base_url="http://chat.test",
        typing_idle_s=0.05,
        read_fallback_s=0.02,
        notification_ttl_s=0.05,
    )


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
async def api(service: FakeService, config: ClientConfig) -> AsyncIterator[ChatApi]:
    async with service.api(config) as client:
        yield client


@pytest.fixture
async def scheduler() -> AsyncIterator[Scheduler]:
    async with Scheduler() as running:
        yield running


@pytest.fixture
async def transport() -> AsyncIterator[InMemoryTransport]:
    async with InMemoryTransport() as push:
        await push.connect(ALICE.username)
        yield push


@pytest.fixture
def active_room() -> ActiveRoom:
    return ActiveRoom()

"""Unit tests for per-user store handles (alpine/storage/provider.py)"""
import asyncio
import pytest
from unittest.mock import AsyncMock, Mock

from alpine.storage.memory import InMemoryTrackerStore
from alpine.storage.provider import StoreProvider


@pytest.fixture
def factory():
    """Store factory returning a fresh in-memory store per call"""
    return Mock(side_effect=lambda user_id: InMemoryTrackerStore())


@pytest.mark.asyncio
async def test_open_builds_one_store_per_user(factory):
    provider = StoreProvider(factory)

    first = await provider.open("user-1")
    again = await provider.open("user-1")
    other = await provider.open("user-2")

    assert first is again
    assert first is not other
    assert factory.call_count == 2
    assert len(provider) == 2
    assert provider.get("user-1") is first


@pytest.mark.asyncio
async def test_concurrent_open_builds_once(factory):
    provider = StoreProvider(factory)

    stores = await asyncio.gather(*(provider.open("user-1") for _ in range(3)))

    assert all(store is stores[0] for store in stores)
    factory.assert_called_once_with("user-1")


@pytest.mark.asyncio
async def test_get_unopened_user_raises(factory):
    provider = StoreProvider(factory)

    with pytest.raises(KeyError):
        provider.get("nobody")


@pytest.mark.asyncio
async def test_close_removes_store(factory):
    provider = StoreProvider(factory)
    await provider.open("user-1")

    await provider.close("user-1")
    await provider.close("user-1")

    assert "user-1" not in provider


@pytest.mark.asyncio
async def test_close_all_continues_past_failures():
    """Test one store failing to close does not keep the others open"""
    broken = Mock(open=AsyncMock(), close=AsyncMock(side_effect=RuntimeError("boom")))
    healthy = Mock(open=AsyncMock(), close=AsyncMock())
    provider = StoreProvider(Mock(side_effect=[broken, healthy]))
    await provider.open("user-1")
    await provider.open("user-2")

    await provider.close_all()

    healthy.close.assert_awaited_once()
    assert len(provider) == 0


@pytest.mark.asyncio
async def test_session_closes_on_exit(factory):
    provider = StoreProvider(factory)

    with pytest.raises(ValueError):
        async with provider.session("user-1") as store:
            assert provider.get("user-1") is store
            raise ValueError("request failed")

    assert "user-1" not in provider

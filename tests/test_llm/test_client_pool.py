"""
Tests for the per-vendor client pool.

Uses fake factories and a controllable clock so no SDK client is built
and TTL expiry can be driven deterministically.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from modelgate.config.settings import ClientPoolSettings
from modelgate.llm.client_pool import ClientPool, default_factories
from modelgate.llm.types import ProviderCredential, Vendor


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SyncClient:
    closed = False

    def close(self) -> None:
        self.closed = True


def _factory():
    """A factory returning a fresh sentinel object per construction."""
    return MagicMock(side_effect=lambda cred: object())


def _cred(key: str, vendor: str = "openai", **kwargs) -> ProviderCredential:
    return ProviderCredential(vendor, key, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def factory():
    return _factory()


@pytest.fixture
def pool(clock, factory):
    return ClientPool(
        ClientPoolSettings(max_size=2, ttl_seconds=60),
        factories={vendor: factory for vendor in Vendor},
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Acquire
# ---------------------------------------------------------------------------

class TestAcquire:

    def test_same_credential_returns_same_client(self, pool, factory):
        first = pool.acquire(_cred("k1"))
        second = pool.acquire(_cred("k1"))
        assert first is second
        assert factory.call_count == 1

    def test_different_keys_get_different_clients(self, pool):
        assert pool.acquire(_cred("k1")) is not pool.acquire(_cred("k2"))

    def test_base_url_is_part_of_identity(self, pool):
        a = pool.acquire(_cred("k1"))
        b = pool.acquire(_cred("k1", base_url="https://proxy.local/v1"))
        assert a is not b

    def test_azure_deployment_is_part_of_identity(self, pool):
        common = {"vendor": "azure-openai", "base_url": "https://x.openai.azure.com"}
        a = pool.acquire(_cred("k1", deployment="gpt-4o", **common))
        b = pool.acquire(_cred("k1", deployment="gpt-4o-mini", **common))
        assert a is not b

    def test_stats_track_hits_and_misses(self, pool):
        pool.acquire(_cred("k1"))
        pool.acquire(_cred("k1"))
        pool.acquire(_cred("k1"))
        stats = pool.get_stats()
        assert stats["misses"] == 1
        assert stats["hits"] == 2
        assert stats["sizes"]["openai"] == 1


# ---------------------------------------------------------------------------
# Eviction
# ---------------------------------------------------------------------------

class TestEviction:

    def test_lru_evicts_least_recently_touched(self, pool, factory):
        k1 = pool.acquire(_cred("k1"))
        pool.acquire(_cred("k2"))
        pool.acquire(_cred("k1"))          # touch k1, k2 is now LRU
        pool.acquire(_cred("k3"))          # exceeds max_size=2

        assert pool.size("openai") == 2
        assert pool.acquire(_cred("k1")) is k1
        calls_before = factory.call_count
        pool.acquire(_cred("k2"))
        assert factory.call_count == calls_before + 1

    def test_vendors_have_independent_capacity(self, pool):
        pool.acquire(_cred("k1", "openai"))
        pool.acquire(_cred("k2", "openai"))
        pool.acquire(_cred("k1", "groq"))
        pool.acquire(_cred("k2", "groq"))
        assert pool.size("openai") == 2
        assert pool.size("groq") == 2
        assert pool.size() == 4
        assert pool.get_stats()["evictions"] == 0

    def test_idle_entry_expires_after_ttl(self, pool, clock):
        first = pool.acquire(_cred("k1"))
        clock.advance(61)
        assert pool.acquire(_cred("k1")) is not first

    def test_ttl_slides_on_access(self, pool, clock):
        first = pool.acquire(_cred("k1"))
        clock.advance(45)
        pool.acquire(_cred("k1"))
        clock.advance(45)
        assert pool.acquire(_cred("k1")) is first

    def test_prune_expired(self, pool, clock):
        pool.acquire(_cred("k1"))
        clock.advance(30)
        pool.acquire(_cred("k2"))
        clock.advance(40)
        assert pool.prune_expired() == 1
        assert pool.size() == 1

    def test_on_evict_hook_receives_reason(self, clock, factory):
        hook = MagicMock()
        pool = ClientPool(
            ClientPoolSettings(max_size=1, ttl_seconds=60),
            factories={Vendor.OPENAI: factory},
            clock=clock,
            on_evict=hook,
        )
        first = pool.acquire(_cred("k1"))
        pool.acquire(_cred("k2"))
        hook.assert_called_once_with(Vendor.OPENAI, "lru", first)

    def test_evicted_handle_is_not_closed(self, clock):
        handle = MagicMock()
        pool = ClientPool(
            ClientPoolSettings(max_size=1, ttl_seconds=60),
            factories={Vendor.OPENAI: lambda cred: handle},
            clock=clock,
        )
        pool.acquire(_cred("k1"))
        pool.acquire(_cred("k2"))
        handle.close.assert_not_called()


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------

class TestShutdown:

    def test_clear_returns_count(self, pool):
        pool.acquire(_cred("k1"))
        pool.acquire(_cred("k1", "anthropic"))
        assert pool.clear() == 2
        assert pool.size() == 0

    @pytest.mark.asyncio
    async def test_aclose_closes_every_client(self, clock):
        async_handle = MagicMock()
        async_handle.aclose = AsyncMock()
        sync_handle = SyncClient()

        handles = iter([async_handle, sync_handle])
        pool = ClientPool(
            factories={Vendor.OPENAI: lambda cred: next(handles)},
            clock=clock,
        )
        pool.acquire(_cred("k1"))
        pool.acquire(_cred("k2"))

        await pool.aclose()

        async_handle.aclose.assert_awaited_once()
        assert sync_handle.closed is True
        assert pool.size() == 0

    @pytest.mark.asyncio
    async def test_aclose_continues_past_failures(self, clock):
        bad = MagicMock()
        bad.aclose = AsyncMock(side_effect=RuntimeError("boom"))
        good = MagicMock()
        good.aclose = AsyncMock()

        handles = iter([bad, good])
        pool = ClientPool(
            factories={Vendor.OPENAI: lambda cred: next(handles)},
            clock=clock,
        )
        pool.acquire(_cred("k1"))
        pool.acquire(_cred("k2"))

        await pool.aclose()
        good.aclose.assert_awaited_once()


# ---------------------------------------------------------------------------
# Default factories
# ---------------------------------------------------------------------------

class TestDefaultFactories:

    def test_covers_every_vendor(self):
        assert set(default_factories()) == set(Vendor)

    def test_groq_uses_openai_sdk_with_groq_base_url(self):
        client = default_factories()[Vendor.GROQ](_cred("gsk", "groq"))
        assert isinstance(client, openai.AsyncOpenAI)
        assert "api.groq.com" in str(client.base_url)

    def test_huggingface_uses_bearer_httpx_client(self):
        client = default_factories()[Vendor.HUGGINGFACE](_cred("hf_123", "huggingface"))
        assert isinstance(client, httpx.AsyncClient)
        assert client.headers["Authorization"] == "Bearer hf_123"

"""
Client Pool: Bounded, TTL-evicting cache of vendor SDK clients.

Constructing an SDK client per call leaks connection pools; sharing one
client per credential is what every vendor SDK recommends. The pool keeps
one client per (vendor, api key, endpoint) and hands out live references.

Each vendor has its own independent LRU cache, so a burst of credentials
for one vendor cannot evict another vendor's clients. Entries idle longer
than the TTL are dropped lazily on access and by prune_expired().

Eviction only drops the pool's reference. A call already holding the
client keeps using it; the handle is garbage collected once released.
Open connections are closed explicitly by aclose() at shutdown.

Usage:
    from modelgate.llm.client_pool import ClientPool
    from modelgate.llm.types import ProviderCredential

    pool = ClientPool()
    client = pool.acquire(ProviderCredential("anthropic", api_key))
    ...
    await pool.aclose()
"""

from __future__ import annotations

import inspect
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

import anthropic
import httpx
import openai

from modelgate.config.settings import AdapterSettings, ClientPoolSettings
from modelgate.llm.types import ProviderCredential, Vendor

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderCredential], Any]
EvictHook = Callable[[Vendor, str, Any], None]


# ---------------------------------------------------------------------------
# Pool Entry
# ---------------------------------------------------------------------------

@dataclass
class PooledClient:
    """A vendor SDK handle plus its bookkeeping timestamps."""

    handle: Any
    created_at: float           # pool clock at construction
    last_used: float            # pool clock at last acquire
    hit_count: int = 0


# ---------------------------------------------------------------------------
# Default Factories
# ---------------------------------------------------------------------------

def default_factories(
    adapter_settings: Optional[AdapterSettings] = None,
) -> dict[Vendor, ClientFactory]:
    """
    Build the SDK constructors for every vendor.

    Construction is local only; no factory touches the network.
    """
    settings = adapter_settings or AdapterSettings()
    timeout = settings.request_timeout_seconds

    def make_anthropic(cred: ProviderCredential) -> Any:
        return anthropic.AsyncAnthropic(
            api_key=cred.api_key, base_url=cred.base_url, timeout=timeout
        )

    def make_openai(cred: ProviderCredential) -> Any:
        return openai.AsyncOpenAI(
            api_key=cred.api_key, base_url=cred.base_url, timeout=timeout
        )

    def make_groq(cred: ProviderCredential) -> Any:
        return openai.AsyncOpenAI(
            api_key=cred.api_key,
            base_url=cred.base_url or settings.groq_base_url,
            timeout=timeout,
        )

    def make_azure(cred: ProviderCredential) -> Any:
        return openai.AsyncAzureOpenAI(
            api_key=cred.api_key,
            azure_endpoint=cred.base_url,
            api_version=cred.api_version or settings.azure_api_version,
            timeout=timeout,
        )

    def make_huggingface(cred: ProviderCredential) -> Any:
        return httpx.AsyncClient(
            headers={"Authorization": f"Bearer {cred.api_key}"},
            timeout=timeout,
        )

    return {
        Vendor.ANTHROPIC: make_anthropic,
        Vendor.OPENAI: make_openai,
        Vendor.GROQ: make_groq,
        Vendor.AZURE_OPENAI: make_azure,
        Vendor.HUGGINGFACE: make_huggingface,
    }


def _log_eviction(vendor: Vendor, reason: str, handle: Any) -> None:
    logger.debug(
        "client_pool_evicted",
        extra={"vendor": vendor.value, "reason": reason},
    )


# ---------------------------------------------------------------------------
# Client Pool
# ---------------------------------------------------------------------------

class ClientPool:
    """
    Per-vendor LRU+TTL cache of SDK clients.

    All mutations happen under one short critical section; client
    construction inside it is synchronous and never performs I/O, so no
    network call ever waits on the pool lock.
    """

    def __init__(
        self,
        settings: Optional[ClientPoolSettings] = None,
        *,
        factories: Optional[dict[Vendor, ClientFactory]] = None,
        adapter_settings: Optional[AdapterSettings] = None,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Optional[EvictHook] = None,
    ):
        self._settings = settings or ClientPoolSettings()
        self._factories = default_factories(adapter_settings)
        if factories:
            self._factories.update(
                {Vendor.parse(v): f for v, f in factories.items()}
            )
        self._clock = clock
        self._on_evict = on_evict or _log_eviction
        self._lock = threading.Lock()

        # One LRU per vendor: most recently used at the end
        self._caches: dict[Vendor, OrderedDict[str, PooledClient]] = {
            vendor: OrderedDict() for vendor in Vendor
        }

        # Stats
        self._hits: int = 0
        self._misses: int = 0
        self._evictions: int = 0

    @property
    def max_size(self) -> int:
        return self._settings.max_size

    @property
    def ttl_seconds(self) -> float:
        return self._settings.ttl_seconds

    # --- Core Operations ---

    def acquire(self, credential: ProviderCredential) -> Any:
        """
        Return the client for this credential, constructing it on first use.

        A hit refreshes the entry's last-used time (sliding TTL) and marks
        it most recently used. A miss constructs the client, inserts it,
        and evicts least-recently-used entries beyond max_size.
        """
        vendor = credential.vendor
        key = credential.pool_key
        evicted: list[tuple[str, Any]] = []

        with self._lock:
            cache = self._caches[vendor]
            now = self._clock()

            entry = cache.get(key)
            if entry is not None and now - entry.last_used > self.ttl_seconds:
                del cache[key]
                self._evictions += 1
                evicted.append(("expired", entry.handle))
                entry = None

            if entry is not None:
                entry.last_used = now
                entry.hit_count += 1
                cache.move_to_end(key)
                self._hits += 1
                handle = entry.handle
            else:
                handle = self._factories[vendor](credential)
                cache[key] = PooledClient(handle=handle, created_at=now, last_used=now)
                self._misses += 1
                while len(cache) > self.max_size:
                    _, lru = cache.popitem(last=False)
                    self._evictions += 1
                    evicted.append(("lru", lru.handle))

        for reason, old_handle in evicted:
            self._on_evict(vendor, reason, old_handle)

        return handle

    def prune_expired(self) -> int:
        """Drop every entry idle past the TTL. Returns number removed."""
        evicted: list[tuple[Vendor, Any]] = []

        with self._lock:
            now = self._clock()
            for vendor, cache in self._caches.items():
                expired = [
                    k for k, v in cache.items()
                    if now - v.last_used > self.ttl_seconds
                ]
                for key in expired:
                    evicted.append((vendor, cache.pop(key).handle))
            self._evictions += len(evicted)

        for vendor, handle in evicted:
            self._on_evict(vendor, "expired", handle)

        return len(evicted)

    def size(self, vendor: Optional[Vendor | str] = None) -> int:
        """Pooled client count for one vendor, or across all vendors."""
        with self._lock:
            if vendor is None:
                return sum(len(c) for c in self._caches.values())
            return len(self._caches[Vendor.parse(vendor)])

    def clear(self) -> int:
        """Drop every pooled client without closing it. Returns count."""
        with self._lock:
            count = sum(len(c) for c in self._caches.values())
            for cache in self._caches.values():
                cache.clear()
        return count

    async def aclose(self) -> None:
        """Close every pooled client and empty the pool. Call at shutdown."""
        with self._lock:
            handles = [
                entry.handle
                for cache in self._caches.values()
                for entry in cache.values()
            ]
            for cache in self._caches.values():
                cache.clear()

        for handle in handles:
            closer = getattr(handle, "aclose", None) or getattr(handle, "close", None)
            if closer is None:
                continue
            try:
                result = closer()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "client_pool_close_failed",
                    extra={"error": str(e)[:200]},
                )

        logger.info("client_pool_closed", extra={"clients": len(handles)})

    # --- Stats ---

    def get_stats(self) -> dict[str, Any]:
        """Return per-vendor sizes and pool counters."""
        with self._lock:
            return {
                "sizes": {v.value: len(c) for v, c in self._caches.items()},
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

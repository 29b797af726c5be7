"""
Provider Registry: Factory and cache of vendor adapters.

One adapter instance is kept per (vendor, api key, endpoint, deployment).
Adapters are cheap, but caching them keeps each one's last rate-limit
snapshot alive between calls and avoids rebuilding credentials. The cache
is LRU-bounded per vendor by the same max_size as the client pool, so a
burst of distinct credentials cannot grow it without limit.

Usage:
    from modelgate.llm.registry import ProviderRegistry

    registry = ProviderRegistry()
    adapter = registry.get_adapter("anthropic", api_key)
    response = await adapter.complete(request)

    # Azure needs its endpoint and deployment up front
    adapter = registry.get_adapter(
        "azure-openai", api_key,
        endpoint="https://my-resource.openai.azure.com",
        deployment="gpt-4o-prod",
    )
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import OrderedDict
from typing import Optional

from modelgate.config.settings import GatewaySettings
from modelgate.exceptions import ConfigurationError
from modelgate.llm.adapters import (
    AnthropicAdapter,
    AzureOpenAIAdapter,
    GroqAdapter,
    HuggingFaceAdapter,
    OpenAIAdapter,
    ProviderAdapter,
)
from modelgate.llm.client_pool import ClientPool
from modelgate.llm.types import (
    HealthState,
    ProviderCredential,
    ProviderHealthStatus,
    Vendor,
)

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: dict[Vendor, type[ProviderAdapter]] = {
    Vendor.ANTHROPIC: AnthropicAdapter,
    Vendor.OPENAI: OpenAIAdapter,
    Vendor.AZURE_OPENAI: AzureOpenAIAdapter,
    Vendor.GROQ: GroqAdapter,
    Vendor.HUGGINGFACE: HuggingFaceAdapter,
}


class ProviderRegistry:
    """
    Builds and caches adapters.

    Cache access is lock-protected; constructing an adapter does no I/O,
    so the lock is never held across a network call. Each vendor keeps at
    most `client_pool.max_size` adapters; the least recently used is
    dropped first.
    """

    def __init__(
        self,
        client_pool: Optional[ClientPool] = None,
        settings: Optional[GatewaySettings] = None,
    ):
        self._settings = settings or GatewaySettings()
        self._pool = client_pool or ClientPool(
            self._settings.client_pool,
            adapter_settings=self._settings.adapters,
        )
        # One LRU per vendor: most recently used at the end
        self._adapters: dict[Vendor, OrderedDict[str, ProviderAdapter]] = {
            vendor: OrderedDict() for vendor in Vendor
        }
        self._lock = threading.Lock()

    @property
    def client_pool(self) -> ClientPool:
        return self._pool

    @property
    def cache_size(self) -> int:
        with self._lock:
            return sum(len(cache) for cache in self._adapters.values())

    def get_adapter(
        self,
        vendor: Vendor | str,
        api_key: str,
        *,
        endpoint: Optional[str] = None,
        deployment: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> ProviderAdapter:
        """
        Return the cached adapter for these credentials, creating it once.

        Raises:
            ConfigurationError: Unknown vendor, empty API key, or Azure
                without endpoint/deployment.
        """
        vendor = Vendor.parse(vendor)

        if vendor.requires_endpoint:
            if not endpoint or not deployment:
                missing = "endpoint" if not endpoint else "deployment"
                raise ConfigurationError(
                    f"{vendor.value} requires an endpoint and a deployment name "
                    f"(missing {missing})",
                    vendor=vendor.value,
                    field=missing,
                )
            api_version = api_version or self._settings.adapters.azure_api_version
        else:
            deployment = None
            api_version = None

        credential = ProviderCredential(
            vendor=vendor,
            api_key=api_key or "",
            base_url=endpoint,
            deployment=deployment,
            api_version=api_version,
        )
        key = credential.pool_key

        with self._lock:
            cache = self._adapters[vendor]
            adapter = cache.get(key)
            if adapter is not None:
                cache.move_to_end(key)
            else:
                adapter = ADAPTER_CLASSES[vendor](
                    self._pool, credential, self._settings.adapters
                )
                cache[key] = adapter
                logger.debug("provider_adapter_created", extra={"vendor": vendor.value})
                while len(cache) > self._settings.client_pool.max_size:
                    cache.popitem(last=False)
                    logger.debug("provider_adapter_evicted", extra={"vendor": vendor.value})

        return adapter

    async def get_all_provider_health(self) -> dict[str, ProviderHealthStatus]:
        """
        Health-check one cached adapter per vendor, concurrently.

        A check that raises is reported as `down` rather than propagated.
        """
        with self._lock:
            by_vendor: dict[Vendor, ProviderAdapter] = {
                vendor: next(reversed(cache.values()))
                for vendor, cache in self._adapters.items()
                if cache
            }

        vendors = list(by_vendor)
        results = await asyncio.gather(
            *(by_vendor[v].health_check() for v in vendors),
            return_exceptions=True,
        )

        statuses: dict[str, ProviderHealthStatus] = {}
        for vendor, result in zip(vendors, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                result = ProviderHealthStatus(
                    status=HealthState.DOWN, latency_ms=0.0, error=str(result)
                )
            statuses[vendor.value] = result
        return statuses

    def clear_cache(self) -> None:
        """Drop every cached adapter and pooled client."""
        with self._lock:
            for cache in self._adapters.values():
                cache.clear()
        self._pool.clear()

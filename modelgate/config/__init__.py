from modelgate.config.loader import load_settings, resolve_api_key
from modelgate.config.settings import (
    AdapterSettings,
    ClientPoolSettings,
    EventSettings,
    ExecutorSettings,
    GatewaySettings,
    HealthSettings,
)

__all__ = [
    "AdapterSettings",
    "ClientPoolSettings",
    "EventSettings",
    "ExecutorSettings",
    "GatewaySettings",
    "HealthSettings",
    "load_settings",
    "resolve_api_key",
]

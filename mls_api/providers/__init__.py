from collections.abc import Mapping

from mls_api.providers.base import Cursor, HealthStatus, ProviderAdapter, RecordPage
from mls_api.providers.fixture import FixtureProviderAdapter
from mls_api.providers.rest import RestProviderAdapter
from mls_api.providers.rets import RetsProviderAdapter

ADAPTER_TYPES: dict[str, type[ProviderAdapter]] = {
    RestProviderAdapter.provider_type: RestProviderAdapter,
    RetsProviderAdapter.provider_type: RetsProviderAdapter,
    FixtureProviderAdapter.provider_type: FixtureProviderAdapter,
}


def register_adapter(adapter_class: type[ProviderAdapter]) -> type[ProviderAdapter]:
    ADAPTER_TYPES[adapter_class.provider_type] = adapter_class
    return adapter_class


def build_adapter(
    provider_type: str,
    provider_id: str,
    connection: Mapping[str, object] | None = None,
    credentials: Mapping[str, object] | None = None,
) -> ProviderAdapter:
    adapter_class = ADAPTER_TYPES.get((provider_type or "").lower())
    if adapter_class is None:
        raise ValueError(f"Unknown provider type {provider_type!r}. Known types: {', '.join(sorted(ADAPTER_TYPES))}")
    return adapter_class(provider_id, connection, credentials)


__all__ = [
    "ADAPTER_TYPES",
    "Cursor",
    "FixtureProviderAdapter",
    "HealthStatus",
    "ProviderAdapter",
    "RecordPage",
    "RestProviderAdapter",
    "RetsProviderAdapter",
    "build_adapter",
    "register_adapter",
]

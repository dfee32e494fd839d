"""
Provider Registry

Builds the configured adapters, the process-wide cache and the aggregator
from settings. Adapter order follows `settings.providers`, which is also
the merge priority.
"""
import logging
from typing import Callable

from app.config import CustomSettings
from app.services.bilibili_adapter import BilibiliAdapter
from app.services.cache_layer import CacheLayer, DatabaseCacheBackend, MemoryCacheBackend
from app.services.data_aggregator import AggregatorOptions, DataAggregator
from app.services.provider_adapter import ProviderAdapter, ProviderKind
from app.services.tmdb_adapter import TMDBAdapter


logger = logging.getLogger(__name__)


def _build_tmdb(config: CustomSettings) -> ProviderAdapter:
    return TMDBAdapter(
        config.tmdb_api_token,
        base_url=config.tmdb_base_url,
        image_base_url=config.tmdb_image_base_url,
        language=config.tmdb_language,
        origin_country=config.tmdb_origin_country,
        timeout=config.adapter_timeout_sec,
    )


def _build_bilibili(config: CustomSettings) -> ProviderAdapter:
    return BilibiliAdapter(
        base_url=config.bilibili_base_url,
        timeout=config.adapter_timeout_sec,
    )


ADAPTER_FACTORIES: dict[ProviderKind, Callable[[CustomSettings], ProviderAdapter]] = {
    ProviderKind.TMDB: _build_tmdb,
    ProviderKind.BILIBILI: _build_bilibili,
}


def build_adapters(config: CustomSettings) -> list[ProviderAdapter]:
    """Instantiate one adapter per configured provider, in priority order"""
    adapters = []
    for name in config.providers:
        adapter = ADAPTER_FACTORIES[ProviderKind(name)](config)
        adapters.append(adapter)
        logger.info(
            "Registered provider %s (capabilities: %s, configured: %s)",
            adapter.name,
            ", ".join(sorted(capability.value for capability in adapter.capabilities)),
            adapter.is_configured(),
        )
    return adapters


def build_cache(config: CustomSettings) -> CacheLayer:
    """
    Create the cache for the configured backend

    The database backend expects init_db() to have run already.
    """
    if config.cache_backend == "database":
        return CacheLayer(DatabaseCacheBackend())
    return CacheLayer(MemoryCacheBackend(max_entries=config.cache_max_entries))


def build_aggregator(config: CustomSettings, cache: CacheLayer) -> DataAggregator:
    return DataAggregator(
        build_adapters(config),
        cache,
        AggregatorOptions.from_settings(config),
    )

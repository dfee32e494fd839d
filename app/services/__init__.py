"""
Services package for the Anime Aggregation Service

This package contains the provider adapters, the cache layer and the
aggregator that ties them together.
"""
from app.services.cache_layer import CacheLayer
from app.services.data_aggregator import DataAggregator
from app.services.errors import AllProvidersFailed, NotFound, ValidationError
from app.services.provider_registry import build_aggregator, build_cache
from app.services.scheduler_service import cache_scheduler

__all__ = [
    'CacheLayer',
    'DataAggregator',
    'AllProvidersFailed',
    'NotFound',
    'ValidationError',
    'build_aggregator',
    'build_cache',
    'cache_scheduler',
]

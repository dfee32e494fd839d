"""
Dependency Injection Configuration

Holds the process-wide CacheLayer and DataAggregator. The lifespan handler
registers them at startup; request handlers resolve them through the
FastAPI dependencies below, and tests reset the locator and register
instances built from fakes.
"""
import logging
from typing import Any, TypeVar

from app.services.cache_layer import CacheLayer
from app.services.data_aggregator import DataAggregator


logger = logging.getLogger(__name__)

T = TypeVar('T')


class ServiceContainer:
    """Service container holding one shared instance per service type."""

    def __init__(self):
        self._singletons: dict[type, Any] = {}

    def register_singleton(self, service_type: type[T], instance: T) -> None:
        self._singletons[service_type] = instance
        logger.debug(f"Registered singleton: {service_type.__name__}")

    def get(self, service_type: type[T]) -> T:
        """
        Get a service instance.

        Raises:
            KeyError: If service type is not registered
        """
        if service_type in self._singletons:
            return self._singletons[service_type]

        raise KeyError(f"Service {service_type.__name__} not registered in container")


class ServiceLocator:
    """Central access point for the application's shared services."""

    def __init__(self):
        self._container = ServiceContainer()

    def register_singleton(self, service_type: type[T], instance: T) -> None:
        self._container.register_singleton(service_type, instance)

    def get(self, service_type: type[T]) -> T:
        return self._container.get(service_type)


# Global service locator instance
_service_locator: ServiceLocator | None = None


def get_service_locator() -> ServiceLocator:
    global _service_locator
    if _service_locator is None:
        _service_locator = ServiceLocator()
    return _service_locator


def reset_service_locator() -> None:
    """
    Reset the service locator (mainly for testing).

    WARNING: Only use this in test environments!
    """
    global _service_locator
    _service_locator = None


def get_aggregator() -> DataAggregator:
    """FastAPI dependency returning the shared aggregator"""
    return get_service_locator().get(DataAggregator)


def get_cache() -> CacheLayer:
    """FastAPI dependency returning the shared cache"""
    return get_service_locator().get(CacheLayer)

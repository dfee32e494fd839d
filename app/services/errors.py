"""
Error taxonomy for the aggregation layer.

Adapters raise the upstream errors; the aggregator records them per
provider and only lets `NotFound`, `ValidationError` and
`AllProvidersFailed` reach request handlers.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from app.services.fetch_types import AdapterOutcome


class AnimeServiceError(Exception):
    """Base class for all service errors"""
    pass


class UpstreamError(AnimeServiceError):
    """Transport failure, non-2xx status or unparsable body from a provider"""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.status_code = status_code


class UpstreamRateLimited(UpstreamError):
    """Provider throttled the request (HTTP 429)"""

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        super().__init__(provider, "rate limited", status_code=429)
        self.retry_after = retry_after


class ProviderNotConfigured(UpstreamError):
    """A required credential for the provider is missing"""

    def __init__(self, provider: str, setting: str) -> None:
        super().__init__(provider, f"missing required setting {setting}")
        self.setting = setting


class NotFound(AnimeServiceError):
    """Provider confirms there is no record for the identifier"""

    def __init__(self, anime_id: str) -> None:
        super().__init__(f"Anime not found: {anime_id}")
        self.anime_id = anime_id


class ValidationError(AnimeServiceError):
    """Caller-supplied parameter is outside the operation contract"""

    def __init__(self, message: str, parameter: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.parameter = parameter


class AllProvidersFailed(AnimeServiceError):
    """Every provider failed and no cached result of any age exists"""

    def __init__(self, operation: str, outcomes: Sequence["AdapterOutcome"] = ()) -> None:
        providers = ", ".join(outcome.provider for outcome in outcomes) or "none configured"
        super().__init__(f"All providers failed for {operation} ({providers})")
        self.operation = operation
        self.outcomes = list(outcomes)


__all__ = [
    "AnimeServiceError",
    "UpstreamError",
    "UpstreamRateLimited",
    "ProviderNotConfigured",
    "NotFound",
    "ValidationError",
    "AllProvidersFailed",
]

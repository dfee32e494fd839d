"""
Provider Adapter Base

Defines the capability contract every upstream content source implements,
plus the shared HTTP plumbing (timeouts, status mapping, JSON decoding).
Adapters are the only place that knows provider field names and identifier
schemes; everything they return is already in the unified data model.
"""
from __future__ import annotations

from abc import ABC
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
import logging
from typing import Any

import httpx

from app.schemas import AnimeSummary, ScheduleEntry
from app.services.errors import ProviderNotConfigured, UpstreamError, UpstreamRateLimited
from app.utils.logging_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 8.0


class Capability(str, Enum):
    """Operations an adapter may support"""
    LIST = "list"
    SEARCH = "search"
    DETAIL = "detail"
    SCHEDULE = "schedule"


class ProviderKind(str, Enum):
    """Fixed set of supported upstream providers"""
    TMDB = "tmdb"
    BILIBILI = "bilibili"


class ProviderAdapter(ABC):
    """
    Base class for upstream content sources.

    Subclasses set `kind` and `capabilities` and override the capability
    methods they declare. The aggregator only calls methods listed in
    `capabilities`; the defaults raise NotImplementedError.
    """

    kind: ProviderKind
    capabilities: frozenset[Capability] = frozenset()
    max_page_size: int = 20

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return self.kind.value

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def is_configured(self) -> bool:
        """False when a required credential is missing; such adapters are skipped."""
        return True

    def make_id(self, native_id: object) -> str:
        """Build the provider-prefixed identifier used across the service."""
        return f"{self.name}:{native_id}"

    def owns_identifier(self, anime_id: str) -> bool:
        return anime_id.startswith(f"{self.name}:")

    def parse_identifier(self, anime_id: str) -> str:
        """Strip this provider's prefix; unprefixed ids are taken as native ids."""
        anime_id = anime_id.strip()
        if self.owns_identifier(anime_id):
            return anime_id.split(":", 1)[1]
        return anime_id

    async def fetch_list(self, page: int, page_size: int) -> list[AnimeSummary]:
        raise NotImplementedError(f"{self.name} does not support {Capability.LIST.value}")

    async def search(self, keyword: str, limit: int) -> list[AnimeSummary]:
        raise NotImplementedError(f"{self.name} does not support {Capability.SEARCH.value}")

    async def fetch_detail(self, anime_id: str) -> AnimeSummary:
        raise NotImplementedError(f"{self.name} does not support {Capability.DETAIL.value}")

    async def fetch_schedule(self, day: int | None = None) -> list[ScheduleEntry]:
        raise NotImplementedError(f"{self.name} does not support {Capability.SCHEDULE.value}")

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def _require_configured(self, setting: str) -> None:
        if not self.is_configured():
            raise ProviderNotConfigured(self.name, setting)

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET a JSON document from the provider

        Raises:
            UpstreamRateLimited: On HTTP 429
            UpstreamError: On transport errors, other non-2xx statuses or invalid JSON
        """
        url = f"{self.base_url}{path}"
        logger.debug("[%s] GET %s params=%s", self.name, sanitize_url_for_logging(url), params)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._default_headers(),
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(url, params=params)
            except httpx.TimeoutException as exc:
                raise UpstreamError(self.name, f"request timed out: {type(exc).__name__}") from exc
            except httpx.HTTPError as exc:
                raise UpstreamError(self.name, f"request failed: {type(exc).__name__}") from exc

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning("[%s] Rate limited (retry after: %s)", self.name, retry_after)
            raise UpstreamRateLimited(self.name, retry_after)

        if response.is_error:
            logger.warning(
                "[%s] HTTP %s from %s: %s",
                self.name,
                response.status_code,
                sanitize_url_for_logging(url),
                response.text[:200],
            )
            raise UpstreamError(
                self.name,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(self.name, "response body is not valid JSON") from exc


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def clamp_rating(value: object) -> float | None:
    """Coerce a provider rating to the 0-10 scale; unusable values become None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    if rating != rating:  # NaN
        return None
    return round(min(10.0, max(0.0, rating)), 1)


def coerce_int(value: object) -> int | None:
    """Best-effort integer conversion for loosely typed upstream fields."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def coerce_count(value: object) -> int | None:
    """Integer count; negative or unparsable values are unknown."""
    count = coerce_int(value)
    return count if count is not None and count >= 0 else None


def coerce_str(value: object) -> str | None:
    """Stripped string, or None for blanks and non-string values."""
    if not isinstance(value, str):
        return None
    return value.strip() or None


def int_list(value: object) -> list[int]:
    """Integer members of a list field; anything else yields an empty list."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, int) and not isinstance(item, bool)]

"""
Data Aggregator

Single entry point for list/search/schedule/detail reads. Hides the
multi-provider fan-out and the cache freshness decision from request
handlers:

    cache check -> fetch (concurrent, per-call timeout) -> merge
      -> cache write -> served
    all providers failed -> stale cache entry, else AllProvidersFailed
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from app.schemas import AnimeSummary, ScheduleEntry
from app.services.cache_layer import CacheLayer
from app.services.errors import (
    AllProvidersFailed,
    NotFound,
    UpstreamError,
    UpstreamRateLimited,
    ValidationError,
)
from app.services.fetch_types import AdapterOutcome
from app.services.provider_adapter import Capability, ProviderAdapter
from app.utils.data_merging import merge_schedule, merge_summaries, with_platform_link
from app.utils.logging_helpers import log_fanout_start, log_fanout_summary
from app.utils.time_helpers import is_valid_day, utc_now


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50
MAX_SEARCH_LIMIT = 50

AdapterCall = Callable[[ProviderAdapter], Awaitable[Any]]
PayloadBuilder = Callable[[list[list[Any]]], Any]


@dataclass(slots=True)
class AggregatorOptions:
    """Per-operation TTLs (seconds) and rate-limit backoff policy"""
    list_cache_ttl: int = 3600
    search_cache_ttl: int = 600
    schedule_cache_ttl: int = 1800
    detail_cache_ttl: int = 3600
    rate_limit_max_retries: int = 1
    rate_limit_backoff: float = 1.0

    @classmethod
    def from_settings(cls, config) -> "AggregatorOptions":
        return cls(
            list_cache_ttl=config.list_cache_ttl_sec,
            search_cache_ttl=config.search_cache_ttl_sec,
            schedule_cache_ttl=config.schedule_cache_ttl_sec,
            detail_cache_ttl=config.detail_cache_ttl_sec,
            rate_limit_max_retries=config.rate_limit_max_retries,
            rate_limit_backoff=config.rate_limit_backoff_sec,
        )


def list_cache_key(page: int, page_size: int) -> str:
    return f"list:page={page}:size={page_size}"


def search_cache_key(keyword: str, limit: int) -> str:
    return f"search:q={keyword}:limit={limit}"


def schedule_cache_key(day: int | None) -> str:
    return f"schedule:day={day if day is not None else 'all'}"


def detail_cache_key(anime_id: str) -> str:
    return f"detail:id={anime_id}"


class DataAggregator:
    """
    Merges results from an ordered sequence of adapters through a shared cache.

    Adapter order is merge priority: for duplicate identifiers the first
    configured adapter's record wins, whatever order the calls finish in.
    Holds no mutable state of its own; everything shared lives in the cache.
    """

    def __init__(
        self,
        adapters: Sequence[ProviderAdapter],
        cache: CacheLayer,
        options: AggregatorOptions | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.adapters = list(adapters)
        self.cache = cache
        self.options = options or AggregatorOptions()
        self._sleep = sleep

    def providers(self) -> list[str]:
        """Configured provider names in priority order"""
        return [adapter.name for adapter in self.adapters]

    def adapters_for(self, capability: Capability) -> list[ProviderAdapter]:
        return [adapter for adapter in self.adapters if adapter.supports(capability)]

    async def get_anime_list(
        self,
        page: int,
        page_size: int,
        force_refresh: bool = False
    ) -> list[AnimeSummary]:
        """
        One page of the merged anime list

        Every adapter is asked for the same page/page_size; there is no
        cross-provider pagination.

        Raises:
            ValidationError: page < 1 or page_size outside 1..50
            AllProvidersFailed: Every adapter failed and nothing is cached
        """
        if not _is_int(page) or page < 1:
            raise ValidationError("page must be an integer >= 1", "page")
        if not _is_int(page_size) or not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"pageSize must be between 1 and {MAX_PAGE_SIZE}", "pageSize")

        payload = await self._resolve(
            list_cache_key(page, page_size),
            self.adapters_for(Capability.LIST),
            lambda adapter: adapter.fetch_list(page, page_size),
            lambda results: _summaries_payload(results, limit=page_size),
            ttl=self.options.list_cache_ttl,
            force_refresh=force_refresh,
        )
        return [AnimeSummary.model_validate(item) for item in payload]

    async def search_anime(self, keyword: str, limit: int = 20) -> list[AnimeSummary]:
        """
        Cross-provider keyword search, truncated to limit

        Provider relevance order is kept; there is no re-ranking across
        providers.
        """
        keyword = keyword.strip() if isinstance(keyword, str) else ""
        if not keyword:
            raise ValidationError("Search keyword must not be empty", "q")
        if not _is_int(limit) or not 1 <= limit <= MAX_SEARCH_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_SEARCH_LIMIT}", "limit")

        payload = await self._resolve(
            search_cache_key(keyword, limit),
            self.adapters_for(Capability.SEARCH),
            lambda adapter: adapter.search(keyword, limit),
            lambda results: _summaries_payload(results, limit=limit),
            ttl=self.options.search_cache_ttl,
        )
        return [AnimeSummary.model_validate(item) for item in payload]

    async def get_schedule(self, day: int | None = None) -> list[ScheduleEntry]:
        """Weekly airing schedule from schedule-capable adapters, sorted by (day, air time)"""
        if day is not None and not is_valid_day(day):
            raise ValidationError("day must be an integer between 1 (Monday) and 7 (Sunday)", "day")

        payload = await self._resolve(
            schedule_cache_key(day),
            self.adapters_for(Capability.SCHEDULE),
            lambda adapter: adapter.fetch_schedule(day),
            _schedule_payload,
            ttl=self.options.schedule_cache_ttl,
        )
        return [ScheduleEntry.model_validate(item) for item in payload]

    async def get_anime_detail(self, anime_id: str, force_refresh: bool = False) -> AnimeSummary:
        """
        One anime by identifier

        Prefixed ids ('tmdb:1429') go to the owning adapter only; bare ids
        are tried on every detail-capable adapter and the highest-priority
        hit wins.

        Raises:
            NotFound: Every asked adapter confirmed the id does not exist
        """
        anime_id = anime_id.strip() if isinstance(anime_id, str) else ""
        if not anime_id:
            raise ValidationError("Anime id must not be empty", "id")

        candidates = self.adapters_for(Capability.DETAIL)
        owners = [adapter for adapter in candidates if adapter.owns_identifier(anime_id)]
        if owners:
            candidates = owners
        elif ":" in anime_id:
            # Prefixed with a provider we do not run
            raise NotFound(anime_id)

        payload = await self._resolve(
            detail_cache_key(anime_id),
            candidates,
            lambda adapter: adapter.fetch_detail(anime_id),
            _first_payload,
            ttl=self.options.detail_cache_ttl,
            force_refresh=force_refresh,
            missing_id=anime_id,
        )
        return AnimeSummary.model_validate(payload)

    async def _resolve(
        self,
        key: str,
        adapters: list[ProviderAdapter],
        call: AdapterCall,
        build_payload: PayloadBuilder,
        *,
        ttl: int,
        force_refresh: bool = False,
        missing_id: str | None = None,
    ) -> Any:
        """Run one operation through cache check, fan-out, merge and cache write."""
        if force_refresh:
            logger.info("FORCE REFRESH: %s", key)
        elif not await self.cache.is_stale(key, ttl):
            entry = await self.cache.get(key)
            if entry is not None:
                logger.debug("CACHE HIT (fresh): %s", key)
                return entry.payload

        log_fanout_start(logger, key, [adapter.name for adapter in adapters])
        outcomes = await self._fan_out(adapters, call)
        succeeded = [outcome for outcome in outcomes if outcome.succeeded]

        if succeeded:
            payload = build_payload([outcome.items for outcome in succeeded])
            log_fanout_summary(logger, key, outcomes, len(payload) if isinstance(payload, list) else 1)
            await self._write_cache(key, payload, ttl)
            return payload

        # Unconfigured adapters were never asked and cannot vouch for the id
        asked = [outcome for outcome in outcomes if outcome.status != "skipped"]
        if missing_id is not None and asked and all(o.status == "not_found" for o in asked):
            await self.cache.invalidate(key)
            raise NotFound(missing_id)

        stale = await self.cache.get(key)
        if stale is not None:
            logger.warning(
                "All providers failed for %s; serving stale cache (age=%.0fs)",
                key,
                stale.age_seconds(self.cache.now()),
            )
            return stale.payload

        logger.error(
            "All providers failed for %s and no cache entry exists: %s",
            key,
            [outcome.to_dict() for outcome in outcomes],
        )
        raise AllProvidersFailed(key, outcomes)

    async def _write_cache(self, key: str, payload: Any, ttl: int) -> None:
        try:
            await self.cache.set(key, payload, ttl)
        except SQLAlchemyError as exc:
            # The fresh result is still served; the next request refetches
            logger.error("Failed to write cache entry %s: %s", key, exc, exc_info=True)

    async def _fan_out(self, adapters: list[ProviderAdapter], call: AdapterCall) -> list[AdapterOutcome]:
        tasks = [
            asyncio.create_task(self._call_adapter(index, adapter, call))
            for index, adapter in enumerate(adapters)
        ]
        outcomes = await asyncio.gather(*tasks)
        outcomes.sort(key=lambda outcome: outcome.index)
        return outcomes

    async def _call_adapter(self, index: int, adapter: ProviderAdapter, call: AdapterCall) -> AdapterOutcome:
        """Run one adapter call and capture its result or failure as an outcome."""
        started_at = utc_now()

        def outcome(status, items=None, error=None, attempts=1) -> AdapterOutcome:
            return AdapterOutcome(
                index=index,
                provider=adapter.name,
                status=status,
                started_at=started_at,
                completed_at=utc_now(),
                items=items or [],
                error=error,
                attempts=attempts,
            )

        if not adapter.is_configured():
            logger.warning("[%s] Skipped: provider credentials not configured", adapter.name)
            return outcome("skipped", error="provider not configured", attempts=0)

        attempts = 0
        loop = asyncio.get_running_loop()
        deadline = loop.time() + adapter.timeout

        async def call_with_backoff():
            nonlocal attempts
            while True:
                attempts += 1
                try:
                    return await call(adapter)
                except UpstreamRateLimited as exc:
                    if attempts > self.options.rate_limit_max_retries:
                        raise
                    delay = self._backoff_delay(exc, attempts)
                    if loop.time() + delay >= deadline:
                        raise
                    logger.warning(
                        "[%s] Rate limited, retrying in %.1fs (attempt %s)",
                        adapter.name,
                        delay,
                        attempts,
                    )
                    await self._sleep(delay)

        try:
            result = await asyncio.wait_for(call_with_backoff(), timeout=adapter.timeout)
        except asyncio.TimeoutError:
            logger.error("[%s] Timed out after %ss", adapter.name, adapter.timeout)
            return outcome("timeout", error=f"timed out after {adapter.timeout}s", attempts=attempts)
        except UpstreamRateLimited as exc:
            logger.warning("[%s] Still rate limited after %s attempt(s)", adapter.name, attempts)
            return outcome("rate_limited", error=str(exc), attempts=attempts)
        except NotFound as exc:
            logger.info("[%s] %s", adapter.name, exc)
            return outcome("not_found", error=str(exc), attempts=attempts)
        except UpstreamError as exc:
            logger.error("[%s] Upstream failure: %s", adapter.name, exc)
            return outcome("failed", error=str(exc), attempts=attempts)
        except Exception as exc:
            logger.error("[%s] Unexpected adapter error: %s", adapter.name, exc, exc_info=True)
            return outcome("failed", error=f"{type(exc).__name__}: {exc}", attempts=attempts)

        items = result if isinstance(result, list) else [result]
        logger.debug("[%s] Returned %s item(s) in %s attempt(s)", adapter.name, len(items), attempts)
        return outcome("success", items=items, attempts=attempts)

    def _backoff_delay(self, exc: UpstreamRateLimited, attempt: int) -> float:
        if exc.retry_after is not None:
            return exc.retry_after
        return self.options.rate_limit_backoff * (2 ** (attempt - 1))


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _summaries_payload(results: list[list[AnimeSummary]], limit: int) -> list[dict]:
    merged, duplicates = merge_summaries(results)
    if duplicates:
        logger.debug("Dropped %s duplicate item(s) while merging", duplicates)
    return [summary.model_dump(mode="json", by_alias=True) for summary in merged[:limit]]


def _schedule_payload(results: list[list[ScheduleEntry]]) -> list[dict]:
    merged, duplicates = merge_schedule(results)
    if duplicates:
        logger.debug("Dropped %s duplicate schedule entr(ies) while merging", duplicates)
    return [entry.model_dump(mode="json", by_alias=True) for entry in merged]


def _first_payload(results: list[list[AnimeSummary]]) -> dict:
    # Outcomes arrive in priority order; the first success wins
    return with_platform_link(results[0][0]).model_dump(mode="json", by_alias=True)

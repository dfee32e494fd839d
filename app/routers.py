from typing import Annotated
import logging

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_aggregator, get_cache
from app.schemas import (
    AnimeDetailResponse,
    AnimeListResponse,
    ScheduleData,
    ScheduleResponse,
    SearchData,
    SearchResponse,
)
from app.services.cache_layer import CacheLayer
from app.services.data_aggregator import MAX_PAGE_SIZE, MAX_SEARCH_LIMIT, DataAggregator
from app.services.errors import ValidationError
from app.services.scheduler_service import cache_scheduler
from app.utils.responses import estimate_pagination, response_meta
from app.utils.time_helpers import day_name


logger = logging.getLogger(__name__)

main_router = APIRouter()

DEFAULT_PAGE_SIZE = 20
DEFAULT_SEARCH_LIMIT = 20
TRUTHY = {"true", "1"}


def parse_positive_int(value: str | None, name: str, default: int) -> int:
    """
    Parse an integer query parameter that must be >= 1

    Raises:
        ValidationError: When the value is not an integer or is below 1
    """
    if value is None or value.strip() == "":
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {name} parameter. Must be a positive integer.", name)
    if parsed < 1:
        raise ValidationError(f"Invalid {name} parameter. Must be a positive integer.", name)
    return parsed


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    return {
        "service": "Anime Aggregation Service",
        "version": "0.1.0",
        "endpoints": {
            "list": "/anime - Merged anime list (page, pageSize, refresh)",
            "search": "/anime/search - Keyword search (q, limit)",
            "schedule": "/anime/schedule - Weekly airing schedule (day)",
            "detail": "/anime/{id} - Anime detail",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check(
    aggregator: Annotated[DataAggregator, Depends(get_aggregator)],
    cache: Annotated[CacheLayer, Depends(get_cache)],
) -> dict:
    """Health check endpoint"""
    next_run = cache_scheduler.get_next_run_time()
    return {
        "status": "ok",
        "providers": aggregator.providers(),
        "cache": await cache.stats(),
        "scheduler_running": cache_scheduler.is_running(),
        "next_cache_cleanup": next_run.isoformat() if next_run else None
    }


@main_router.get("/anime", response_model=AnimeListResponse)
async def get_anime_list(
    aggregator: Annotated[DataAggregator, Depends(get_aggregator)],
    page: str | None = None,
    page_size: Annotated[str | None, Query(alias="pageSize")] = None,
    refresh: str | None = None,
) -> AnimeListResponse:
    """
    Merged anime list from every list-capable provider

    pageSize above 50 is clamped; refresh=true bypasses the cache.
    """
    page_number = parse_positive_int(page, "page", 1)
    size = min(parse_positive_int(page_size, "pageSize", DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    force_refresh = (refresh or "").strip().lower() in TRUTHY

    anime_list = await aggregator.get_anime_list(page_number, size, force_refresh)
    return AnimeListResponse(
        data=anime_list,
        meta=response_meta(estimate_pagination(page_number, size, len(anime_list))),
    )


@main_router.get("/anime/search", response_model=SearchResponse)
async def search_anime(
    aggregator: Annotated[DataAggregator, Depends(get_aggregator)],
    q: str | None = None,
    limit: str | None = None,
) -> SearchResponse:
    """Keyword search across providers"""
    keyword = (q or "").strip()
    if not keyword:
        raise ValidationError("Missing required parameter: q", "q")
    max_results = min(parse_positive_int(limit, "limit", DEFAULT_SEARCH_LIMIT), MAX_SEARCH_LIMIT)

    results = await aggregator.search_anime(keyword, max_results)
    return SearchResponse(
        data=SearchData(keyword=keyword, results=results, count=len(results)),
        meta=response_meta(),
    )


@main_router.get("/anime/schedule", response_model=ScheduleResponse)
async def get_schedule(
    aggregator: Annotated[DataAggregator, Depends(get_aggregator)],
    day: str | None = None,
) -> ScheduleResponse:
    """Weekly airing schedule, optionally for a single day (1=Monday ... 7=Sunday)"""
    day_number = None
    if day is not None:
        try:
            day_number = int(day.strip())
        except ValueError:
            day_number = 0
        if not 1 <= day_number <= 7:
            raise ValidationError(
                "Invalid day parameter. Must be an integer between 1 (Monday) and 7 (Sunday).",
                "day",
            )

    schedule = await aggregator.get_schedule(day_number)
    return ScheduleResponse(
        data=ScheduleData(
            schedule=schedule,
            count=len(schedule),
            day=day_number,
            day_name=day_name(day_number) if day_number is not None else None,
        ),
        meta=response_meta(),
    )


@main_router.get("/anime/{anime_id}", response_model=AnimeDetailResponse)
async def get_anime_detail(
    anime_id: str,
    aggregator: Annotated[DataAggregator, Depends(get_aggregator)],
    refresh: str | None = None,
) -> AnimeDetailResponse:
    """Single anime by provider-prefixed id (e.g. 'tmdb:1429')"""
    force_refresh = (refresh or "").strip().lower() in TRUTHY
    anime = await aggregator.get_anime_detail(anime_id, force_refresh)
    return AnimeDetailResponse(data=anime, meta=response_meta())

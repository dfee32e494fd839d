"""
TMDB Metadata Adapter

Fetches Japanese animation metadata from The Movie Database (TV endpoints)
and normalizes it into AnimeSummary records. Implements list, search and
detail; TMDB has no airing timetable.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import pydantic

from app.schemas import AnimeStatus, AnimeSummary
from app.services.errors import NotFound, UpstreamError
from app.services.provider_adapter import (
    DEFAULT_TIMEOUT_SEC,
    Capability,
    ProviderAdapter,
    ProviderKind,
    clamp_rating,
    coerce_count,
    coerce_int,
    coerce_str,
    int_list,
)
from app.utils.time_helpers import parse_year


logger = logging.getLogger(__name__)

ANIMATION_GENRE_ID = 16
TMDB_RESULTS_PER_PAGE = 20
TMDB_MAX_PAGE = 500  # discover/search reject pages beyond this

TV_GENRES = {
    16: "Animation",
    18: "Drama",
    35: "Comedy",
    37: "Western",
    80: "Crime",
    99: "Documentary",
    9648: "Mystery",
    10751: "Family",
    10759: "Action & Adventure",
    10762: "Kids",
    10763: "News",
    10764: "Reality",
    10765: "Sci-Fi & Fantasy",
    10766: "Soap",
    10767: "Talk",
    10768: "War & Politics",
}

STATUS_MAP = {
    "Ended": AnimeStatus.COMPLETED,
    "Canceled": AnimeStatus.COMPLETED,
    "Returning Series": AnimeStatus.AIRING,
    "In Production": AnimeStatus.AIRING,
    "Planned": AnimeStatus.UPCOMING,
    "Pilot": AnimeStatus.UPCOMING,
}


class TMDBAdapter(ProviderAdapter):
    """Metadata adapter backed by the TMDB v3 API (bearer token auth)"""

    kind = ProviderKind.TMDB
    capabilities = frozenset({Capability.LIST, Capability.SEARCH, Capability.DETAIL})
    max_page_size = 50

    def __init__(
        self,
        api_token: str | None,
        *,
        base_url: str = "https://api.themoviedb.org/3",
        image_base_url: str = "https://image.tmdb.org/t/p/w500",
        language: str = "zh-CN",
        origin_country: str = "JP",
        timeout: float = DEFAULT_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.api_token = api_token
        self.image_base_url = image_base_url.rstrip("/")
        self.language = language
        self.origin_country = origin_country

    def is_configured(self) -> bool:
        return bool(self.api_token)

    def _default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
        }

    async def fetch_list(self, page: int, page_size: int) -> list[AnimeSummary]:
        """
        Popular Japanese animation, most popular first

        TMDB pages hold a fixed 20 results, so the requested window is
        mapped onto the upstream pages that cover it and sliced.
        """
        self._require_configured("TMDB_API_TOKEN")
        page_size = min(page_size, self.max_page_size)
        offset = (page - 1) * page_size
        first_page = offset // TMDB_RESULTS_PER_PAGE + 1
        last_page = (offset + page_size - 1) // TMDB_RESULTS_PER_PAGE + 1
        if first_page > TMDB_MAX_PAGE:
            return []
        upstream_pages = range(first_page, min(last_page, TMDB_MAX_PAGE) + 1)

        logger.info(
            "[tmdb] Fetching list page=%s size=%s (upstream pages %s-%s)",
            page, page_size, upstream_pages.start, upstream_pages.stop - 1,
        )
        tasks = [
            asyncio.create_task(self._discover_page(upstream_page))
            for upstream_page in upstream_pages
        ]
        try:
            payloads = await asyncio.gather(*tasks)
        except BaseException:
            # One failed page fails the window; stop the sibling requests
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        raw_items: list[dict] = []
        total_pages: int | None = None
        for payload in payloads:
            raw_items.extend(self._results_of(payload))
            total_pages = coerce_int(payload.get("total_pages"))

        start = offset - (first_page - 1) * TMDB_RESULTS_PER_PAGE
        window = raw_items[start:start + page_size]
        logger.debug("[tmdb] %s raw results, %s in window (total pages: %s)", len(raw_items), len(window), total_pages)
        return self._normalize_many(window)

    async def search(self, keyword: str, limit: int) -> list[AnimeSummary]:
        """Search TV titles, keeping only results tagged as animation"""
        self._require_configured("TMDB_API_TOKEN")
        payload = await self._get_json(
            "/search/tv",
            {"query": keyword, "language": self.language, "page": 1, "include_adult": "false"},
        )
        animated = [
            item for item in self._results_of(payload)
            if ANIMATION_GENRE_ID in int_list(item.get("genre_ids"))
        ]
        logger.info("[tmdb] Search '%s': %s animation result(s)", keyword, len(animated))
        return self._normalize_many(animated)[:limit]

    async def fetch_detail(self, anime_id: str) -> AnimeSummary:
        self._require_configured("TMDB_API_TOKEN")
        native_id = self.parse_identifier(anime_id)
        if not native_id.isdigit():
            raise NotFound(anime_id)

        try:
            payload = await self._get_json(f"/tv/{native_id}", {"language": self.language})
        except UpstreamError as exc:
            if exc.status_code == 404:
                raise NotFound(anime_id) from exc
            raise

        if not isinstance(payload, dict):
            raise UpstreamError(self.name, "unexpected detail payload")
        summary = self.to_summary(payload)
        if summary is None:
            raise NotFound(anime_id)
        return summary

    async def _discover_page(self, upstream_page: int) -> dict:
        payload = await self._get_json(
            "/discover/tv",
            {
                "with_genres": ANIMATION_GENRE_ID,
                "with_origin_country": self.origin_country,
                "sort_by": "popularity.desc",
                "page": upstream_page,
                "language": self.language,
            },
        )
        if not isinstance(payload, dict):
            raise UpstreamError(self.name, "unexpected list payload")
        return payload

    def _results_of(self, payload: Any) -> list[dict]:
        if not isinstance(payload, dict):
            raise UpstreamError(self.name, "unexpected payload shape")
        results = payload.get("results")
        if results is None:
            return []
        if not isinstance(results, list):
            raise UpstreamError(self.name, "'results' is not a list")
        return [item for item in results if isinstance(item, dict)]

    def _normalize_many(self, items: list[dict]) -> list[AnimeSummary]:
        summaries = []
        for item in items:
            summary = self.to_summary(item)
            if summary is not None:
                summaries.append(summary)
        return summaries

    def to_summary(self, raw: dict) -> AnimeSummary | None:
        """
        Convert a TMDB TV object

        Records without id or title, or that still fail validation after
        normalization, are dropped; malformed optional fields become None.
        """
        native_id = coerce_int(raw.get("id"))
        title = coerce_str(raw.get("name")) or coerce_str(raw.get("original_name"))
        if native_id is None or not title:
            logger.debug("[tmdb] Dropping malformed record: id=%r", raw.get("id"))
            return None

        original_name = coerce_str(raw.get("original_name"))
        rating = clamp_rating(raw.get("vote_average"))
        if raw.get("vote_count") == 0:
            rating = None

        try:
            return AnimeSummary(
                id=self.make_id(native_id),
                title=title,
                title_aliases=[original_name] if original_name and original_name != title else [],
                cover_url=self.build_image_url(raw.get("poster_path")),
                synopsis=coerce_str(raw.get("overview")),
                rating=rating,
                status=self.map_status(raw.get("status")),
                release_year=parse_year(raw.get("first_air_date")),
                episode_count=coerce_count(raw.get("number_of_episodes")),
                genres=self._genre_names(raw),
                platform=self.name,
                play_url=f"https://www.themoviedb.org/tv/{native_id}",
            )
        except pydantic.ValidationError as exc:
            logger.debug("[tmdb] Dropping invalid record id=%s: %s", native_id, exc)
            return None

    def build_image_url(self, path: object) -> str | None:
        path = coerce_str(path)
        if not path:
            return None
        return f"{self.image_base_url}/{path.lstrip('/')}"

    @staticmethod
    def map_status(status: object) -> AnimeStatus:
        """Unknown or missing statuses fall back to upcoming"""
        if isinstance(status, str):
            return STATUS_MAP.get(status.strip(), AnimeStatus.UPCOMING)
        return AnimeStatus.UPCOMING

    @staticmethod
    def _genre_names(raw: dict) -> list[str]:
        # Detail payloads carry named genres, list/search payloads only ids
        if isinstance(raw.get("genres"), list):
            return [
                g["name"] for g in raw["genres"]
                if isinstance(g, dict) and isinstance(g.get("name"), str)
            ]
        return [TV_GENRES[gid] for gid in int_list(raw.get("genre_ids")) if gid in TV_GENRES]

"""
Bilibili Schedule Adapter

Normalizes the Bilibili PGC (bangumi) APIs: the weekly airing timeline,
plus the popularity ranking, bangumi search and season detail endpoints.
Bilibili wraps every payload in a {code, message, result|data} envelope
and reports some failures with HTTP 200 and a negative code.
"""
from __future__ import annotations

import logging
import re
from typing import Any

import httpx
import pydantic

from app.schemas import AnimeStatus, AnimeSummary, ScheduleEntry
from app.services.errors import NotFound, UpstreamError, UpstreamRateLimited
from app.services.provider_adapter import (
    DEFAULT_TIMEOUT_SEC,
    Capability,
    ProviderAdapter,
    ProviderKind,
    clamp_rating,
    coerce_count,
    coerce_int,
    coerce_str,
)
from app.utils.time_helpers import is_valid_day, normalize_air_time


logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Referer": "https://www.bilibili.com/",
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
}

NOT_FOUND_CODES = {-404}
RATE_LIMIT_CODES = {-509, -799}
PLAY_URL_TEMPLATE = "https://www.bilibili.com/bangumi/play/ss{season_id}"

_TAG_RE = re.compile(r"<[^>]+>")
_DIGITS_RE = re.compile(r"\d+")


class BilibiliAdapter(ProviderAdapter):
    """Schedule adapter for Bilibili bangumi; also serves ranking, search and detail"""

    kind = ProviderKind.BILIBILI
    capabilities = frozenset(
        {Capability.SCHEDULE, Capability.LIST, Capability.SEARCH, Capability.DETAIL}
    )
    max_page_size = 50

    def __init__(
        self,
        *,
        base_url: str = "https://api.bilibili.com",
        timeout: float = DEFAULT_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, transport=transport)

    def _default_headers(self) -> dict[str, str]:
        return dict(BROWSER_HEADERS)

    async def fetch_schedule(self, day: int | None = None) -> list[ScheduleEntry]:
        """
        Weekly airing timeline, sorted by day then air time

        Args:
            day: 1 (Monday) to 7 (Sunday); None returns all seven days
        """
        payload = await self._get_json("/pgc/web/timeline", {"types": 1, "before": 0, "after": 6})
        days = self._unwrap(payload, "result")
        if not isinstance(days, list):
            raise UpstreamError(self.name, "timeline result is not a list")

        entries: list[ScheduleEntry] = []
        dropped = 0
        for timeline_day in days:
            if not isinstance(timeline_day, dict):
                continue
            day_of_week = coerce_int(timeline_day.get("day_of_week"))
            episodes = timeline_day.get("episodes")
            if not isinstance(episodes, list):
                continue
            if not is_valid_day(day_of_week):
                dropped += len(episodes)
                continue
            if day is not None and day_of_week != day:
                continue
            for episode in episodes:
                entry = self.to_schedule_entry(episode, day_of_week) if isinstance(episode, dict) else None
                if entry is None:
                    dropped += 1
                else:
                    entries.append(entry)

        if dropped:
            logger.warning("[bilibili] Dropped %s timeline entries without a valid day or time", dropped)
        entries.sort(key=lambda entry: (entry.day_of_week, entry.air_time))
        logger.info("[bilibili] Schedule (day=%s): %s entries", day or "all", len(entries))
        return entries

    async def fetch_list(self, page: int, page_size: int) -> list[AnimeSummary]:
        """Three-day popularity ranking; the upstream returns one unpaged list"""
        payload = await self._get_json("/pgc/web/rank/list", {"day": 3, "season_type": 1})
        result = self._unwrap(payload, "result")
        ranked = result.get("list") if isinstance(result, dict) else None
        if not isinstance(ranked, list):
            raise UpstreamError(self.name, "rank result has no list")

        page_size = min(page_size, self.max_page_size)
        start = (page - 1) * page_size
        return self._normalize_many(ranked[start:start + page_size])

    async def search(self, keyword: str, limit: int) -> list[AnimeSummary]:
        payload = await self._get_json(
            "/x/web-interface/search/type",
            {"search_type": "media_bangumi", "keyword": keyword, "page": 1, "pagesize": limit},
        )
        data = self._unwrap(payload, "data")
        results = data.get("result") if isinstance(data, dict) else None
        if not results:
            # Bilibili omits 'result' entirely when nothing matches
            return []
        if not isinstance(results, list):
            raise UpstreamError(self.name, "search result is not a list")
        return self._normalize_many(results)[:limit]

    async def fetch_detail(self, anime_id: str) -> AnimeSummary:
        native_id = self.parse_identifier(anime_id)
        if not native_id.isdigit():
            raise NotFound(anime_id)

        try:
            payload = await self._get_json("/pgc/view/web/season", {"season_id": native_id})
            result = self._unwrap(payload, "result")
        except UpstreamError as exc:
            if exc.status_code == 404 or exc.status_code in NOT_FOUND_CODES:
                raise NotFound(anime_id) from exc
            raise

        summary = self.to_summary(result) if isinstance(result, dict) else None
        if summary is None:
            raise NotFound(anime_id)
        return summary

    def _unwrap(self, payload: Any, key: str) -> Any:
        """Return payload[key] after checking the Bilibili status code"""
        if not isinstance(payload, dict):
            raise UpstreamError(self.name, "unexpected payload shape")
        code = coerce_int(payload.get("code"))
        if code in RATE_LIMIT_CODES:
            raise UpstreamRateLimited(self.name)
        if code not in (0, None):
            raise UpstreamError(
                self.name,
                f"API code {code}: {payload.get('message', '')}",
                status_code=code,
            )
        return payload.get(key)

    def _normalize_many(self, items: list) -> list[AnimeSummary]:
        summaries = []
        for item in items:
            summary = self.to_summary(item) if isinstance(item, dict) else None
            if summary is not None:
                summaries.append(summary)
        return summaries

    def to_summary(self, raw: dict) -> AnimeSummary | None:
        """
        Convert a season item from ranking, search or detail payloads

        Malformed optional fields become None; records that still fail
        validation are dropped.
        """
        season_id = coerce_int(raw.get("season_id")) or coerce_int(raw.get("media_id"))
        title = strip_tags(coerce_str(raw.get("title")) or coerce_str(raw.get("season_title")) or "")
        if season_id is None or not title:
            logger.debug("[bilibili] Dropping malformed record: season_id=%r", raw.get("season_id"))
            return None

        aliases = [
            strip_tags(value)
            for value in (raw.get("origin_name"), raw.get("org_title"), raw.get("alias"))
            if isinstance(value, str)
        ]

        try:
            return AnimeSummary(
                id=self.make_id(season_id),
                title=title,
                title_aliases=[alias for alias in aliases if alias != title],
                cover_url=normalize_image_url(raw.get("cover")) or normalize_image_url(raw.get("square_cover")),
                synopsis=coerce_str(raw.get("evaluate")) or coerce_str(raw.get("desc")),
                rating=self._parse_rating(raw),
                status=self.map_status(raw.get("is_finish")),
                release_year=coerce_int(raw.get("season_year")),
                episode_count=self._episode_count(raw),
                genres=self._parse_styles(raw.get("styles")),
                platform=self.name,
                play_url=coerce_str(raw.get("url")) or PLAY_URL_TEMPLATE.format(season_id=season_id),
            )
        except pydantic.ValidationError as exc:
            logger.debug("[bilibili] Dropping invalid record season_id=%s: %s", season_id, exc)
            return None

    def to_schedule_entry(self, episode: dict, day_of_week: int) -> ScheduleEntry | None:
        season_id = coerce_int(episode.get("season_id"))
        title = strip_tags(coerce_str(episode.get("title")) or "")
        air_time = normalize_air_time(episode.get("pub_time"))
        if season_id is None or not title or air_time is None:
            return None
        try:
            return ScheduleEntry(
                anime_id=self.make_id(season_id),
                title=title,
                day_of_week=day_of_week,
                air_time=air_time,
                platform=self.name,
                cover_url=normalize_image_url(episode.get("cover")) or normalize_image_url(episode.get("square_cover")),
                latest_episode=parse_episode_number(episode.get("pub_index")),
            )
        except pydantic.ValidationError as exc:
            logger.debug("[bilibili] Dropping invalid timeline entry season_id=%s: %s", season_id, exc)
            return None

    @staticmethod
    def map_status(is_finish: object) -> AnimeStatus:
        if is_finish == 1:
            return AnimeStatus.COMPLETED
        if is_finish == 0:
            return AnimeStatus.AIRING
        return AnimeStatus.UPCOMING

    @staticmethod
    def _parse_rating(raw: dict) -> float | None:
        # Rating arrives as {"score": 9.7}, "9.7", or media_score in search results
        rating = raw.get("rating")
        if isinstance(rating, dict):
            return clamp_rating(rating.get("score"))
        if isinstance(rating, str) and rating.strip():
            return clamp_rating(rating.replace("分", ""))
        media_score = raw.get("media_score")
        if isinstance(media_score, dict) and media_score.get("user_count"):
            return clamp_rating(media_score.get("score"))
        return None

    @staticmethod
    def _episode_count(raw: dict) -> int | None:
        # -1 means "unknown / still airing"
        count = coerce_count(raw.get("total_count"))
        if not count:
            count = coerce_count(raw.get("ep_size"))
        return count or None

    @staticmethod
    def _parse_styles(styles: object) -> list[str]:
        if isinstance(styles, str):
            return [style.strip() for style in styles.split("/") if style.strip()]
        if isinstance(styles, list):
            names = []
            for style in styles:
                if isinstance(style, str):
                    names.append(style)
                elif isinstance(style, dict) and isinstance(style.get("name"), str):
                    names.append(style["name"])
            return names
        return []


def strip_tags(value: str) -> str:
    """Remove keyword highlight markup such as <em class="keyword">"""
    return _TAG_RE.sub("", value).strip()


def normalize_image_url(url: object) -> str | None:
    if not isinstance(url, str) or not url.strip():
        return None
    url = url.strip()
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def parse_episode_number(index_show: object) -> int | None:
    """Extract the episode number from labels like '第12话' or 'EP12'"""
    if not isinstance(index_show, str):
        return None
    match = _DIGITS_RE.search(index_show)
    return int(match.group(0)) if match else None

"""Shared fixtures: in-process fake adapters, a controllable clock, and a memory cache."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.schemas import AnimeSummary, ScheduleEntry
from app.services.cache_layer import CacheLayer, MemoryCacheBackend
from app.services.provider_adapter import Capability, ProviderAdapter


ALL_CAPABILITIES = frozenset(Capability)


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeAdapter(ProviderAdapter):
    """
    Adapter returning canned results.

    Each capability result may be a value, an exception instance to raise,
    or a list of those consumed one per call.
    """

    def __init__(
        self,
        name: str,
        *,
        items=None,
        schedule=None,
        detail=None,
        delay: float = 0.0,
        timeout: float = 1.0,
        configured: bool = True,
        capabilities=ALL_CAPABILITIES,
    ):
        super().__init__("http://fake.invalid", timeout=timeout)
        self._name = name
        self.capabilities = frozenset(capabilities)
        self._items = items if items is not None else []
        self._schedule = schedule if schedule is not None else []
        self._detail = detail
        self.delay = delay
        self.configured = configured
        self.calls: dict[str, int] = {"list": 0, "search": 0, "detail": 0, "schedule": 0}

    @property
    def name(self) -> str:
        return self._name

    def is_configured(self) -> bool:
        return self.configured

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def _respond(self, operation: str, response):
        self.calls[operation] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(response, tuple):
            # Sequence of per-call responses; the last one repeats
            index = min(self.calls[operation], len(response)) - 1
            response = response[index]
        if isinstance(response, BaseException):
            raise response
        return response

    async def fetch_list(self, page, page_size):
        return await self._respond("list", self._items)

    async def search(self, keyword, limit):
        return await self._respond("search", self._items)

    async def fetch_detail(self, anime_id):
        return await self._respond("detail", self._detail)

    async def fetch_schedule(self, day=None):
        return await self._respond("schedule", self._schedule)


def make_summary(anime_id: str, title: str, platform: str = "fake", **extra) -> AnimeSummary:
    return AnimeSummary(id=anime_id, title=title, platform=platform, **extra)


def make_entry(anime_id: str, day: int, air_time: str, platform: str = "fake", title: str | None = None) -> ScheduleEntry:
    return ScheduleEntry(
        anime_id=anime_id,
        title=title or f"Show {anime_id}",
        day_of_week=day,
        air_time=air_time,
        platform=platform,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheLayer(MemoryCacheBackend(), clock=clock)

import asyncio

import httpx
import pytest

from app.schemas import AnimeStatus
from app.services.data_aggregator import DataAggregator
from app.services.errors import NotFound, ProviderNotConfigured, UpstreamError, UpstreamRateLimited
from app.services.tmdb_adapter import TMDBAdapter


def tv(native_id, name="Show", **extra):
    return {
        "id": native_id,
        "name": name,
        "original_name": extra.pop("original_name", name),
        "overview": "",
        "poster_path": f"/poster{native_id}.jpg",
        "vote_average": 8.0,
        "vote_count": 100,
        "first_air_date": "2023-09-29",
        "genre_ids": [16, 10759],
        **extra,
    }


def make_adapter(handler, token="secret-token"):
    return TMDBAdapter(token, base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_list_maps_window_onto_upstream_pages():
    requested_pages = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/discover/tv"
        assert request.headers["Authorization"] == "Bearer secret-token"
        page = int(request.url.params["page"])
        requested_pages.append(page)
        start = (page - 1) * 20
        return httpx.Response(200, json={
            "page": page,
            "total_pages": 10,
            "results": [tv(n, f"Show {n}") for n in range(start, start + 20)],
        })

    adapter = make_adapter(handler)
    result = await adapter.fetch_list(page=2, page_size=15)

    # Items 15..29 span upstream pages 1 and 2
    assert sorted(requested_pages) == [1, 2]
    assert [a.id for a in result] == [f"tmdb:{n}" for n in range(15, 30)]


@pytest.mark.asyncio
async def test_summary_normalization():
    def handler(request):
        return httpx.Response(200, json={"results": [
            tv(1429, "进击的巨人", original_name="進撃の巨人", overview="  ", status="Ended"),
            {"id": None, "name": "no id"},
            {"id": 5, "name": ""},
        ]})

    result = await make_adapter(handler).fetch_list(1, 20)

    assert len(result) == 1
    anime = result[0]
    assert anime.id == "tmdb:1429"
    assert anime.title == "进击的巨人"
    assert anime.title_aliases == ["進撃の巨人"]
    assert anime.synopsis is None
    assert anime.cover_url == "https://image.tmdb.org/t/p/w500/poster1429.jpg"
    assert anime.rating == 8.0
    assert anime.release_year == 2023
    assert anime.genres == ["Animation", "Action & Adventure"]
    assert anime.platform == "tmdb"


def test_unrated_record_has_no_rating():
    adapter = TMDBAdapter("t")
    anime = adapter.to_summary(tv(1, vote_average=0.0, vote_count=0))
    assert anime.rating is None


@pytest.mark.parametrize("status,expected", [
    ("Ended", AnimeStatus.COMPLETED),
    ("Returning Series", AnimeStatus.AIRING),
    ("Planned", AnimeStatus.UPCOMING),
    ("Something New", AnimeStatus.UPCOMING),
    (None, AnimeStatus.UPCOMING),
])
def test_status_mapping(status, expected):
    assert TMDBAdapter.map_status(status) == expected


@pytest.mark.asyncio
async def test_search_keeps_only_animation():
    def handler(request):
        assert request.url.path == "/3/search/tv"
        assert request.url.params["query"] == "frieren"
        return httpx.Response(200, json={"results": [
            tv(1, "Frieren"),
            tv(2, "Live action", genre_ids=[18]),
        ]})

    result = await make_adapter(handler).search("frieren", 10)

    assert [a.id for a in result] == ["tmdb:1"]


@pytest.mark.asyncio
async def test_detail_uses_named_genres_and_episode_count():
    def handler(request):
        assert request.url.path == "/3/tv/209867"
        return httpx.Response(200, json=tv(
            209867,
            "Frieren",
            genres=[{"id": 16, "name": "动画"}],
            number_of_episodes=28,
            status="Returning Series",
        ))

    anime = await make_adapter(handler).fetch_detail("tmdb:209867")

    assert anime.genres == ["动画"]
    assert anime.episode_count == 28
    assert anime.status == AnimeStatus.AIRING


@pytest.mark.asyncio
async def test_detail_404_is_not_found():
    adapter = make_adapter(lambda request: httpx.Response(404, json={"status_code": 34}))
    with pytest.raises(NotFound):
        await adapter.fetch_detail("tmdb:999")


@pytest.mark.asyncio
async def test_non_numeric_id_is_not_found_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(NotFound):
        await make_adapter(handler).fetch_detail("tmdb:abc")


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    adapter = make_adapter(lambda request: httpx.Response(429, headers={"Retry-After": "3"}))
    with pytest.raises(UpstreamRateLimited) as exc_info:
        await adapter.fetch_list(1, 20)
    assert exc_info.value.retry_after == 3.0


@pytest.mark.asyncio
async def test_server_error_and_bad_json_are_upstream_errors():
    adapter = make_adapter(lambda request: httpx.Response(503))
    with pytest.raises(UpstreamError) as exc_info:
        await adapter.fetch_list(1, 20)
    assert exc_info.value.status_code == 503

    adapter = make_adapter(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(UpstreamError):
        await adapter.search("x", 5)


@pytest.mark.asyncio
async def test_transport_error_is_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError):
        await make_adapter(handler).fetch_list(1, 20)


@pytest.mark.asyncio
async def test_missing_token_raises_not_configured():
    adapter = make_adapter(lambda request: httpx.Response(200, json={}), token=None)
    assert not adapter.is_configured()
    with pytest.raises(ProviderNotConfigured):
        await adapter.fetch_list(1, 20)


@pytest.mark.asyncio
async def test_malformed_optional_fields_do_not_drop_records():
    def handler(request):
        return httpx.Response(200, json={"results": [
            tv(1, "Good One"),
            tv(2, "Good Two"),
            tv(99, "Odd Types", overview=12345, original_name=["list"], first_air_date=2023,
               number_of_episodes=-3, poster_path={"path": "/x.jpg"}, genre_ids="16,18"),
        ]})

    result = await make_adapter(handler).fetch_list(1, 3)

    assert [a.id for a in result] == ["tmdb:1", "tmdb:2", "tmdb:99"]
    odd = result[2]
    assert odd.title == "Odd Types"
    assert odd.synopsis is None
    assert odd.title_aliases == []
    assert odd.release_year is None
    assert odd.episode_count is None
    assert odd.cover_url is None
    assert odd.genres == []


def test_non_string_name_falls_back_to_original_name():
    anime = TMDBAdapter("t").to_summary(tv(7, name=404, original_name="チェンソーマン"))

    assert anime.title == "チェンソーマン"


def test_record_without_usable_title_is_dropped():
    assert TMDBAdapter("t").to_summary(tv(7, name=None, original_name={"ja": "x"})) is None


@pytest.mark.asyncio
async def test_search_ignores_malformed_genre_ids():
    def handler(request):
        return httpx.Response(200, json={"results": [
            tv(1, "Animated"),
            tv(2, "Garbled", genre_ids=None),
            tv(3, "Also Garbled", genre_ids="16"),
        ]})

    result = await make_adapter(handler).search("any", 10)

    assert [a.id for a in result] == ["tmdb:1"]


@pytest.mark.asyncio
async def test_aggregated_list_keeps_records_with_bad_optional_fields(cache):
    def handler(request):
        return httpx.Response(200, json={"results": [
            tv(1), tv(2), {"id": 99, "name": "Bad", "overview": 12345},
        ]})

    aggregator = DataAggregator([make_adapter(handler)], cache)

    result = await aggregator.get_anime_list(1, 3)

    assert [a.id for a in result] == ["tmdb:1", "tmdb:2", "tmdb:99"]
    assert result[2].synopsis is None


@pytest.mark.asyncio
async def test_failed_page_cancels_sibling_page_requests():
    cancelled = []

    async def handler(request):
        page = int(request.url.params["page"])
        if page == 1:
            await asyncio.sleep(0.05)
            return httpx.Response(503, text="unavailable")
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.append(page)
            raise
        return httpx.Response(200, json={"results": [tv(n) for n in range(20, 40)]})

    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(UpstreamError) as exc_info:
        await make_adapter(handler).fetch_list(page=1, page_size=40)

    assert exc_info.value.status_code == 503
    assert cancelled == [2]
    assert loop.time() - started < 2

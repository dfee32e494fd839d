import httpx
import pytest

from app.schemas import AnimeStatus
from app.services.bilibili_adapter import (
    BilibiliAdapter,
    normalize_image_url,
    parse_episode_number,
    strip_tags,
)
from app.services.data_aggregator import DataAggregator
from app.services.errors import NotFound, UpstreamError, UpstreamRateLimited


TIMELINE = {
    "code": 0,
    "message": "success",
    "result": [
        {
            "day_of_week": 2,
            "episodes": [
                {"season_id": 300, "title": "Late Show", "pub_time": "23:30", "pub_index": "第5话",
                 "cover": "http://i0.hdslb.com/late.jpg"},
                {"season_id": 301, "title": "Early Show", "pub_time": "9:05", "pub_index": "EP12",
                 "square_cover": "//i0.hdslb.com/early.jpg"},
            ],
        },
        {
            "day_of_week": 1,
            "episodes": [
                {"season_id": 100, "title": "Monday Show", "pub_time": "18:00", "pub_index": "即将播出"},
                {"season_id": 101, "title": "Broken Time", "pub_time": "25:99"},
                {"season_id": None, "title": "No Id", "pub_time": "10:00"},
            ],
        },
        {"day_of_week": 9, "episodes": [{"season_id": 900, "title": "Bad Day", "pub_time": "10:00"}]},
    ],
}


def make_adapter(handler):
    return BilibiliAdapter(base_url="https://bili.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_schedule_is_sorted_and_drops_invalid_entries():
    def handler(request):
        assert request.url.path == "/pgc/web/timeline"
        assert request.headers["Referer"] == "https://www.bilibili.com/"
        return httpx.Response(200, json=TIMELINE)

    entries = await make_adapter(handler).fetch_schedule()

    assert [(e.anime_id, e.day_of_week, e.air_time) for e in entries] == [
        ("bilibili:100", 1, "18:00"),
        ("bilibili:301", 2, "09:05"),
        ("bilibili:300", 2, "23:30"),
    ]
    assert entries[1].latest_episode == 12
    assert entries[1].cover_url == "https://i0.hdslb.com/early.jpg"
    assert entries[2].cover_url == "https://i0.hdslb.com/late.jpg"
    assert entries[0].latest_episode is None


@pytest.mark.asyncio
async def test_schedule_filters_by_day():
    entries = await make_adapter(lambda request: httpx.Response(200, json=TIMELINE)).fetch_schedule(2)
    assert {e.day_of_week for e in entries} == {2}
    assert len(entries) == 2


@pytest.mark.asyncio
async def test_rank_list_is_sliced_by_page():
    ranked = [
        {"season_id": n, "title": f"Rank {n}", "rating": "9.5分", "is_finish": 0, "styles": "奇幻/冒险"}
        for n in range(1, 8)
    ]

    def handler(request):
        assert request.url.path == "/pgc/web/rank/list"
        return httpx.Response(200, json={"code": 0, "result": {"list": ranked}})

    result = await make_adapter(handler).fetch_list(page=2, page_size=3)

    assert [a.id for a in result] == ["bilibili:4", "bilibili:5", "bilibili:6"]
    assert result[0].rating == 9.5
    assert result[0].status == AnimeStatus.AIRING
    assert result[0].genres == ["奇幻", "冒险"]
    assert result[0].play_url == "https://www.bilibili.com/bangumi/play/ss4"


@pytest.mark.asyncio
async def test_search_strips_highlight_markup():
    def handler(request):
        assert request.url.params["search_type"] == "media_bangumi"
        return httpx.Response(200, json={"code": 0, "data": {"result": [
            {"season_id": 42, "title": '<em class="keyword">葬送</em>的芙莉莲', "org_title": "葬送のフリーレン",
             "media_score": {"score": 9.8, "user_count": 1000}, "is_finish": 1, "styles": ["奇幻"],
             "ep_size": 28},
        ]}})

    result = await make_adapter(handler).search("葬送", 5)

    anime = result[0]
    assert anime.title == "葬送的芙莉莲"
    assert anime.title_aliases == ["葬送のフリーレン"]
    assert anime.rating == 9.8
    assert anime.status == AnimeStatus.COMPLETED
    assert anime.episode_count == 28


@pytest.mark.asyncio
async def test_search_without_matches_is_empty():
    adapter = make_adapter(lambda request: httpx.Response(200, json={"code": 0, "data": {"numResults": 0}}))
    assert await adapter.search("nothing", 5) == []


@pytest.mark.asyncio
async def test_detail_not_found_code():
    adapter = make_adapter(lambda request: httpx.Response(200, json={"code": -404, "message": "啥都木有"}))
    with pytest.raises(NotFound):
        await adapter.fetch_detail("bilibili:1")


@pytest.mark.asyncio
async def test_detail_success():
    def handler(request):
        assert request.url.params["season_id"] == "28747"
        return httpx.Response(200, json={"code": 0, "result": {
            "season_id": 28747, "title": "Detail Show", "evaluate": "Story", "total_count": -1,
            "rating": {"score": 9.1, "count": 500}, "is_finish": 1,
        }})

    anime = await make_adapter(handler).fetch_detail("bilibili:28747")

    assert anime.id == "bilibili:28747"
    assert anime.synopsis == "Story"
    assert anime.rating == 9.1
    assert anime.episode_count is None


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [-509, -799])
async def test_throttle_codes_are_rate_limits(code):
    adapter = make_adapter(lambda request: httpx.Response(200, json={"code": code, "message": "请求过于频繁"}))
    with pytest.raises(UpstreamRateLimited):
        await adapter.fetch_schedule()


@pytest.mark.asyncio
async def test_other_error_codes_are_upstream_errors():
    adapter = make_adapter(lambda request: httpx.Response(200, json={"code": -412, "message": "blocked"}))
    with pytest.raises(UpstreamError) as exc_info:
        await adapter.fetch_list(1, 20)
    assert exc_info.value.status_code == -412


def test_helpers():
    assert strip_tags('<em class="keyword">A</em>B') == "AB"
    assert normalize_image_url("") is None
    assert normalize_image_url("https://x/y.jpg") == "https://x/y.jpg"
    assert parse_episode_number("第12话") == 12
    assert parse_episode_number(None) is None


@pytest.mark.asyncio
async def test_schedule_skips_malformed_entries_and_keeps_the_rest():
    timeline = {"code": 0, "result": [
        {"day_of_week": 3, "episodes": [
            {"season_id": 1, "title": "Good Slot", "pub_time": "20:00"},
            {"season_id": 2, "title": "Numeric Time", "pub_time": 1000},
            {"season_id": 3, "title": 12345, "pub_time": "21:00"},
            {"season_id": 4, "title": "Odd Cover", "pub_time": "22:00", "cover": ["x"], "pub_index": 7},
            "not an episode",
        ]},
        {"day_of_week": 4, "episodes": "none today"},
        {"day_of_week": "5", "episodes": [{"season_id": 5, "title": "String Day", "pub_time": "08:00"}]},
        "not a day",
    ]}

    entries = await make_adapter(lambda request: httpx.Response(200, json=timeline)).fetch_schedule()

    assert [(e.anime_id, e.day_of_week, e.air_time) for e in entries] == [
        ("bilibili:1", 3, "20:00"),
        ("bilibili:4", 3, "22:00"),
        ("bilibili:5", 5, "08:00"),
    ]
    assert entries[1].cover_url is None
    assert entries[1].latest_episode is None


@pytest.mark.asyncio
async def test_rank_list_tolerates_wrongly_typed_fields():
    ranked = [
        {"season_id": 1, "title": "Plain", "evaluate": "简介"},
        {
            "season_id": 2,
            "title": "Odd Types",
            "evaluate": 42,
            "desc": "备用简介",
            "url": 123,
            "cover": ["not", "a", "url"],
            "square_cover": "//i0.hdslb.com/sq.jpg",
            "total_count": -1,
            "ep_size": "12",
            "styles": [{"name": 3}, {"name": "热血"}, None],
            "origin_name": 5,
            "season_year": "unknown",
        },
        {"season_id": 3, "title": None, "season_title": "From Season Title", "total_count": "-1"},
    ]

    def handler(request):
        return httpx.Response(200, json={"code": 0, "result": {"list": ranked}})

    result = await make_adapter(handler).fetch_list(page=1, page_size=10)

    assert [a.id for a in result] == ["bilibili:1", "bilibili:2", "bilibili:3"]
    odd = result[1]
    assert odd.synopsis == "备用简介"
    assert odd.play_url == "https://www.bilibili.com/bangumi/play/ss2"
    assert odd.cover_url == "https://i0.hdslb.com/sq.jpg"
    assert odd.episode_count == 12
    assert odd.genres == ["热血"]
    assert odd.title_aliases == []
    assert odd.release_year is None
    assert result[2].title == "From Season Title"
    assert result[2].episode_count is None


@pytest.mark.asyncio
async def test_aggregated_schedule_survives_one_bad_air_time(cache):
    timeline = {"code": 0, "result": [{"day_of_week": 1, "episodes": [
        {"season_id": 1, "title": "Kept", "pub_time": "19:00"},
        {"season_id": 2, "title": "Numeric Time", "pub_time": 1000},
    ]}]}
    aggregator = DataAggregator([make_adapter(lambda request: httpx.Response(200, json=timeline))], cache)

    entries = await aggregator.get_schedule()

    assert [e.anime_id for e in entries] == ["bilibili:1"]

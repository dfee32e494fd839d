import pytest

from app.utils.data_merging import merge_summaries, normalize_title
from conftest import FakeAdapter, make_summary
from test_data_aggregator import build


class TestNormalizeTitle:
    def test_ignores_case_spacing_and_punctuation(self):
        assert normalize_title("Attack on Titan: Final Season") == normalize_title("attack on titan final season")

    def test_full_width_forms_match(self):
        assert normalize_title("ＳＰＹ×ＦＡＭＩＬＹ") == normalize_title("SPY FAMILY")

    def test_keeps_cjk_characters(self):
        assert normalize_title("葬送的芙莉莲 ") == "葬送的芙莉莲"

    def test_punctuation_only_title_has_empty_key(self):
        assert normalize_title("!!!") == ""


class TestMergeSummaries:
    def test_same_title_on_two_platforms_is_folded(self):
        tmdb = make_summary(
            "tmdb:209867", "葬送的芙莉莲", platform="tmdb",
            title_aliases=["葬送のフリーレン"], rating=8.8, genres=["Animation"],
            play_url="https://www.themoviedb.org/tv/209867",
        )
        bili = make_summary(
            "bilibili:45969", "葬送的芙莉莲", platform="bilibili",
            synopsis="勇者一行打倒魔王之后", cover_url="https://i0.hdslb.com/a.jpg",
            rating=9.7, episode_count=28, genres=["奇幻", "Animation"],
            play_url="https://www.bilibili.com/bangumi/play/ss45969",
        )

        merged, duplicates = merge_summaries([[tmdb], [bili]])

        assert duplicates == 1
        assert len(merged) == 1
        record = merged[0]
        assert record.id == "tmdb:209867"
        assert record.rating == 8.8
        assert record.synopsis == "勇者一行打倒魔王之后"
        assert record.cover_url == "https://i0.hdslb.com/a.jpg"
        assert record.episode_count == 28
        assert record.genres == ["Animation", "奇幻"]
        assert record.play_url == "https://www.themoviedb.org/tv/209867"
        assert record.platform_links == {
            "tmdb": "https://www.themoviedb.org/tv/209867",
            "bilibili": "https://www.bilibili.com/bangumi/play/ss45969",
        }

    def test_alias_match_folds_and_records_source_title(self):
        tmdb = make_summary("tmdb:1", "Frieren: Beyond Journey's End", platform="tmdb", title_aliases=["葬送のフリーレン"])
        bili = make_summary("bilibili:2", "葬送のフリーレン", platform="bilibili")

        merged, _ = merge_summaries([[tmdb], [bili]])

        assert [a.id for a in merged] == ["tmdb:1"]
        assert merged[0].title_aliases == ["葬送のフリーレン"]

    def test_source_title_becomes_alias(self):
        tmdb = make_summary("tmdb:1", "Oshi no Ko", platform="tmdb")
        bili = make_summary("bilibili:2", "OSHI NO KO!", platform="bilibili")

        merged, _ = merge_summaries([[tmdb], [bili]])

        assert len(merged) == 1
        assert merged[0].title_aliases == ["OSHI NO KO!"]

    def test_same_platform_records_are_never_folded(self):
        first = make_summary("bilibili:1", "Hunter x Hunter", platform="bilibili")
        remake = make_summary("bilibili:2", "Hunter x Hunter", platform="bilibili")

        merged, duplicates = merge_summaries([[first, remake]])

        assert [a.id for a in merged] == ["bilibili:1", "bilibili:2"]
        assert duplicates == 0

    def test_platform_folds_into_a_record_once(self):
        tmdb = make_summary("tmdb:1", "Show", platform="tmdb")
        bili_a = make_summary("bilibili:1", "Show", platform="bilibili", play_url="https://b/1")
        bili_b = make_summary("bilibili:2", "Show", platform="bilibili", play_url="https://b/2")

        merged, _ = merge_summaries([[tmdb], [bili_a, bili_b]])

        assert [a.id for a in merged] == ["tmdb:1", "bilibili:2"]
        assert merged[0].platform_links == {"bilibili": "https://b/1"}

    def test_different_titles_are_kept_apart(self):
        first = make_summary("tmdb:1", "Mushoku Tensei", platform="tmdb")
        sequel = make_summary("bilibili:1", "Mushoku Tensei Season 2", platform="bilibili")

        merged, duplicates = merge_summaries([[first], [sequel]])

        assert len(merged) == 2
        assert duplicates == 0

    def test_unmatched_record_lists_its_own_play_page(self):
        only = make_summary("bilibili:9", "Solo", platform="bilibili", play_url="https://b/9")

        merged, _ = merge_summaries([[only]])

        assert merged[0].platform_links == {"bilibili": "https://b/9"}

    def test_punctuation_titles_do_not_match_each_other(self):
        a = make_summary("tmdb:1", "???", platform="tmdb")
        b = make_summary("bilibili:1", "!!!", platform="bilibili")

        merged, _ = merge_summaries([[a], [b]])

        assert len(merged) == 2

    def test_id_duplicate_of_folded_record_is_dropped(self):
        tmdb = make_summary("tmdb:1", "Show", platform="tmdb")
        bili = make_summary("bilibili:1", "Show", platform="bilibili")
        bili_again = make_summary("bilibili:1", "Different Title", platform="bilibili")

        merged, duplicates = merge_summaries([[tmdb], [bili], [bili_again]])

        assert [a.id for a in merged] == ["tmdb:1"]
        assert duplicates == 2

    def test_merged_record_serializes_platform_links(self):
        tmdb = make_summary("tmdb:1", "Show", platform="tmdb", play_url="https://t/1")

        merged, _ = merge_summaries([[tmdb]])

        assert merged[0].model_dump(by_alias=True)["platformLinks"] == {"tmdb": "https://t/1"}


@pytest.mark.asyncio
async def test_aggregated_list_folds_titles_regardless_of_completion_order(cache):
    tmdb = FakeAdapter(
        "tmdb",
        items=[make_summary("tmdb:1", "Chainsaw Man", platform="tmdb", rating=8.5)],
        delay=0.05,
    )
    bili = FakeAdapter(
        "bilibili",
        items=[make_summary("bilibili:7", "Chainsaw Man", platform="bilibili", synopsis="电锯人", play_url="https://b/7")],
    )
    aggregator = build([tmdb, bili], cache)

    result = await aggregator.get_anime_list(1, 20)

    assert [a.id for a in result] == ["tmdb:1"]
    assert result[0].synopsis == "电锯人"
    assert result[0].platform_links == {"bilibili": "https://b/7"}

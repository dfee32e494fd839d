"""
Data merging utilities

This module handles merging of anime summaries and schedule entries from
multiple providers. Input sequences are given in provider priority order;
the output never depends on which provider answered first.
"""
import logging
import unicodedata
from collections.abc import Sequence

from app.schemas import AnimeSummary, ScheduleEntry

logger = logging.getLogger(__name__)

# Absent values on the kept record that a later platform may supply
FILLABLE_FIELDS = ("cover_url", "synopsis", "rating", "release_year", "episode_count")


def normalize_title(title: str) -> str:
    """
    Matching key for titles: NFKC-folded, case-folded, letters and digits only

    '进击的巨人 第一季' and '进击的巨人第一季' share a key; punctuation,
    spacing and full-width forms do not matter.
    """
    folded = unicodedata.normalize("NFKC", title).casefold()
    return "".join(char for char in folded if char.isalnum())


def title_keys(summary: AnimeSummary) -> set[str]:
    keys = {normalize_title(summary.title)}
    keys.update(normalize_title(alias) for alias in summary.title_aliases)
    keys.discard("")
    return keys


def with_platform_link(summary: AnimeSummary) -> AnimeSummary:
    """Seed platform_links with the record's own play page"""
    if summary.play_url is None or summary.platform in summary.platform_links:
        return summary
    links = {**summary.platform_links, summary.platform: summary.play_url}
    return summary.model_copy(update={"platform_links": links})


def fold_into(target: AnimeSummary, source: AnimeSummary) -> AnimeSummary:
    """
    Fold another platform's record for the same title into target

    Target values win; source only fills fields target lacks. Aliases and
    genres are unioned, and source's play page is added to platform_links.
    """
    update = {
        field: getattr(source, field)
        for field in FILLABLE_FIELDS
        if getattr(target, field) is None and getattr(source, field) is not None
    }

    aliases = list(target.title_aliases)
    for alias in [source.title, *source.title_aliases]:
        if alias != target.title and alias not in aliases:
            aliases.append(alias)
    update["title_aliases"] = aliases
    update["genres"] = target.genres + [genre for genre in source.genres if genre not in target.genres]

    links = dict(target.platform_links)
    for platform, url in with_platform_link(source).platform_links.items():
        links.setdefault(platform, url)
    update["platform_links"] = links

    return target.model_copy(update=update)


def merge_summaries(
    provider_results: Sequence[Sequence[AnimeSummary]]
) -> tuple[list[AnimeSummary], int]:
    """
    Merge provider results in two steps.

    1. First-seen-provider-wins by identifier.
    2. A record from another platform whose title (or an alias) normalizes
       to the same key as an earlier record is folded into that record.

    Items keep the order they first appeared in: all of the first
    provider's items, then the unseen items of the next one, and so on.
    Records from the same platform are never folded together; one platform
    may list distinct shows under the same title.

    Args:
        provider_results: One result list per provider, in priority order

    Returns:
        Tuple of (merged_summaries, count_of_duplicates_dropped)
    """
    merged: dict[str, AnimeSummary] = {}
    platforms: dict[str, set[str]] = {}
    id_owner: dict[str, str] = {}
    title_index: dict[str, str] = {}
    duplicates = 0

    for results in provider_results:
        for summary in results:
            if summary.id in id_owner:
                duplicates += 1
                logger.debug(
                    "Skipping duplicate %s from %s (kept %s)",
                    summary.id,
                    summary.platform,
                    merged[id_owner[summary.id]].platform,
                )
                continue

            keys = title_keys(summary)
            match_id = next(
                (
                    title_index[key] for key in sorted(keys)
                    if key in title_index
                    and summary.platform not in platforms[title_index[key]]
                ),
                None,
            )
            if match_id is not None:
                duplicates += 1
                merged[match_id] = fold_into(merged[match_id], summary)
                platforms[match_id].add(summary.platform)
                id_owner[summary.id] = match_id
                for key in keys:
                    title_index.setdefault(key, match_id)
                logger.debug("Folded %s into %s by title", summary.id, match_id)
                continue

            merged[summary.id] = with_platform_link(summary)
            platforms[summary.id] = {summary.platform, *summary.platform_links}
            id_owner[summary.id] = summary.id
            for key in keys:
                title_index.setdefault(key, summary.id)

    return list(merged.values()), duplicates


def merge_schedule(
    provider_results: Sequence[Sequence[ScheduleEntry]]
) -> tuple[list[ScheduleEntry], int]:
    """
    Merge schedule entries, sorted by (day, air time).

    When the same anime appears more than once, only its earliest airing
    is kept; ties go to the higher-priority provider.

    Args:
        provider_results: One entry list per provider, in priority order

    Returns:
        Tuple of (merged_entries, count_of_duplicates_dropped)
    """
    earliest: dict[str, ScheduleEntry] = {}
    duplicates = 0

    for entries in provider_results:
        for entry in entries:
            current = earliest.get(entry.anime_id)
            if current is None:
                earliest[entry.anime_id] = entry
                continue
            duplicates += 1
            if airing_key(entry) < airing_key(current):
                earliest[entry.anime_id] = entry

    # sorted() is stable, so equal slots keep provider priority order
    return sorted(earliest.values(), key=airing_key), duplicates


def airing_key(entry: ScheduleEntry) -> tuple[int, str]:
    """Sort key for schedule entries; HH:MM strings order correctly as text"""
    return entry.day_of_week, entry.air_time

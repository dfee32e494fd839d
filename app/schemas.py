from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer
from pydantic.alias_generators import to_camel


class AnimeStatus(str, Enum):
    """Lifecycle status shared by every provider"""
    UPCOMING = "upcoming"
    AIRING = "airing"
    COMPLETED = "completed"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the mobile client"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class AnimeSummary(CamelModel):
    """Provider-agnostic anime record"""
    id: str = Field(..., min_length=1, description="Provider-prefixed identifier (e.g. 'tmdb:1429')")
    title: str = Field(..., min_length=1, description="Display title")
    title_aliases: list[str] = Field(default_factory=list, description="Original or alternate titles")
    cover_url: str | None = Field(None, description="Cover image URL")
    synopsis: str | None = Field(None, description="Plot summary")
    rating: float | None = Field(None, ge=0, le=10, description="Rating on a 0-10 scale")
    status: AnimeStatus = Field(AnimeStatus.UPCOMING, description="Lifecycle status")
    release_year: int | None = Field(None, description="Year of first release")
    episode_count: int | None = Field(None, ge=0, description="Total episode count")
    genres: list[str] = Field(default_factory=list, description="Genre tags without duplicates")
    platform: str = Field(..., description="Provider the record came from")
    play_url: str | None = Field(None, description="Provider page for the title")
    platform_links: dict[str, str] = Field(
        default_factory=dict,
        description="Play page per platform carrying this title, filled in by merging",
    )

    @field_validator("id", "title", mode="before")
    @classmethod
    def strip_required(cls, v):
        """Strip surrounding whitespace from required strings"""
        return v.strip() if isinstance(v, str) else v

    @field_validator("cover_url", "synopsis", "play_url", mode="before")
    @classmethod
    def empty_string_is_absent(cls, v):
        """Unknown values are null, never empty strings"""
        return _blank_to_none(v)

    @field_validator("title_aliases", "genres")
    @classmethod
    def dedupe_strings(cls, v: list[str]) -> list[str]:
        """Drop blanks and duplicates while keeping first-seen order"""
        seen: list[str] = []
        for item in v:
            item = item.strip()
            if item and item not in seen:
                seen.append(item)
        return seen


class ScheduleEntry(CamelModel):
    """One weekly airing slot for an anime"""
    anime_id: str = Field(..., min_length=1, description="AnimeSummary identifier")
    title: str = Field(..., min_length=1)
    day_of_week: int = Field(..., ge=1, le=7, description="1=Monday ... 7=Sunday")
    air_time: str = Field(..., pattern=r"^\d{2}:\d{2}$", description="Local air time (HH:MM)")
    platform: str
    cover_url: str | None = None
    latest_episode: int | None = None

    @field_validator("cover_url", mode="before")
    @classmethod
    def empty_string_is_absent(cls, v):
        return _blank_to_none(v)


class ErrorDetail(BaseModel):
    """Standard error detail"""
    code: str = Field(..., description="Error code (e.g., 'BAD_REQUEST', 'NOT_FOUND')")
    message: str = Field(..., description="Human-readable error message")


class PaginationMeta(CamelModel):
    """Estimated pagination; aggregated providers expose no reliable total"""
    total: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool


class ResponseMeta(BaseModel):
    timestamp: str
    pagination: PaginationMeta | None = None

    @model_serializer(mode="wrap")
    def _omit_missing_pagination(self, handler):
        data = handler(self)
        if data.get("pagination") is None:
            data.pop("pagination", None)
        return data


class SearchData(BaseModel):
    keyword: str
    results: list[AnimeSummary]
    count: int


class ScheduleData(CamelModel):
    schedule: list[ScheduleEntry]
    count: int
    day: int | None = None
    day_name: str | None = None

    @model_serializer(mode="wrap")
    def _omit_unfiltered_day(self, handler):
        data = handler(self)
        for key in ("day", "dayName", "day_name"):
            if key in data and data[key] is None:
                del data[key]
        return data


class AnimeListResponse(BaseModel):
    success: bool = True
    data: list[AnimeSummary]
    meta: ResponseMeta


class SearchResponse(BaseModel):
    success: bool = True
    data: SearchData
    meta: ResponseMeta


class ScheduleResponse(BaseModel):
    success: bool = True
    data: ScheduleData
    meta: ResponseMeta


class AnimeDetailResponse(BaseModel):
    success: bool = True
    data: AnimeSummary
    meta: ResponseMeta


class StandardErrorResponse(BaseModel):
    """Standardized error response for all endpoints"""
    success: bool = False
    error: ErrorDetail
    meta: ResponseMeta

"""
Pydantic schemas for the TikTok dashboard API.
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from services.normalization import RawRecord, display_hashtags, epoch_to_datetime, playback_url


# =============================================================================
# Profile
# =============================================================================

class ProfileResponse(BaseModel):
    """Owner profile with the linked TikTok summary."""
    id: int
    email: str
    name: Optional[str] = None
    tiktok_username: Optional[str] = None
    avatar_url: Optional[str] = None
    following: Optional[int] = None
    fans: Optional[int] = None
    heart: Optional[int] = None
    video_count: Optional[int] = None
    profile_updated_at: Optional[datetime] = None
    data_fetching_enabled: bool = True

    class Config:
        from_attributes = True


class TikTokUsernameUpdate(BaseModel):
    tiktok_username: str = Field(min_length=1, max_length=100, description="With or without a leading @")


class DataFetchingUpdate(BaseModel):
    enabled: bool


# =============================================================================
# Cached videos
# =============================================================================

class CachedPostResponse(BaseModel):
    """A cached video as the dashboard renders it."""
    video_id: str
    text: Optional[str] = None
    cover_url: Optional[str] = None
    video_url: Optional[str] = None
    download_url: Optional[str] = None
    playback_url: Optional[str] = Field(default=None, description="download_url if present, else video_url")
    digg_count: Optional[int] = None
    share_count: Optional[int] = None
    play_count: Optional[int] = None
    comment_count: Optional[int] = None
    collect_count: Optional[int] = None
    hashtags: List[str] = []
    tiktok_created_at: Optional[datetime] = None
    cached_at: Optional[datetime] = None

    @classmethod
    def _common(cls, row) -> dict:
        return {
            "video_id": row.video_id,
            "text": row.text,
            "cover_url": row.cover_url,
            "video_url": row.video_url,
            "download_url": row.download_url,
            "playback_url": playback_url(row.download_url, row.video_url),
            "digg_count": row.digg_count,
            "share_count": row.share_count,
            "play_count": row.play_count,
            "comment_count": row.comment_count,
            "collect_count": row.collect_count,
            "hashtags": display_hashtags(row.hashtags, row.text),
            "tiktok_created_at": row.tiktok_created_at,
            "cached_at": row.cached_at,
        }

    @classmethod
    def from_row(cls, row) -> "CachedPostResponse":
        return cls(**cls._common(row))


class SearchResultResponse(CachedPostResponse):
    """A cached hashtag search result."""
    search_term: Optional[str] = None
    author_name: Optional[str] = None
    author_avatar_url: Optional[str] = None
    original_post_date: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "SearchResultResponse":
        return cls(
            **cls._common(row),
            search_term=row.search_term,
            author_name=row.author_name,
            author_avatar_url=row.author_avatar_url,
            original_post_date=row.original_post_date,
        )

    @classmethod
    def from_record(cls, record: RawRecord, search_term: str) -> "SearchResultResponse":
        return cls(
            video_id=record.video_id,
            text=record.text,
            cover_url=record.cover_url,
            video_url=record.video_url,
            download_url=record.download_url,
            playback_url=playback_url(record.download_url, record.video_url),
            **record.counts,
            hashtags=record.hashtags or display_hashtags(None, record.text),
            tiktok_created_at=epoch_to_datetime(record.create_time),
            search_term=search_term,
            author_name=record.author_name,
            author_avatar_url=record.author_avatar_url,
            original_post_date=record.original_post_date,
        )


class PostSearchResponse(BaseModel):
    posts: List[CachedPostResponse]
    total: int
    page: int
    per_page: int
    total_pages: int


# =============================================================================
# Sync
# =============================================================================

class SyncResponse(BaseModel):
    """Result of a provider refresh."""
    status: str
    message: str
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0


class HashtagSearchRequest(BaseModel):
    hashtag: str = Field(min_length=1, description="With or without a leading #")
    results_per_page: Optional[int] = Field(default=None, description="1-21, falls back to 21")


class HashtagSearchResponse(SyncResponse):
    hashtag: str
    count: int = 0
    videos: List[SearchResultResponse] = []


class FreshnessResponse(BaseModel):
    """Cooldown clock of the current owner."""
    enabled: bool
    last_fetch_at: Optional[datetime] = None
    next_fetch_at: Optional[datetime] = None
    remaining_ms: Optional[int] = None
    retry_in: Optional[str] = None
    cooldown_minutes: int

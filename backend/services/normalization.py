"""
Normalization of raw TikTok scraper items.

Provider items are duck-typed: URLs show up as `webVideoUrl`, `videoUrl` or
`downloadLink`, hashtags as strings, tag objects or a JSON string. Everything
here is a pure function so the reconciliation engine and the API layer agree
on a single reading of an item.
"""
import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from core.errors import MalformedRecord

# (provider field, cache column)
COUNT_FIELDS = (
    ("diggCount", "digg_count"),
    ("shareCount", "share_count"),
    ("playCount", "play_count"),
    ("commentCount", "comment_count"),
    ("collectCount", "collect_count"),
)
COUNT_COLUMNS = tuple(column for _, column in COUNT_FIELDS)

# Count columns are BIGINT
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_TEXT_HASHTAG_RE = re.compile(r"#(\w+)")


@dataclass
class RawRecord:
    """One provider video, normalized. Discarded after reconciliation."""
    video_id: str
    text: str = ""
    digg_count: Optional[int] = None
    share_count: Optional[int] = None
    play_count: Optional[int] = None
    comment_count: Optional[int] = None
    collect_count: Optional[int] = None
    cover_url: Optional[str] = None
    video_url: Optional[str] = None
    download_url: Optional[str] = None
    hashtags: list[str] = field(default_factory=list)
    create_time: Optional[int] = None
    author_name: Optional[str] = None
    author_avatar_url: Optional[str] = None
    original_post_date: Optional[datetime] = None

    @property
    def counts(self) -> dict:
        return {column: getattr(self, column) for column in COUNT_COLUMNS}

    def to_cache_fields(self) -> dict:
        """Column values for a cache row (hashtags JSON-encoded)."""
        return {
            "video_id": self.video_id,
            "text": self.text,
            **self.counts,
            "cover_url": self.cover_url,
            "video_url": self.video_url,
            "download_url": self.download_url,
            "hashtags": json.dumps(self.hashtags),
            "tiktok_created_at": epoch_to_datetime(self.create_time),
            "author_name": self.author_name,
            "author_avatar_url": self.author_avatar_url,
            "original_post_date": self.original_post_date,
        }


# =============================================================================
# Field helpers
# =============================================================================

def _get(obj: Any, name: str) -> Any:
    """Read a field from a mapping or an attribute-bearing object."""
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _first_str(values: Any) -> Optional[str]:
    if isinstance(values, (list, tuple)) and values:
        return _non_empty_str(values[0])
    return None


def _parse_int(value: Any) -> Optional[int]:
    """
    Integer from a provider number or numeric string.
    None when absent or unparseable (NaN included). Raises OverflowError for
    infinities and values outside the signed 64-bit range.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        value = int(value)
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise OverflowError(f"{value} does not fit a 64-bit integer")
        return value
    return None


def _to_int(value: Any) -> Optional[int]:
    try:
        return _parse_int(value)
    except OverflowError:
        return None


def _count(item: Mapping, name: str) -> Optional[int]:
    try:
        return _parse_int(item.get(name))
    except OverflowError as e:
        raise MalformedRecord(f"{name} out of range: {e}")


def epoch_to_datetime(seconds: Optional[int]) -> Optional[datetime]:
    """Epoch seconds -> naive UTC datetime (the storage convention)."""
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# =============================================================================
# Hashtags
# =============================================================================

def normalize_hashtags(value: Any) -> list[str]:
    """
    Normalize a hashtags field to an ordered list of plain strings.

    Accepts a list of strings, a list of tag objects with a `name`, a
    JSON-encoded string of either, or nothing. Unusable entries are dropped;
    anything unparseable yields []. Idempotent on its own output.
    """
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (ValueError, TypeError):
            return []
    if not isinstance(value, (list, tuple)):
        return []

    tags = []
    for entry in value:
        if isinstance(entry, str):
            name = entry
        else:
            name = _get(entry, "name")
        if isinstance(name, str) and name:
            tags.append(name)
    return tags


def extract_hashtags_from_text(text: Optional[str]) -> list[str]:
    """Fallback for display: `#word` tokens in the caption, without the #."""
    if not text:
        return []
    return _TEXT_HASHTAG_RE.findall(text)


def display_hashtags(stored: Any, text: Optional[str]) -> list[str]:
    """Stored hashtags if any, else the ones found in the caption."""
    tags = normalize_hashtags(stored)
    return tags or extract_hashtags_from_text(text)


# =============================================================================
# URLs
# =============================================================================

def resolve_download_url(item: Any) -> Optional[str]:
    """
    Direct download URL. First match wins:
    `downloadUrl`, then `videoMeta.downloadAddr`, then `mediaUrls[0]`.
    """
    explicit = _non_empty_str(_get(item, "downloadUrl"))
    if explicit:
        return explicit

    video_meta = _get(item, "videoMeta")
    if video_meta is not None:
        addr = _non_empty_str(_get(video_meta, "downloadAddr"))
        if addr:
            return addr

    return _first_str(_get(item, "mediaUrls"))


def resolve_video_url(item: Any) -> Optional[str]:
    """Canonical (web) video URL: `webVideoUrl`, `videoUrl`, `downloadLink`."""
    for name in ("webVideoUrl", "videoUrl", "downloadLink"):
        url = _non_empty_str(_get(item, name))
        if url:
            return url
    return None


def resolve_cover_url(item: Any) -> Optional[str]:
    video_meta = _get(item, "videoMeta")
    if video_meta is not None:
        cover = _non_empty_str(_get(video_meta, "coverUrl"))
        if cover:
            return cover
    return _first_str(_get(item, "covers")) or _non_empty_str(_get(item, "coverUrl"))


def playback_url(download_url: Optional[str], video_url: Optional[str]) -> Optional[str]:
    """What the UI plays or downloads: the direct file when known."""
    return download_url or video_url


# =============================================================================
# Records
# =============================================================================

def normalize_record(item: Any) -> RawRecord:
    """Turn one provider item into a RawRecord. Raises MalformedRecord."""
    if not isinstance(item, Mapping):
        raise MalformedRecord(f"Expected an object, got {type(item).__name__}")

    raw_id = item.get("id")
    if isinstance(raw_id, bool) or not isinstance(raw_id, (str, int)):
        raise MalformedRecord("Missing video id")
    video_id = str(raw_id).strip()
    if not video_id:
        raise MalformedRecord("Empty video id")

    text = item.get("text")
    create_time = _to_int(item.get("createTime"))
    author = item.get("authorMeta") if isinstance(item.get("authorMeta"), Mapping) else {}

    return RawRecord(
        video_id=video_id,
        text=text if isinstance(text, str) else "",
        **{column: _count(item, name) for name, column in COUNT_FIELDS},
        cover_url=resolve_cover_url(item),
        video_url=resolve_video_url(item),
        download_url=resolve_download_url(item),
        hashtags=normalize_hashtags(item.get("hashtags")),
        create_time=create_time,
        author_name=_non_empty_str(author.get("name")),
        author_avatar_url=(
            _non_empty_str(author.get("originalAvatarUrl"))
            or _non_empty_str(author.get("avatar"))
        ),
        original_post_date=_parse_iso(item.get("createTimeISO")) or epoch_to_datetime(create_time),
    )


def normalize_items(items: list) -> tuple[list[RawRecord], int]:
    """Normalize a provider batch. Returns (records, number of malformed items)."""
    records, skipped = [], 0
    for item in items or []:
        try:
            records.append(normalize_record(item))
        except MalformedRecord:
            skipped += 1
    return records, skipped


def extract_profile_summary(items: list) -> Optional[dict]:
    """Profile counters from the first item's `authorMeta`, if present."""
    if not items or not isinstance(items[0], Mapping):
        return None
    author = items[0].get("authorMeta")
    if not isinstance(author, Mapping):
        return None
    return {
        "avatar_url": _non_empty_str(author.get("avatar")),
        "following": _to_int(author.get("following")),
        "fans": _to_int(author.get("fans")),
        "heart": _to_int(author.get("heart")),
        "video_count": _to_int(author.get("video")),
    }


# =============================================================================
# Handles and search terms
# =============================================================================

def clean_username(username: str) -> str:
    """Username as stored: trimmed, without a leading @."""
    return (username or "").strip().lstrip("@")


def format_handle(username: str) -> str:
    """Username as the provider expects it: with a leading @."""
    return f"@{clean_username(username)}"


def normalize_search_term(term: str) -> str:
    """Hashtag search term: trimmed, no leading #, lowercase."""
    return (term or "").strip().lstrip("#").strip().lower()

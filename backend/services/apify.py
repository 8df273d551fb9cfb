"""
Apify TikTok scraper service.
Profile and hashtag scrapes via the run-sync-get-dataset-items endpoint.
"""
import logging
import httpx
from datetime import datetime
from typing import Dict, Optional
from core.config import settings
from services.normalization import extract_profile_summary, format_handle, normalize_search_term

logger = logging.getLogger(__name__)

BASE_URL = "https://api.apify.com/v2"


def build_cache_key(prefix: str, subject: str, now: Optional[datetime] = None) -> str:
    """Provider cache key bucketed to the 5-minute wall-clock interval."""
    now = now or datetime.now()
    minutes = (now.minute // 5) * 5
    return f"{prefix}-{subject}-{now:%Y-%m-%d-%H}-{minutes:02d}"


def clamp_results_per_page(value) -> int:
    """Hashtag page size: 1..HASHTAG_RESULTS_LIMIT, anything else falls back to the max."""
    limit = settings.HASHTAG_RESULTS_LIMIT
    try:
        value = int(value)
    except (TypeError, ValueError):
        return limit
    if value < 1 or value > limit:
        return limit
    return value


class ApifyTikTokAPI:
    """Client for the Apify TikTok scraper actor."""

    def __init__(self, api_token: Optional[str] = None, actor_id: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.api_token = api_token or settings.APIFY_API_TOKEN
        self.actor_id = actor_id or settings.APIFY_ACTOR_ID
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        if not self.api_token:
            logger.warning("Apify API token not configured. Set APIFY_API_TOKEN in .env")

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"}

    @property
    def _run_url(self) -> str:
        return f"{BASE_URL}/acts/{self.actor_id}/run-sync-get-dataset-items"

    async def _run_actor(self, run_input: dict) -> Dict:
        """Run the actor synchronously and return its dataset items."""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._run_url,
                    headers=self._headers,
                    json=run_input,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()

                if isinstance(data, dict) and data.get("error"):
                    error = data["error"]
                    message = error.get("message") if isinstance(error, dict) else str(error)
                    return {"success": False, "error": message or "Unknown API error", "timed_out": False}

                if not isinstance(data, list):
                    return {"success": False, "error": "Unexpected response shape", "timed_out": False}

                return {"success": True, "items": data}

        except httpx.HTTPStatusError as e:
            logger.error(f"Apify HTTP error on {self.actor_id}: {e.response.status_code}")
            return {
                "success": False,
                "error": f"HTTP {e.response.status_code}",
                "status_code": e.response.status_code,
                "timed_out": False,
            }
        except httpx.TimeoutException:
            logger.error(f"Apify timeout on {self.actor_id} after {self.timeout}s")
            return {"success": False, "error": "Request timed out", "timed_out": True}
        except Exception as e:
            logger.error(f"Apify error on {self.actor_id}: {e}")
            return {"success": False, "error": str(e), "timed_out": False}

    # =========================================================================
    # Profiles
    # =========================================================================

    async def fetch_profile_videos(
        self,
        username: str,
        limit: Optional[int] = None,
        lookback_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict:
        """
        Fetch a profile's recent videos.

        Returns: profile summary (from the first item's authorMeta, may be None)
        and the raw video items. An empty item list is a valid result.
        """
        handle = format_handle(username)
        data = await self._run_actor({
            "excludePinnedPosts": False,
            "profiles": [handle],
            "resultsPerPage": limit or settings.ACCOUNT_RESULTS_LIMIT,
            "scrapeLastNDays": lookback_days or settings.ACCOUNT_LOOKBACK_DAYS,
            "shouldDownloadCovers": False,
            "shouldDownloadSlideshowImages": False,
            "shouldDownloadSubtitles": False,
            "shouldDownloadVideos": False,
            "cacheKey": build_cache_key("tiktok-data", handle, now),
        })

        if not data.get("success"):
            return data

        items = data["items"]
        return {
            "success": True,
            "username": handle,
            "profile": extract_profile_summary(items),
            "videos": items,
            "count": len(items),
        }

    # =========================================================================
    # Hashtags
    # =========================================================================

    async def search_hashtag(self, hashtag: str, limit: Optional[int] = None,
                             now: Optional[datetime] = None) -> Dict:
        """Search videos for a hashtag. Video downloads are enabled so download URLs come back."""
        term = normalize_search_term(hashtag)
        results_per_page = clamp_results_per_page(limit if limit is not None else settings.HASHTAG_RESULTS_LIMIT)

        data = await self._run_actor({
            "excludePinnedPosts": False,
            "hashtags": [term],
            "resultsPerPage": results_per_page,
            "shouldDownloadCovers": False,
            "shouldDownloadSlideshowImages": False,
            "shouldDownloadSubtitles": False,
            "shouldDownloadVideos": True,
            "cacheKey": build_cache_key("tiktok-hashtag", term, now),
        })

        if not data.get("success"):
            return data

        items = data["items"]
        return {
            "success": True,
            "hashtag": term,
            "videos": items,
            "count": len(items),
            "results_per_page": results_per_page,
        }


# Singleton instance
apify = ApifyTikTokAPI()

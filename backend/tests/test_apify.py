"""Tests for services/apify.py: Apify TikTok scraper client."""
import os
import pytest
from datetime import datetime
from unittest.mock import patch, AsyncMock, MagicMock

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("JWT_SECRET", "test-secret-key")

from services.apify import ApifyTikTokAPI, build_cache_key, clamp_results_per_page


def _mock_client(mock_cls, response=None, side_effect=None):
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    if side_effect is not None:
        mock_client.post = AsyncMock(side_effect=side_effect)
    else:
        mock_client.post = AsyncMock(return_value=response)
    mock_cls.return_value = mock_client
    return mock_client


def _response(payload):
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.json.return_value = payload
    mock_response.raise_for_status = MagicMock()
    return mock_response


# ─── helpers ─────────────────────────────────────────────────────

class TestCacheKey:
    def test_bucketed_to_five_minutes(self):
        assert build_cache_key("tiktok-data", "@creator", datetime(2024, 3, 9, 14, 7, 59)) == \
            "tiktok-data-@creator-2024-03-09-14-05"

    def test_same_bucket_same_key(self):
        a = build_cache_key("tiktok-hashtag", "cats", datetime(2024, 3, 9, 14, 10, 0))
        b = build_cache_key("tiktok-hashtag", "cats", datetime(2024, 3, 9, 14, 14, 59))
        c = build_cache_key("tiktok-hashtag", "cats", datetime(2024, 3, 9, 14, 15, 0))
        assert a == b
        assert a != c


class TestClampResultsPerPage:
    @pytest.mark.parametrize("value,expected", [
        (1, 1),
        (10, 10),
        (21, 21),
        (0, 21),
        (-3, 21),
        (22, 21),
        ("5", 5),
        ("abc", 21),
        (None, 21),
    ])
    def test_clamp(self, value, expected):
        assert clamp_results_per_page(value) == expected


# ─── __init__ / _headers ─────────────────────────────────────────

class TestInit:
    def test_custom_token(self):
        api = ApifyTikTokAPI(api_token="tok", actor_id="me~actor", timeout=5)
        assert api._headers["Authorization"] == "Bearer tok"
        assert api._run_url == "https://api.apify.com/v2/acts/me~actor/run-sync-get-dataset-items"
        assert api.timeout == 5

    def test_defaults(self):
        api = ApifyTikTokAPI(api_token="tok")
        assert api.actor_id == "clockworks~free-tiktok-scraper"
        assert api.timeout == 30


# ─── _run_actor ──────────────────────────────────────────────────

class TestRunActor:
    @pytest.mark.asyncio
    async def test_success(self):
        api = ApifyTikTokAPI(api_token="test", timeout=12)
        with patch("services.apify.httpx.AsyncClient") as mock_cls:
            client = _mock_client(mock_cls, _response([{"id": "v1"}]))
            result = await api._run_actor({"profiles": ["@x"]})

        assert result == {"success": True, "items": [{"id": "v1"}]}
        kwargs = client.post.call_args.kwargs
        assert kwargs["json"] == {"profiles": ["@x"]}
        assert kwargs["timeout"] == 12

    @pytest.mark.asyncio
    async def test_empty_list_is_success(self):
        api = ApifyTikTokAPI(api_token="test")
        with patch("services.apify.httpx.AsyncClient") as mock_cls:
            _mock_client(mock_cls, _response([]))
            result = await api._run_actor({})
        assert result["success"] is True
        assert result["items"] == []

    @pytest.mark.asyncio
    async def test_error_body(self):
        api = ApifyTikTokAPI(api_token="test")
        with patch("services.apify.httpx.AsyncClient") as mock_cls:
            _mock_client(mock_cls, _response({"error": {"type": "run-failed", "message": "Actor failed"}}))
            result = await api._run_actor({})
        assert result["success"] is False
        assert result["error"] == "Actor failed"
        assert result["timed_out"] is False

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        api = ApifyTikTokAPI(api_token="test")
        with patch("services.apify.httpx.AsyncClient") as mock_cls:
            _mock_client(mock_cls, _response({"items": []}))
            result = await api._run_actor({})
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_timeout(self):
        import httpx
        api = ApifyTikTokAPI(api_token="test")
        with patch("services.apify.httpx.AsyncClient") as mock_cls:
            _mock_client(mock_cls, side_effect=httpx.TimeoutException("timeout"))
            result = await api._run_actor({})
        assert result["success"] is False
        assert result["timed_out"] is True
        assert "timed out" in result["error"]

    @pytest.mark.asyncio
    async def test_http_status_error(self):
        import httpx
        api = ApifyTikTokAPI(api_token="test")
        mock_resp = MagicMock()
        mock_resp.status_code = 402
        with patch("services.apify.httpx.AsyncClient") as mock_cls:
            _mock_client(
                mock_cls,
                side_effect=httpx.HTTPStatusError("Payment required", request=MagicMock(), response=mock_resp),
            )
            result = await api._run_actor({})
        assert result["success"] is False
        assert result["status_code"] == 402
        assert "HTTP 402" in result["error"]
        assert result["timed_out"] is False

    @pytest.mark.asyncio
    async def test_generic_exception(self):
        api = ApifyTikTokAPI(api_token="test")
        with patch("services.apify.httpx.AsyncClient") as mock_cls:
            _mock_client(mock_cls, side_effect=Exception("Connection refused"))
            result = await api._run_actor({})
        assert result["success"] is False
        assert result["error"] == "Connection refused"


# ─── fetch_profile_videos / search_hashtag ───────────────────────

class TestFetchProfileVideos:
    @pytest.mark.asyncio
    async def test_request_and_result(self, make_item):
        api = ApifyTikTokAPI(api_token="test")
        items = [make_item("a"), make_item("b")]
        with patch.object(api, "_run_actor", AsyncMock(return_value={"success": True, "items": items})) as run:
            result = await api.fetch_profile_videos("creator", now=datetime(2024, 1, 1, 9, 3))

        run_input = run.call_args.args[0]
        assert run_input["profiles"] == ["@creator"]
        assert run_input["resultsPerPage"] == 20
        assert run_input["scrapeLastNDays"] == 365
        assert run_input["shouldDownloadVideos"] is False
        assert run_input["cacheKey"] == "tiktok-data-@creator-2024-01-01-09-00"

        assert result["success"] is True
        assert result["username"] == "@creator"
        assert result["count"] == 2
        assert result["videos"] == items
        assert result["profile"]["fans"] == 3400

    @pytest.mark.asyncio
    async def test_handle_not_doubled(self):
        api = ApifyTikTokAPI(api_token="test")
        with patch.object(api, "_run_actor", AsyncMock(return_value={"success": True, "items": []})) as run:
            result = await api.fetch_profile_videos("@creator")
        assert run.call_args.args[0]["profiles"] == ["@creator"]
        assert result["profile"] is None
        assert result["count"] == 0

    @pytest.mark.asyncio
    async def test_failure_passthrough(self):
        api = ApifyTikTokAPI(api_token="test")
        failure = {"success": False, "error": "Request timed out", "timed_out": True}
        with patch.object(api, "_run_actor", AsyncMock(return_value=failure)):
            result = await api.fetch_profile_videos("creator")
        assert result == failure


class TestSearchHashtag:
    @pytest.mark.asyncio
    async def test_request_and_result(self, make_item):
        api = ApifyTikTokAPI(api_token="test")
        with patch.object(api, "_run_actor", AsyncMock(return_value={"success": True, "items": [make_item("a")]})) as run:
            result = await api.search_hashtag("#Cats", 5, now=datetime(2024, 1, 1, 9, 12))

        run_input = run.call_args.args[0]
        assert run_input["hashtags"] == ["cats"]
        assert run_input["resultsPerPage"] == 5
        assert run_input["shouldDownloadVideos"] is True
        assert run_input["cacheKey"] == "tiktok-hashtag-cats-2024-01-01-09-10"
        assert result["hashtag"] == "cats"
        assert result["count"] == 1
        assert result["results_per_page"] == 5

    @pytest.mark.asyncio
    async def test_default_and_out_of_range_limit(self):
        api = ApifyTikTokAPI(api_token="test")
        with patch.object(api, "_run_actor", AsyncMock(return_value={"success": True, "items": []})) as run:
            await api.search_hashtag("cats")
            await api.search_hashtag("cats", 500)
        assert [c.args[0]["resultsPerPage"] for c in run.call_args_list] == [21, 21]

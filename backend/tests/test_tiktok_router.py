"""Tests for the TikTok router: refresh and cached post browsing."""
import json
from datetime import datetime
from unittest.mock import patch, AsyncMock, MagicMock

import pytest

from database import TikTokPost
from services.cooldown import SqlFetchStateStore, owner_key_for
from services.tiktok_sync import tiktok_sync


def _provider(videos=None, failure=None):
    provider = MagicMock()
    result = failure or {"success": True, "profile": None, "videos": videos or [], "count": len(videos or [])}
    provider.fetch_profile_videos = AsyncMock(return_value=result)
    return provider


@pytest.fixture
def cached_posts(db, linked_user):
    for i, tags in enumerate([["fyp", "dance"], ["cooking"], []]):
        db.add(TikTokPost(
            user_id=linked_user.id,
            video_id=f"v{i}",
            text=f"Video {i} #legacy" if not tags else f"Video {i}",
            video_url=f"https://www.tiktok.com/@creator/video/v{i}",
            download_url="https://dl/v0.mp4" if i == 0 else None,
            play_count=100 * (i + 1),
            hashtags=json.dumps(tags),
            tiktok_created_at=datetime(2024, 1, i + 1),
        ))
    db.commit()
    return linked_user


class TestRefresh:
    def test_success(self, client, auth_headers, linked_user, make_item):
        provider = _provider([make_item("v1"), make_item("v2")])
        with patch.object(tiktok_sync, "provider", provider):
            response = client.post("/api/tiktok/refresh", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["fetched"] == 2
        assert data["inserted"] == 2
        assert data["message"] == "2 new, 0 updated, 0 unchanged"

    def test_no_records_found(self, client, auth_headers, linked_user):
        with patch.object(tiktok_sync, "provider", _provider([])):
            response = client.post("/api/tiktok/refresh", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["message"] == "No records found"

    def test_cooldown(self, client, auth_headers, linked_user):
        with patch.object(tiktok_sync, "provider", _provider([])):
            client.post("/api/tiktok/refresh", headers=auth_headers)
            response = client.post("/api/tiktok/refresh", headers=auth_headers)

        assert response.status_code == 429
        detail = response.json()["detail"]
        assert 0 < detail["remaining_ms"] <= 5 * 60 * 1000
        assert detail["retry_in"] in ("05:00", "04:59")
        assert 1 <= int(response.headers["Retry-After"]) <= 300

    def test_not_linked(self, client, auth_headers):
        response = client.post("/api/tiktok/refresh", headers=auth_headers)
        assert response.status_code == 400
        assert "username" in response.json()["detail"]

    def test_disabled(self, client, auth_headers, linked_user, db):
        SqlFetchStateStore(db).set_enabled(owner_key_for(linked_user.id), False)
        response = client.post("/api/tiktok/refresh", headers=auth_headers)
        assert response.status_code == 403

    def test_provider_error(self, client, auth_headers, linked_user):
        failure = {"success": False, "error": "HTTP 500", "timed_out": False}
        with patch.object(tiktok_sync, "provider", _provider(failure=failure)):
            response = client.post("/api/tiktok/refresh", headers=auth_headers)
        assert response.status_code == 502
        assert response.json()["detail"] == "Fetch failed: HTTP 500"

    def test_provider_timeout(self, client, auth_headers, linked_user):
        failure = {"success": False, "error": "Request timed out", "timed_out": True}
        with patch.object(tiktok_sync, "provider", _provider(failure=failure)):
            response = client.post("/api/tiktok/refresh", headers=auth_headers)
        assert response.status_code == 504

    def test_requires_auth(self, client):
        response = client.post("/api/tiktok/refresh")
        assert response.status_code == 401


class TestCachedPosts:
    def test_newest_first(self, client, auth_headers, cached_posts):
        response = client.get("/api/tiktok/posts", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert [p["video_id"] for p in data] == ["v2", "v1", "v0"]

    def test_playback_and_hashtags(self, client, auth_headers, cached_posts):
        data = {p["video_id"]: p for p in client.get("/api/tiktok/posts", headers=auth_headers).json()}
        assert data["v0"]["playback_url"] == "https://dl/v0.mp4"
        assert data["v1"]["playback_url"] == "https://www.tiktok.com/@creator/video/v1"
        assert data["v0"]["hashtags"] == ["fyp", "dance"]
        assert data["v2"]["hashtags"] == ["legacy"]

    def test_limit_offset(self, client, auth_headers, cached_posts):
        response = client.get("/api/tiktok/posts?limit=1&offset=1", headers=auth_headers)
        assert [p["video_id"] for p in response.json()] == ["v1"]

    def test_other_user_sees_nothing(self, client, cached_posts, second_user):
        _, token = second_user
        response = client.get("/api/tiktok/posts", headers={"Authorization": f"Bearer {token}"})
        assert response.json() == []


class TestSearchPosts:
    def test_by_tag(self, client, auth_headers, cached_posts):
        response = client.get("/api/tiktok/posts/search?tag=%23fyp", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["posts"][0]["video_id"] == "v0"
        assert data["per_page"] == 9

    def test_caption_fallback(self, client, auth_headers, cached_posts):
        data = client.get("/api/tiktok/posts/search?tag=legacy", headers=auth_headers).json()
        assert [p["video_id"] for p in data["posts"]] == ["v2"]

    def test_tag_required(self, client, auth_headers):
        response = client.get("/api/tiktok/posts/search", headers=auth_headers)
        assert response.status_code == 422

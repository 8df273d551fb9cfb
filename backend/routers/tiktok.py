"""
TikTok API router.
Refresh the linked account and browse its cached videos.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from database import get_db, User
from core.auth import get_current_user
from core.utils import raise_for_sync_outcome, sync_message
from models.schemas import CachedPostResponse, PostSearchResponse, SyncResponse
from services.cache_store import account_posts, account_scope, search_account_posts
from services.tiktok_sync import tiktok_sync

router = APIRouter()


@router.post("/refresh", response_model=SyncResponse)
async def refresh_tiktok_data(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Fetch fresh profile + video metrics, subject to the cooldown."""
    outcome = await tiktok_sync.refresh_account(db, user)
    raise_for_sync_outcome(outcome)
    return SyncResponse(message=sync_message(outcome), **outcome.summary())


@router.get("/posts", response_model=List[CachedPostResponse])
async def get_cached_posts(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cached videos of the linked account, newest first."""
    rows = account_posts.list_records(db, account_scope(user.id), limit=limit, offset=offset)
    return [CachedPostResponse.from_row(row) for row in rows]


@router.get("/posts/search", response_model=PostSearchResponse)
async def search_cached_posts(
    tag: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    per_page: int = Query(9, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Search the linked account's cached videos by hashtag."""
    result = search_account_posts(db, user.id, tag, page=page, per_page=per_page)
    return PostSearchResponse(
        posts=[CachedPostResponse.from_row(row) for row in result["posts"]],
        total=result["total"],
        page=result["page"],
        per_page=result["per_page"],
        total_pages=result["total_pages"],
    )

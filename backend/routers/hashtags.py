"""
Hashtag search router.
Provider searches cached per (search term, user), plus search history.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from database import get_db, User
from core.auth import get_current_user
from core.utils import raise_for_sync_outcome, sync_message
from models.schemas import HashtagSearchRequest, HashtagSearchResponse, SearchResultResponse
from services.cache_store import search_history, search_results_for_term
from services.tiktok_sync import tiktok_sync

router = APIRouter()


@router.post("/search", response_model=HashtagSearchResponse)
async def search_hashtag(
    data: HashtagSearchRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Search TikTok for a hashtag; results are cached and returned most played first."""
    outcome = await tiktok_sync.search_hashtag(db, user, data.hashtag, data.results_per_page)
    raise_for_sync_outcome(outcome)

    videos = [SearchResultResponse.from_record(r, outcome.search_term) for r in outcome.records]
    return HashtagSearchResponse(
        message=sync_message(outcome),
        hashtag=outcome.search_term,
        count=len(videos),
        videos=videos,
        **outcome.summary(),
    )


@router.get("/history", response_model=List[str])
async def get_search_history(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Distinct hashtags this user searched, most recent first."""
    return search_history(db, user.id)


@router.get("/results", response_model=List[SearchResultResponse])
async def get_cached_results(
    term: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cached results of a previous search, without calling the provider."""
    rows = search_results_for_term(db, user.id, term, limit=limit)
    return [SearchResultResponse.from_row(row) for row in rows]

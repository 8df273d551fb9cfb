"""
Profile router.
Linked TikTok username and the data-fetching switch.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db, User
from core.auth import get_current_user
from models.schemas import ProfileResponse, TikTokUsernameUpdate, DataFetchingUpdate
from services.cooldown import SqlFetchStateStore, owner_key_for
from services.normalization import clean_username

logger = logging.getLogger(__name__)

router = APIRouter()


def _profile_response(user: User, db: Session) -> ProfileResponse:
    state = SqlFetchStateStore(db).get(owner_key_for(user.id))
    return ProfileResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        tiktok_username=user.tiktok_username,
        avatar_url=user.avatar_url,
        following=user.following,
        fans=user.fans,
        heart=user.heart,
        video_count=user.video_count,
        profile_updated_at=user.profile_updated_at,
        data_fetching_enabled=state.data_fetching_enabled if state else True,
    )


@router.get("", response_model=ProfileResponse)
async def get_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get the current user's profile and linked TikTok summary."""
    return _profile_response(user, db)


@router.put("/tiktok-username", response_model=ProfileResponse)
async def set_tiktok_username(
    data: TikTokUsernameUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Link (or change) the TikTok account tracked for this user."""
    username = clean_username(data.tiktok_username)
    if not username:
        raise HTTPException(status_code=400, detail="TikTok username is required")

    if username != user.tiktok_username:
        user.tiktok_username = username
        # The old account's counters no longer describe the linked profile
        user.avatar_url = None
        user.following = None
        user.fans = None
        user.heart = None
        user.video_count = None
        user.profile_updated_at = None
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.id} linked TikTok account @{username}")

    return _profile_response(user, db)


@router.put("/data-fetching", response_model=ProfileResponse)
async def set_data_fetching(
    data: DataFetchingUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Turn provider fetching on or off for this user."""
    SqlFetchStateStore(db).set_enabled(owner_key_for(user.id), data.enabled)
    logger.info(f"User {user.id} set data fetching to {data.enabled}")
    return _profile_response(user, db)

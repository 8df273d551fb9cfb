"""
Freshness router: exposes the owner's cooldown clock without reserving it.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db, User
from core.auth import get_current_user
from core.config import settings
from core.utils import ms_to_datetime
from models.schemas import FreshnessResponse
from services.cooldown import CooldownGate, SqlFetchStateStore, format_remaining, owner_key_for

router = APIRouter()


@router.get("", response_model=FreshnessResponse)
async def get_freshness(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """When the last provider fetch happened and when the next one is allowed."""
    status = CooldownGate(SqlFetchStateStore(db)).status(owner_key_for(user.id))
    remaining = status["remaining_ms"]
    return FreshnessResponse(
        enabled=status["enabled"],
        last_fetch_at=ms_to_datetime(status["last_fetch_at_ms"]),
        next_fetch_at=ms_to_datetime(status["next_fetch_at_ms"]),
        remaining_ms=remaining,
        retry_in=format_remaining(remaining) if remaining is not None else None,
        cooldown_minutes=settings.FETCH_COOLDOWN_MINUTES,
    )

"""Shared utility functions."""
from datetime import datetime, timezone
from fastapi import HTTPException

from services.cooldown import format_remaining
from services.tiktok_sync import SyncOutcome, SyncStatus

_ERROR_STATUS = {
    SyncStatus.DISABLED: 403,
    SyncStatus.NOT_LINKED: 400,
    SyncStatus.INVALID: 400,
    SyncStatus.PROVIDER_ERROR: 502,
    SyncStatus.PROVIDER_TIMEOUT: 504,
    SyncStatus.WRITE_ERROR: 500,
}

_ERROR_MESSAGES = {
    SyncStatus.DISABLED: "Data fetching is disabled for this account",
    SyncStatus.PROVIDER_ERROR: "Fetch failed",
    SyncStatus.PROVIDER_TIMEOUT: "Fetch timed out",
    SyncStatus.WRITE_ERROR: "Could not save fetched data",
}


def ms_to_datetime(value: int | None) -> datetime | None:
    """Epoch milliseconds -> naive UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def raise_for_sync_outcome(outcome: SyncOutcome) -> None:
    """Translate a failed sync into an HTTPException. No-op on success."""
    if outcome.ok:
        return

    if outcome.status is SyncStatus.COOLDOWN:
        retry_in = format_remaining(outcome.remaining_ms)
        retry_after = -(-(outcome.remaining_ms or 0) // 1000)
        raise HTTPException(
            status_code=429,
            detail={
                "message": f"Rate limited. Try again in {retry_in}.",
                "remaining_ms": outcome.remaining_ms,
                "retry_in": retry_in,
            },
            headers={"Retry-After": str(max(1, retry_after))},
        )

    message = _ERROR_MESSAGES.get(outcome.status)
    if message and outcome.error:
        message = f"{message}: {outcome.error}"
    raise HTTPException(
        status_code=_ERROR_STATUS.get(outcome.status, 500),
        detail=message or outcome.error or "Sync failed",
    )


def sync_message(outcome: SyncOutcome) -> str:
    if outcome.fetched == 0:
        return "No records found"
    return f"{outcome.inserted} new, {outcome.updated} updated, {outcome.unchanged} unchanged"

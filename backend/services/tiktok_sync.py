"""
TikTok sync service.
Gate -> provider -> reconcile -> cache, for account refreshes and hashtag searches.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import CacheWriteError
from database import User
from services.apify import apify
from services.cache_store import account_posts, account_scope, record_search, search_results, search_scope
from services.cooldown import CooldownGate, GateDecision, GateOutcome, SqlFetchStateStore, owner_key_for
from services.normalization import RawRecord, normalize_items, normalize_search_term
from services.reconciliation import reconcile

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    OK = "ok"
    COOLDOWN = "cooldown"
    DISABLED = "disabled"
    NOT_LINKED = "not_linked"
    INVALID = "invalid"
    PROVIDER_ERROR = "provider_error"
    PROVIDER_TIMEOUT = "provider_timeout"
    WRITE_ERROR = "write_error"


@dataclass
class SyncOutcome:
    status: SyncStatus
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    remaining_ms: Optional[int] = None
    error: Optional[str] = None
    search_term: Optional[str] = None
    records: list[RawRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is SyncStatus.OK

    def summary(self) -> dict:
        return {
            "status": self.status.value,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "remaining_ms": self.remaining_ms,
            "error": self.error,
        }


def _default_gate(db: Session) -> CooldownGate:
    return CooldownGate(SqlFetchStateStore(db))


def _denied(decision: GateDecision) -> SyncOutcome:
    if decision.outcome is GateOutcome.DISABLED:
        return SyncOutcome(SyncStatus.DISABLED)
    return SyncOutcome(SyncStatus.COOLDOWN, remaining_ms=decision.remaining_ms)


def _provider_failure(result: dict) -> SyncOutcome:
    status = SyncStatus.PROVIDER_TIMEOUT if result.get("timed_out") else SyncStatus.PROVIDER_ERROR
    return SyncOutcome(status, error=result.get("error") or "Provider call failed")


class TikTokSyncService:
    """Keeps the TikTok cache fresh without hammering the paid provider."""

    def __init__(self, provider=None, gate_factory: Optional[Callable[[Session], CooldownGate]] = None):
        self.provider = provider or apify
        self.gate_factory = gate_factory or _default_gate

    def check_gate(self, db: Session, user: User) -> GateDecision:
        return self.gate_factory(db).check_and_maybe_reserve(owner_key_for(user.id))

    async def refresh_account(self, db: Session, user: User) -> SyncOutcome:
        """Refresh the owner's linked account: profile summary + videos."""
        if not user.tiktok_username:
            return SyncOutcome(SyncStatus.NOT_LINKED, error="No TikTok username linked")

        decision = self.check_gate(db, user)
        if not decision.allowed:
            return _denied(decision)

        # The reservation is already committed; nothing below rolls it back.
        result = await self.provider.fetch_profile_videos(user.tiktok_username)
        if not result.get("success"):
            logger.error(f"Account refresh failed for user {user.id} (@{user.tiktok_username}): {result.get('error')}")
            return _provider_failure(result)

        try:
            profile = result.get("profile")
            if profile:
                for key, value in profile.items():
                    if value is not None:
                        setattr(user, key, value)
                user.profile_updated_at = datetime.utcnow()
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Profile update failed for user {user.id}: {e}")
            return SyncOutcome(SyncStatus.WRITE_ERROR, error="Could not save profile summary")

        records, skipped = normalize_items(result.get("videos", []))
        outcome = self._store(db, account_posts, account_scope(user.id), records, skipped)
        outcome.fetched = len(result.get("videos", []))
        if not records:
            logger.info(f"No videos found for @{user.tiktok_username}")
        return outcome

    async def search_hashtag(self, db: Session, user: User, hashtag: str,
                             results_per_page: Optional[int] = None) -> SyncOutcome:
        """Search the provider for a hashtag and cache results in the user's search scope."""
        term = normalize_search_term(hashtag)
        if not term:
            return SyncOutcome(SyncStatus.INVALID, error="Hashtag is required")

        decision = self.check_gate(db, user)
        if not decision.allowed:
            outcome = _denied(decision)
            outcome.search_term = term
            return outcome

        result = await self.provider.search_hashtag(term, results_per_page)
        if not result.get("success"):
            logger.error(f"Hashtag search failed for #{term} (user {user.id}): {result.get('error')}")
            outcome = _provider_failure(result)
            outcome.search_term = term
            return outcome

        records, skipped = normalize_items(result.get("videos", []))
        records.sort(key=lambda r: r.play_count or 0, reverse=True)

        outcome = self._store(db, search_results, search_scope(term, user.id), records, skipped)
        if outcome.ok:
            try:
                record_search(db, user.id, term)
            except CacheWriteError as e:
                logger.warning(f"Search history not updated for user {user.id}: {e}")
        outcome.fetched = len(result.get("videos", []))
        outcome.search_term = term
        outcome.records = records
        return outcome

    def _store(self, db: Session, store, scope: dict, records: list[RawRecord], skipped: int) -> SyncOutcome:
        existing = store.get_existing(db, scope, [r.video_id for r in records])
        result = reconcile(scope, records, existing)
        result.skipped += skipped
        if result.skipped:
            logger.warning(f"Skipped {result.skipped} malformed record(s) for {scope}")

        if result.is_empty:
            logger.info(f"Cache already current for {scope}: {result.unchanged} unchanged, {result.skipped} skipped")
            return SyncOutcome(SyncStatus.OK, unchanged=result.unchanged, skipped=result.skipped)

        try:
            inserted, updated = store.apply(db, scope, result)
        except CacheWriteError as e:
            logger.error(f"Cache write failed for {scope}: {e}")
            return SyncOutcome(SyncStatus.WRITE_ERROR, skipped=result.skipped, error=str(e))

        logger.info(
            f"Synced {scope}: {inserted} new, {updated} updated, "
            f"{result.unchanged} unchanged, {result.skipped} skipped"
        )
        return SyncOutcome(
            SyncStatus.OK,
            inserted=inserted,
            updated=updated,
            unchanged=result.unchanged,
            skipped=result.skipped,
        )


# Singleton instance
tiktok_sync = TikTokSyncService()

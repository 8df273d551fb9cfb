"""
Relational cache of fetched TikTok videos.

Two scopes share one implementation:
  - account scope: TikTokPost rows keyed by (user_id, video_id)
  - search scope:  HashtagSearchResult rows keyed by (search_term, user_id, video_id)
A scope key is a dict holding exactly the scope's partition columns.
"""
import logging
import math
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import desc, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import CacheWriteError
from database import HashtagSearch, HashtagSearchResult, TikTokPost
from services.normalization import normalize_search_term
from services.reconciliation import ReconcileResult

logger = logging.getLogger(__name__)


def account_scope(user_id: int) -> dict:
    return {"user_id": user_id}


def search_scope(search_term: str, user_id: int) -> dict:
    return {"search_term": normalize_search_term(search_term), "user_id": user_id}


class ScopedCacheStore:
    """Point lookup, batch insert and batch update for one scope type."""

    def __init__(self, model, scope_columns: tuple[str, ...]):
        self.model = model
        self.scope_columns = scope_columns
        self.columns = {c.name for c in model.__table__.columns}

    def _check_scope(self, scope: dict):
        if set(scope) != set(self.scope_columns):
            raise ValueError(
                f"{self.model.__tablename__} scope needs {self.scope_columns}, got {tuple(scope)}"
            )

    def _scoped(self, db: Session, scope: dict):
        self._check_scope(scope)
        query = db.query(self.model)
        for column in self.scope_columns:
            query = query.filter(getattr(self.model, column) == scope[column])
        return query

    def row_to_dict(self, row) -> dict:
        return {name: getattr(row, name) for name in self.columns}

    def get_existing(self, db: Session, scope: dict, ids: Iterable[str]) -> dict[str, dict]:
        """Cached rows of this scope whose video id is in ids, keyed by video id."""
        ids = list(set(ids))
        if not ids:
            self._check_scope(scope)
            return {}
        rows = self._scoped(db, scope).filter(self.model.video_id.in_(ids)).all()
        return {row.video_id: self.row_to_dict(row) for row in rows}

    def insert_batch(self, db: Session, records: list[dict]) -> int:
        """Insert new rows. Raises CacheWriteError when the database rejects the batch."""
        if not records:
            return 0
        for record in records:
            missing = [c for c in self.scope_columns if record.get(c) is None]
            if missing:
                raise CacheWriteError(f"Record {record.get('video_id')} lacks scope column(s) {missing}")

        db.add_all([
            self.model(**{k: v for k, v in record.items() if k in self.columns and k != "id"})
            for record in records
        ])
        try:
            db.commit()
        except (SQLAlchemyError, OverflowError) as e:
            db.rollback()
            ids = [r.get("video_id") for r in records]
            logger.error(f"Insert into {self.model.__tablename__} failed for {len(records)} row(s): {getattr(e, 'orig', e)}")
            raise CacheWriteError(f"Insert into {self.model.__tablename__} failed", ids)
        return len(records)

    def update_batch(self, db: Session, scope: dict, patches: list[tuple[str, dict]]) -> int:
        """Apply partial updates by video id. Raises CacheWriteError if an id is not cached."""
        if not patches:
            return 0
        ids = [video_id for video_id, _ in patches]
        rows = {row.video_id: row for row in self._scoped(db, scope).filter(self.model.video_id.in_(ids)).all()}

        missing = [video_id for video_id in ids if video_id not in rows]
        if missing:
            logger.error(f"Update on {self.model.__tablename__} targets uncached id(s) {missing}")
            raise CacheWriteError(f"No cached row for {len(missing)} id(s)", missing)

        for video_id, patch in patches:
            row = rows[video_id]
            for key, value in patch.items():
                if key in self.columns and key not in ("id", "video_id", *self.scope_columns):
                    setattr(row, key, value)
        try:
            db.commit()
        except (SQLAlchemyError, OverflowError) as e:
            db.rollback()
            raise CacheWriteError(f"Update on {self.model.__tablename__} failed: {getattr(e, 'orig', e)}", ids)
        return len(patches)

    def apply(self, db: Session, scope: dict, result: ReconcileResult) -> tuple[int, int]:
        """
        Write a reconciliation result: inserts first, then updates.
        Not transactional across the two batches.
        """
        self._check_scope(scope)
        inserted = self.insert_batch(db, result.to_insert)
        updated = self.update_batch(db, scope, result.to_update)
        return inserted, updated

    def list_records(self, db: Session, scope: dict, limit: int = 50, offset: int = 0, order_by=None) -> list:
        order_by = order_by if order_by is not None else desc(self.model.tiktok_created_at)
        return self._scoped(db, scope).order_by(order_by).offset(offset).limit(limit).all()


account_posts = ScopedCacheStore(TikTokPost, ("user_id",))
search_results = ScopedCacheStore(HashtagSearchResult, ("search_term", "user_id"))


# =============================================================================
# Read queries
# =============================================================================

def _like_literal(value: str) -> str:
    """Escape LIKE wildcards so a tag matches literally (escape char: backslash)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_account_posts(db: Session, user_id: int, tag: str, page: int = 1, per_page: int = 9) -> dict:
    """Owner's cached posts mentioning a hashtag, newest first, paginated."""
    tag = normalize_search_term(tag)
    page = max(1, page)
    if not tag:
        return {"posts": [], "total": 0, "page": page, "per_page": per_page, "total_pages": 0}

    literal = _like_literal(tag)
    query = db.query(TikTokPost).filter(
        TikTokPost.user_id == user_id,
        or_(
            TikTokPost.hashtags.ilike(f'%"{literal}"%', escape="\\"),
            TikTokPost.text.ilike(f"%#{literal}%", escape="\\"),
        ),
    )
    total = query.count()
    posts = (
        query.order_by(desc(TikTokPost.tiktok_created_at))
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "posts": posts,
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": math.ceil(total / per_page) if per_page else 0,
    }


def record_search(db: Session, user_id: int, term: str, now: Optional[datetime] = None) -> HashtagSearch:
    """Stamp a provider search in the user's history. Raises CacheWriteError."""
    term = normalize_search_term(term)
    now = now or datetime.utcnow()
    entry = db.query(HashtagSearch).filter(
        HashtagSearch.user_id == user_id, HashtagSearch.search_term == term,
    ).first()
    if entry:
        entry.last_searched_at = now
        entry.search_count = (entry.search_count or 0) + 1
    else:
        entry = HashtagSearch(user_id=user_id, search_term=term, last_searched_at=now, search_count=1)
        db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise CacheWriteError(f"Could not record search for #{term}: {getattr(e, 'orig', e)}")
    return entry


def search_history(db: Session, user_id: int) -> list[str]:
    """Distinct search terms of a user, most recently searched first."""
    rows = (
        db.query(HashtagSearch.search_term)
        .filter(HashtagSearch.user_id == user_id)
        .order_by(desc(HashtagSearch.last_searched_at), desc(HashtagSearch.id))
        .all()
    )
    return [term for (term,) in rows]


def search_results_for_term(db: Session, user_id: int, term: str, limit: int = 50) -> list:
    """Cached search results for a term, most played first."""
    return search_results.list_records(
        db,
        search_scope(term, user_id),
        limit=limit,
        order_by=desc(HashtagSearchResult.play_count),
    )

"""
Reconciliation of freshly fetched provider items against cached rows.

Classifies each incoming item as NEW, UPDATE or NOOP and produces the minimal
write set for the cache store. No I/O happens here.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from core.errors import MalformedRecord
from services.normalization import COUNT_COLUMNS, RawRecord, normalize_record

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    NEW = "new"
    UPDATE = "update"
    NOOP = "noop"


@dataclass
class ReconcileResult:
    to_insert: list[dict] = field(default_factory=list)
    to_update: list[tuple[str, dict]] = field(default_factory=list)
    skipped: int = 0
    duplicates: int = 0
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.to_insert and not self.to_update


def _field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def classify(record: RawRecord, existing_row: Optional[Any]) -> Classification:
    """Compare one incoming record with its cached row (if any)."""
    if existing_row is None:
        return Classification.NEW

    if record.download_url and record.download_url != _field(existing_row, "download_url"):
        return Classification.UPDATE

    for column in COUNT_COLUMNS:
        incoming = getattr(record, column)
        # A count missing from this fetch is not a change
        if incoming is not None and incoming != _field(existing_row, column):
            return Classification.UPDATE

    return Classification.NOOP


def build_patch(record: RawRecord, existing_row: Any, now: datetime) -> dict:
    """Partial row for an UPDATE: download URL, the five counts, cached_at."""
    patch = {"download_url": record.download_url or _field(existing_row, "download_url")}
    for column in COUNT_COLUMNS:
        incoming = getattr(record, column)
        patch[column] = incoming if incoming is not None else _field(existing_row, column)
    patch["cached_at"] = now
    return patch


def reconcile(
    scope_key: Mapping[str, Any],
    incoming: Iterable[Any],
    existing: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """
    Build the write set for one scope.

    Args:
        scope_key: Columns identifying the partition, e.g. {"user_id": 1} or
            {"search_term": "cats", "user_id": 1}. Copied onto new rows.
        incoming: Provider items (dicts) or already-normalized RawRecords.
            Output preserves this order.
        existing: Cached rows for the same scope, keyed by video id.
        now: Bookkeeping timestamp for cached_at.

    Malformed items are skipped and counted. Repeated ids within one batch
    keep their first occurrence.
    """
    now = now or datetime.utcnow()
    result = ReconcileResult()
    seen: set[str] = set()

    for item in incoming:
        if isinstance(item, RawRecord):
            record = item
        else:
            try:
                record = normalize_record(item)
            except MalformedRecord as e:
                logger.debug(f"Skipping malformed record: {e}")
                result.skipped += 1
                continue

        if record.video_id in seen:
            result.duplicates += 1
            continue
        seen.add(record.video_id)

        existing_row = existing.get(record.video_id)
        kind = classify(record, existing_row)

        if kind is Classification.NEW:
            row = record.to_cache_fields()
            row.update(scope_key)
            row["cached_at"] = now
            result.to_insert.append(row)
        elif kind is Classification.UPDATE:
            result.to_update.append((record.video_id, build_patch(record, existing_row, now)))
        else:
            result.unchanged += 1

    if result.skipped:
        logger.warning(f"Reconciliation skipped {result.skipped} malformed record(s) for {dict(scope_key)}")

    return result

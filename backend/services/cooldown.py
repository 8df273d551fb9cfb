"""
Cooldown gate for provider calls.

One clock per owner. A call is allowed when the owner's fetch switch is on
and the cooldown window has elapsed since the last reservation. The
reservation is written atomically before the provider is called and is
never rolled back, so a slow, failed or abandoned call still consumes the
window.
"""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from database import FetchState

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def owner_key_for(user_id: int) -> str:
    return f"user:{user_id}"


class GateOutcome(str, Enum):
    ALLOWED = "allowed"
    COOLDOWN = "cooldown"
    DISABLED = "disabled"


@dataclass
class GateDecision:
    outcome: GateOutcome
    remaining_ms: Optional[int] = None
    reserved_at_ms: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is GateOutcome.ALLOWED


@dataclass
class FetchStateSnapshot:
    owner_key: str
    last_fetch_at_ms: Optional[int]
    data_fetching_enabled: bool = True


# =============================================================================
# Stores
# =============================================================================

class FetchStateStore:
    """Keyed fetch state with an atomic conditional reservation."""

    def get(self, owner_key: str) -> Optional[FetchStateSnapshot]:
        raise NotImplementedError

    def try_reserve(self, owner_key: str, now: int, window_ms: int) -> bool:
        """
        Set last_fetch_at_ms = now iff fetching is enabled and either no fetch
        was recorded or the last one is at least window_ms old. Must be a
        single atomic compare-and-set.
        """
        raise NotImplementedError

    def set_enabled(self, owner_key: str, enabled: bool) -> None:
        raise NotImplementedError


class InMemoryFetchStateStore(FetchStateStore):
    """Process-local store, for tests and single-process tools."""

    def __init__(self):
        self._lock = threading.Lock()
        self._states: dict[str, FetchStateSnapshot] = {}

    def get(self, owner_key: str) -> Optional[FetchStateSnapshot]:
        with self._lock:
            state = self._states.get(owner_key)
            if state is None:
                return None
            return FetchStateSnapshot(state.owner_key, state.last_fetch_at_ms, state.data_fetching_enabled)

    def try_reserve(self, owner_key: str, now: int, window_ms: int) -> bool:
        with self._lock:
            state = self._states.get(owner_key)
            if state is None:
                self._states[owner_key] = FetchStateSnapshot(owner_key, now, True)
                return True
            if not state.data_fetching_enabled:
                return False
            if state.last_fetch_at_ms is None or state.last_fetch_at_ms <= now - window_ms:
                state.last_fetch_at_ms = now
                return True
            return False

    def set_enabled(self, owner_key: str, enabled: bool) -> None:
        with self._lock:
            state = self._states.setdefault(owner_key, FetchStateSnapshot(owner_key, None, True))
            state.data_fetching_enabled = enabled


class SqlFetchStateStore(FetchStateStore):
    """FetchState rows; the reservation is one guarded UPDATE."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, owner_key: str) -> Optional[FetchStateSnapshot]:
        row = self.db.query(FetchState).filter(FetchState.owner_key == owner_key).first()
        if row is None:
            return None
        return FetchStateSnapshot(
            owner_key=row.owner_key,
            last_fetch_at_ms=row.last_fetch_at_ms,
            data_fetching_enabled=bool(row.data_fetching_enabled),
        )

    def _conditional_update(self, owner_key: str, now: int, window_ms: int) -> bool:
        stmt = (
            update(FetchState)
            .where(
                FetchState.owner_key == owner_key,
                FetchState.data_fetching_enabled == True,
                or_(
                    FetchState.last_fetch_at_ms.is_(None),
                    FetchState.last_fetch_at_ms <= now - window_ms,
                ),
            )
            .values(last_fetch_at_ms=now, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def try_reserve(self, owner_key: str, now: int, window_ms: int) -> bool:
        if self._conditional_update(owner_key, now, window_ms):
            return True

        if self.get(owner_key) is not None:
            return False

        # First fetch for this owner: the primary key decides between racers
        self.db.add(FetchState(owner_key=owner_key, last_fetch_at_ms=now, data_fetching_enabled=True))
        try:
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            return self._conditional_update(owner_key, now, window_ms)

    def set_enabled(self, owner_key: str, enabled: bool) -> None:
        row = self.db.query(FetchState).filter(FetchState.owner_key == owner_key).first()
        if row is None:
            row = FetchState(owner_key=owner_key, last_fetch_at_ms=None)
            self.db.add(row)
        row.data_fetching_enabled = enabled
        self.db.commit()


# =============================================================================
# Gate
# =============================================================================

class CooldownGate:
    """Decides whether a provider refresh may run now for an owner."""

    def __init__(
        self,
        store: FetchStateStore,
        window_ms: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.window_ms = window_ms if window_ms is not None else settings.cooldown_window_ms
        self.clock = clock

    def _remaining(self, last_fetch_at_ms: int, now: int) -> int:
        remaining = last_fetch_at_ms + self.window_ms - now
        return max(1, min(remaining, self.window_ms))

    def check_and_maybe_reserve(self, owner_key: str) -> GateDecision:
        if not owner_key:
            raise ValueError("owner_key must be non-empty")

        state = self.store.get(owner_key)
        if state is not None and not state.data_fetching_enabled:
            logger.info(f"Fetch denied for {owner_key}: data fetching disabled")
            return GateDecision(GateOutcome.DISABLED)

        now = self.clock()
        if self.store.try_reserve(owner_key, now, self.window_ms):
            return GateDecision(GateOutcome.ALLOWED, reserved_at_ms=now)

        # Lost the compare-and-set: re-read to explain why
        state = self.store.get(owner_key)
        if state is None or not state.data_fetching_enabled:
            return GateDecision(GateOutcome.DISABLED)
        if state.last_fetch_at_ms is None:
            return GateDecision(GateOutcome.COOLDOWN, remaining_ms=self.window_ms)

        remaining = self._remaining(state.last_fetch_at_ms, now)
        logger.info(f"Fetch denied for {owner_key}: cooldown active, {remaining} ms remaining")
        return GateDecision(GateOutcome.COOLDOWN, remaining_ms=remaining)

    def status(self, owner_key: str) -> dict:
        """Read-only view of the owner's clock; never reserves."""
        state = self.store.get(owner_key)
        now = self.clock()
        enabled = state.data_fetching_enabled if state is not None else True
        last = state.last_fetch_at_ms if state is not None else None

        remaining = 0
        next_fetch_at_ms = None
        if last is not None:
            next_fetch_at_ms = last + self.window_ms
            if now < next_fetch_at_ms:
                remaining = self._remaining(last, now)

        return {
            "enabled": enabled,
            "last_fetch_at_ms": last,
            "next_fetch_at_ms": next_fetch_at_ms,
            "remaining_ms": remaining if enabled else None,
            "cooldown_ms": self.window_ms,
        }


def format_remaining(remaining_ms: Optional[int]) -> str:
    """MM:SS, rounding up to the next second."""
    if not remaining_ms or remaining_ms <= 0:
        return "00:00"
    seconds = -(-remaining_ms // 1000)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"

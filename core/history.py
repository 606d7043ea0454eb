"""
ForgeSR - History Cache
========================
Persisted, size- and age-bounded collection of completed upscales.

Two independent bounds:
- Age: items older than retention_days are removed by cleanup()
- Count: never more than max_items; the oldest by timestamp go first

Eviction is by creation time, not by access. cleanup() is rate limited
through a persisted "last cleanup" timestamp.
"""

import asyncio
import json
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from collections.abc import Sequence
from typing import Callable, Iterable, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .config import ForgeConfig
from .events import Signal
from .storage import HISTORY_KEY, LAST_CLEANUP_KEY, KeyValueStore


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryItem(BaseModel):
    """Frozen record of a completed upscale."""

    model_config = ConfigDict(frozen=True)

    id: str
    job_id: str
    filename: str = ""
    original_url: Optional[str] = None
    result_url: str
    scale: int
    image_type: str
    output_format: str = "png"
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    result_width: Optional[int] = None
    result_height: Optional[int] = None
    file_size_bytes: int = 0
    processing_seconds: Optional[float] = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class HistorySort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    SCALE = "scale"
    EXPIRY = "expiry"


@dataclass(frozen=True)
class HistoryFilter:
    image_type: Optional[str] = None
    expiring_within_days: Optional[float] = None


@dataclass(frozen=True)
class PruneResult:
    kept: Tuple[HistoryItem, ...]
    expired: Tuple[HistoryItem, ...]
    overflow: Tuple[HistoryItem, ...]

    @property
    def removed_count(self) -> int:
        return len(self.expired) + len(self.overflow)


@dataclass(frozen=True)
class CleanupEvent:
    """One-shot notification emitted when an automatic cleanup removed items."""
    removed_count: int
    expired_count: int
    overflow_count: int
    cause: str
    dismiss_after_seconds: float
    at: datetime


def expires_at(item: HistoryItem, retention_days: float) -> datetime:
    return item.timestamp + timedelta(days=retention_days)


def is_expired(item: HistoryItem, now: datetime, retention_days: float) -> bool:
    return now > expires_at(item, retention_days)


def days_until_expiry(item: HistoryItem, now: datetime, retention_days: float) -> int:
    """Whole days left before the item expires (0 once expired)."""
    remaining = (expires_at(item, retention_days) - now).total_seconds() / 86400
    return max(0, math.ceil(remaining))


def _newest_first(items: Iterable[HistoryItem]) -> List[HistoryItem]:
    return sorted(items, key=lambda item: item.timestamp, reverse=True)


def prune_history(
    items: Sequence[HistoryItem],
    now: datetime,
    retention_days: float,
    max_items: int,
    snapshot_at: Optional[datetime] = None
) -> PruneResult:
    """
    Compute the next item set for a cleanup pass.

    Items created after snapshot_at are never removed, so an item appended
    while the pass runs always survives it.

    Args:
        items: Current items, any order
        now: Reference time for expiry
        retention_days: Age bound
        max_items: Count bound
        snapshot_at: Cutoff for eligible items (default: now)

    Returns:
        PruneResult with kept items newest-first
    """
    snapshot_at = snapshot_at or now
    fresh = [item for item in items if item.timestamp > snapshot_at]
    eligible = [item for item in items if item.timestamp <= snapshot_at]

    expired = [item for item in eligible if is_expired(item, now, retention_days)]
    survivors = _newest_first(item for item in eligible if not is_expired(item, now, retention_days))

    room = max(0, max_items - len(fresh))
    overflow = survivors[room:]
    kept = _newest_first(fresh + survivors[:room])

    return PruneResult(kept=tuple(kept), expired=tuple(expired), overflow=tuple(overflow))


class HistoryView(Sequence):
    """
    Read-only, lazily evaluated view over a snapshot of the cache.

    Filtering and sorting run on first access.
    """

    def __init__(
        self,
        items: Tuple[HistoryItem, ...],
        history_filter: HistoryFilter,
        sort: HistorySort,
        now: datetime,
        retention_days: float
    ):
        self._source = items
        self._filter = history_filter
        self._sort = sort
        self._now = now
        self._retention_days = retention_days
        self._items: Optional[Tuple[HistoryItem, ...]] = None

    def _evaluate(self) -> Tuple[HistoryItem, ...]:
        if self._items is not None:
            return self._items

        items = list(self._source)
        if self._filter.image_type and self._filter.image_type != "all":
            items = [item for item in items if item.image_type == self._filter.image_type]
        if self._filter.expiring_within_days is not None:
            horizon = self._now + timedelta(days=self._filter.expiring_within_days)
            items = [item for item in items if expires_at(item, self._retention_days) <= horizon]

        if self._sort is HistorySort.NEWEST:
            items.sort(key=lambda item: item.timestamp, reverse=True)
        elif self._sort is HistorySort.OLDEST:
            items.sort(key=lambda item: item.timestamp)
        elif self._sort is HistorySort.SCALE:
            items.sort(key=lambda item: item.scale, reverse=True)
        elif self._sort is HistorySort.EXPIRY:
            items.sort(key=lambda item: expires_at(item, self._retention_days))

        self._items = tuple(items)
        return self._items

    def __getitem__(self, index):
        return self._evaluate()[index]

    def __len__(self) -> int:
        return len(self._evaluate())

    def __iter__(self):
        return iter(self._evaluate())

    def days_until_expiry(self, item: HistoryItem) -> int:
        return days_until_expiry(item, self._now, self._retention_days)


class HistoryCache:
    """
    Bounded history of completed upscales, persisted in a KeyValueStore.

    Signals:
        items_changed(): after any mutation
        cleanup_completed(CleanupEvent): after a cleanup() that removed items
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[ForgeConfig] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        config = config or ForgeConfig()
        self.store = store
        self.retention_days = config.retention_days
        self.max_items = config.max_items
        self.cleanup_interval = timedelta(hours=config.cleanup_interval_hours)
        self.dismiss_after_seconds = config.notice_dismiss_seconds
        self.now = now or utcnow

        self.items_changed = Signal("items_changed")
        self.cleanup_completed = Signal("cleanup_completed")

        self._items: Tuple[HistoryItem, ...] = self._load()
        if len(self._items) > self.max_items:
            self._items = tuple(_newest_first(self._items)[:self.max_items])
            self._save()

        logger.debug(f"[History] Loaded {len(self._items)} items "
                     f"(retention {self.retention_days}d, max {self.max_items})")

    # === Persistence ===

    def _load(self) -> Tuple[HistoryItem, ...]:
        raw = self.store.get(HISTORY_KEY)
        if not raw:
            return ()
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[History] Discarding unreadable history: {e}")
            return ()
        if not isinstance(entries, list):
            logger.warning("[History] Discarding history: expected a list")
            return ()

        items = []
        for entry in entries:
            try:
                items.append(HistoryItem.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"[History] Skipping invalid entry: {e.error_count()} error(s)")
        return tuple(_newest_first(items))

    def _save(self) -> None:
        payload = [item.model_dump(mode="json") for item in self._items]
        self.store.set(HISTORY_KEY, json.dumps(payload))

    def _replace(self, items: Iterable[HistoryItem]) -> None:
        self._items = tuple(items)
        self._save()
        self.items_changed.emit()

    # === Reads ===

    def __len__(self) -> int:
        return len(self._items)

    def size(self) -> int:
        return len(self._items)

    def items(self) -> Tuple[HistoryItem, ...]:
        """All items, newest first."""
        return self._items

    def get(self, item_id: str) -> Optional[HistoryItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def is_expired(self, item: HistoryItem, now: Optional[datetime] = None) -> bool:
        return is_expired(item, now or self.now(), self.retention_days)

    def query(
        self,
        history_filter: Optional[HistoryFilter] = None,
        sort: HistorySort = HistorySort.NEWEST
    ) -> HistoryView:
        """Lazy view filtered by image type / expiry horizon and sorted."""
        return HistoryView(
            self._items,
            history_filter or HistoryFilter(),
            HistorySort(sort),
            self.now(),
            self.retention_days,
        )

    # === Mutations ===

    def append(self, item: HistoryItem) -> bool:
        """
        Add a completed upscale. Enforces the count bound immediately.

        Returns:
            False if an item with the same id is already present
        """
        if self.get(item.id) is not None:
            logger.debug(f"[History] Item {item.id} already recorded")
            return False

        items = _newest_first(self._items + (item,))
        if len(items) > self.max_items:
            dropped = items[self.max_items:]
            items = items[:self.max_items]
            logger.info(f"[History] Count bound reached, dropped {len(dropped)} oldest item(s)")

        self._replace(items)
        return True

    def delete(self, ids: Iterable[str]) -> int:
        """Remove items by id. Unknown ids are ignored. Returns the number removed."""
        doomed = set(ids)
        items = [item for item in self._items if item.id not in doomed]
        removed = len(self._items) - len(items)
        if removed:
            self._replace(items)
            logger.info(f"[History] Deleted {removed} item(s)")
        return removed

    def clear_all(self) -> int:
        removed = len(self._items)
        self._replace(())
        logger.info(f"[History] Cleared {removed} item(s)")
        return removed

    # === Cleanup ===

    def last_cleanup_at(self) -> Optional[datetime]:
        raw = self.store.get(LAST_CLEANUP_KEY)
        if not raw:
            return None
        try:
            return datetime.fromtimestamp(float(raw), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"[History] Ignoring invalid last-cleanup value: {raw!r}")
            return None

    def cleanup_due(self, now: Optional[datetime] = None) -> bool:
        last = self.last_cleanup_at()
        if last is None:
            return True
        return (now or self.now()) - last >= self.cleanup_interval

    def cleanup(self, now: Optional[datetime] = None, force: bool = False) -> Optional[PruneResult]:
        """
        Remove expired items, then trim to max_items.

        Runs at most once per cleanup interval unless force is set.

        Returns:
            PruneResult, or None if the pass was skipped
        """
        now = now or self.now()
        if not force and not self.cleanup_due(now):
            return None

        result = prune_history(self._items, now, self.retention_days, self.max_items, snapshot_at=now)
        self.store.set(LAST_CLEANUP_KEY, repr(now.timestamp()))

        if result.removed_count == 0:
            logger.debug("[History] Cleanup pass: nothing to remove")
            return result

        self._replace(result.kept)

        causes = []
        if result.expired:
            causes.append("expired")
        if result.overflow:
            causes.append("overflow")
        event = CleanupEvent(
            removed_count=result.removed_count,
            expired_count=len(result.expired),
            overflow_count=len(result.overflow),
            cause="+".join(causes),
            dismiss_after_seconds=self.dismiss_after_seconds,
            at=now,
        )
        logger.info(f"[History] Cleanup removed {event.removed_count} item(s) ({event.cause})")
        self.cleanup_completed.emit(event)
        return result


class CleanupScheduler:
    """Calls HistoryCache.cleanup() periodically from an asyncio task."""

    def __init__(self, cache: HistoryCache, check_seconds: float = 3600.0):
        self.cache = cache
        self.check_seconds = check_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"[CleanupScheduler] Started (every {self.check_seconds:.0f}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[CleanupScheduler] Stopped")

    async def _run(self) -> None:
        while True:
            try:
                self.cache.cleanup()
            except Exception:
                logger.exception("[CleanupScheduler] Cleanup pass failed")
            await asyncio.sleep(self.check_seconds)

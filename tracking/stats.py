"""
Watch statistics for ReelWatch.

StatsAggregator is the single owner of every persisted counter:

- the per-reel TrackedEntity table (watchedReels)
- the lifetime scrolled set and counter (scrolledReels, totalReelsScrolled)
- the rolling DailyAggregate (dailyStats), reset automatically when the
  calendar day changes

All mutations go through this class and are written to the store
synchronously, one key group at a time. That makes the aggregator the
serialization point for persistence: a save always writes the current
in-memory value, so interleaved scroll and watch updates cannot undo
each other.

Time values are integer milliseconds.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

import config
from core.tasks import Clock
from tracking.storage import KeyValueStore, StorageError

logger = logging.getLogger(__name__)


@dataclass
class TrackedEntity:
    """Lifetime record of one reel."""
    id: str
    view_count: int = 0
    last_watched_at: Optional[int] = None
    total_watch_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "viewCount": self.view_count,
            "lastWatchedAt": self.last_watched_at,
            "totalWatchTimeMs": self.total_watch_time_ms,
        }

    @classmethod
    def from_dict(cls, entity_id: str, data: Dict[str, Any]) -> "TrackedEntity":
        """
        Build from stored data.

        Accepts the older {count, lastWatched, totalWatchTime} shape too.
        """
        return cls(
            id=data.get("id", entity_id),
            view_count=int(data.get("viewCount", data.get("count", 0)) or 0),
            last_watched_at=data.get("lastWatchedAt", data.get("lastWatched")),
            total_watch_time_ms=int(data.get("totalWatchTimeMs", data.get("totalWatchTime", 0)) or 0),
        )


@dataclass
class DailyAggregate:
    """Today's totals. date is an ISO calendar day (YYYY-MM-DD)."""
    date: str
    watch_time_ms: int = 0
    reels_watched: int = 0
    reels_scrolled: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "watchTimeMs": self.watch_time_ms,
            "reelsWatched": self.reels_watched,
            "reelsScrolled": self.reels_scrolled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyAggregate":
        return cls(
            date=str(data.get("date", "")),
            watch_time_ms=int(data.get("watchTimeMs", data.get("watchTime", 0)) or 0),
            reels_watched=int(data.get("reelsWatched", 0) or 0),
            reels_scrolled=int(data.get("reelsScrolled", 0) or 0),
        )


@dataclass
class ScrollResult:
    """
    Outcome of record_scroll().

    Attributes:
        counted: False when the id had already been counted as scrolled.
        total: Lifetime scrolled total after the call.
        durable: False if any of the writes failed (memory is still updated).
    """
    counted: bool
    total: int = 0
    durable: bool = True


@dataclass
class CommitResult:
    """
    Outcome of commit_watch().

    Attributes:
        counted: False when the watch was below the noise threshold.
        view_count: Entity view count after the commit.
        crossed_repeat: True only on the commit that took view_count to the
            repeat threshold.
        durable: False if any of the writes failed (memory is still updated).
    """
    counted: bool
    view_count: int = 0
    crossed_repeat: bool = False
    durable: bool = True


class StatsAggregator:
    """Owns entity records, the scrolled set and the daily aggregate."""

    def __init__(self, store: KeyValueStore, clock: Clock) -> None:
        self.store = store
        self.clock = clock
        self._lock = threading.RLock()

        self.entities: Dict[str, TrackedEntity] = {}
        self.scrolled_ids: Set[str] = set()
        self.total_scrolled: int = 0
        self.daily: Optional[DailyAggregate] = None
        self.failed_writes: int = 0

    # ------------------------------------------------------------------
    # Loading and rollover
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load every counter from the store, rolling the daily aggregate over if stale."""
        with self._lock:
            data = self.store.get_many([
                config.KEY_WATCHED_REELS,
                config.KEY_TOTAL_SCROLLED,
                config.KEY_SCROLLED_REELS,
                config.KEY_DAILY_STATS,
            ])

            self.entities = {}
            for entity_id, record in (data.get(config.KEY_WATCHED_REELS) or {}).items():
                try:
                    self.entities[entity_id] = TrackedEntity.from_dict(entity_id, record)
                except (TypeError, ValueError, AttributeError) as e:
                    logger.warning(f"Skipping malformed reel record {entity_id!r}: {e}")

            self.scrolled_ids = set(data.get(config.KEY_SCROLLED_REELS) or [])
            self.total_scrolled = int(data.get(config.KEY_TOTAL_SCROLLED) or 0)

            stored_daily = data.get(config.KEY_DAILY_STATS)
            self.daily = None
            if isinstance(stored_daily, dict):
                try:
                    self.daily = DailyAggregate.from_dict(stored_daily)
                except (TypeError, ValueError) as e:
                    logger.warning(f"Malformed daily stats, starting fresh: {e}")

            daily = self._refresh_daily()
            logger.info(
                f"Loaded stats: {len(self.entities)} reels, {self.total_scrolled} scrolled, "
                f"today {daily.to_dict()}"
            )

    def _refresh_daily(self) -> DailyAggregate:
        """Roll the aggregate over if its date is not today. Caller holds the lock."""
        today = self.clock.today().isoformat()
        if self.daily is None or self.daily.date != today:
            stored_date = self.daily.date if self.daily else None
            logger.info(f"New day detected ({stored_date} -> {today}). Resetting daily stats.")
            self.daily = DailyAggregate(date=today)
            self._save_daily()
        return self.daily

    def load_or_rollover(self) -> DailyAggregate:
        """
        Return today's aggregate.

        If the held aggregate is dated another day, it is replaced by a
        zeroed aggregate stamped with today and persisted.
        """
        with self._lock:
            return self._refresh_daily()

    def current_daily(self) -> Optional[DailyAggregate]:
        """Today's aggregate, or None if nothing has been loaded yet."""
        with self._lock:
            if self.daily is None:
                return None
            return self._refresh_daily()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, values: Dict[str, Any], label: str) -> bool:
        try:
            self.store.set_many(values)
            return True
        except StorageError as e:
            self.failed_writes += 1
            logger.error(f"Failed to save {label}: {e}")
            return False

    def _save_entities(self) -> bool:
        table = {entity_id: e.to_dict() for entity_id, e in self.entities.items()}
        ok = self._persist({config.KEY_WATCHED_REELS: table}, "watched reels")
        if ok:
            logger.debug(f"Saved {len(table)} watched reels to storage")
        return ok

    def _save_daily(self) -> bool:
        if self.daily is None:
            return False
        return self._persist({config.KEY_DAILY_STATS: self.daily.to_dict()}, "daily stats")

    def _save_scroll_counter(self) -> bool:
        return self._persist({
            config.KEY_TOTAL_SCROLLED: self.total_scrolled,
            config.KEY_SCROLLED_REELS: sorted(self.scrolled_ids),
        }, "scroll counter")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def ensure_entity(self, entity_id: str) -> TrackedEntity:
        """Get the entity record, creating an empty one on first detection."""
        with self._lock:
            entity = self.entities.get(entity_id)
            if entity is None:
                entity = TrackedEntity(id=entity_id)
                self.entities[entity_id] = entity
                logger.debug(f"New reel entity: {entity_id}")
            return entity

    def record_scroll(self, entity_id: str) -> ScrollResult:
        """
        Count entity_id as scrolled, once per lifetime.

        Write failures are reported through ScrollResult.durable; the
        in-memory counters keep the scroll either way.
        """
        with self._lock:
            if entity_id in self.scrolled_ids:
                return ScrollResult(counted=False, total=self.total_scrolled)
            daily = self._refresh_daily()
            self.scrolled_ids.add(entity_id)
            self.total_scrolled += 1
            daily.reels_scrolled += 1

            daily_saved = self._save_daily()
            counter_saved = self._save_scroll_counter()
            logger.info(f"Reel {entity_id} counted as scrolled. Total scrolled: {self.total_scrolled}")
            return ScrollResult(
                counted=True,
                total=self.total_scrolled,
                durable=daily_saved and counter_saved,
            )

    def commit_watch(self, entity_id: str, duration_ms: int) -> CommitResult:
        """
        Turn a finished watch into statistics.

        Watches shorter than config.MIN_WATCH_DURATION_MS are ignored. A
        negative duration (the clock stepped back mid-watch) counts as 0.
        Write failures are reported through CommitResult.durable; the
        in-memory counters keep the watch either way.

        Args:
            entity_id: Resolved reel id.
            duration_ms: Watch duration in milliseconds.
        """
        if duration_ms < 0:
            logger.warning(f"Negative watch duration {duration_ms}ms for reel {entity_id}, clock moved back")
            duration_ms = 0

        if duration_ms < config.MIN_WATCH_DURATION_MS:
            logger.debug(f"Reel {entity_id} watch too short ({duration_ms}ms), not counting")
            with self._lock:
                entity = self.entities.get(entity_id)
                return CommitResult(counted=False, view_count=entity.view_count if entity else 0)

        with self._lock:
            entity = self.entities.get(entity_id)
            if entity is None:
                logger.warning(f"No record for reel {entity_id} at commit, creating one")
                entity = self.ensure_entity(entity_id)

            previous = entity.view_count
            entity.view_count += 1
            entity.total_watch_time_ms += int(duration_ms)
            entity.last_watched_at = self.clock.now_ms()
            entities_saved = self._save_entities()

            daily = self._refresh_daily()
            daily.watch_time_ms += int(duration_ms)
            daily.reels_watched += 1
            daily_saved = self._save_daily()

            threshold = config.REPEAT_VIEW_THRESHOLD
            crossed = previous < threshold <= entity.view_count

            logger.info(
                f"Reel {entity_id} watched {duration_ms}ms - count {entity.view_count}, "
                f"today {daily.watch_time_ms // 1000}s / {daily.reels_watched} reels"
            )
            return CommitResult(
                counted=True,
                view_count=entity.view_count,
                crossed_repeat=crossed,
                durable=entities_saved and daily_saved,
            )

    def reset(self) -> bool:
        """
        Clear all statistics, keeping the user's settings.

        Returns:
            True if the store was rewritten successfully.
        """
        with self._lock:
            settings = self.store.get_many(config.SETTINGS_KEYS)
            self.entities = {}
            self.scrolled_ids = set()
            self.total_scrolled = 0
            self.daily = DailyAggregate(date=self.clock.today().isoformat())
            try:
                self.store.clear()
                values = dict(settings)
                values.update({
                    config.KEY_WATCHED_REELS: {},
                    config.KEY_TOTAL_SCROLLED: 0,
                    config.KEY_SCROLLED_REELS: [],
                    config.KEY_DAILY_STATS: self.daily.to_dict(),
                })
                self.store.set_many(values)
            except StorageError as e:
                self.failed_writes += 1
                logger.error(f"Failed to reset statistics: {e}")
                return False
            logger.info("All reel statistics cleared")
            return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_entity(self, entity_id: str) -> Optional[TrackedEntity]:
        with self._lock:
            return self.entities.get(entity_id)

    def lifetime_watch_count(self) -> int:
        """Total committed watches across all reels."""
        with self._lock:
            return sum(e.view_count for e in self.entities.values())

    def entity_list(self) -> List[TrackedEntity]:
        with self._lock:
            return list(self.entities.values())

    def summary(self) -> Dict[str, Any]:
        """Read-only statistics snapshot (see tracking.analytics.compute_statistics)."""
        from tracking.analytics import compute_statistics

        with self._lock:
            return compute_statistics(self.entity_list(), self.total_scrolled, self.current_daily())

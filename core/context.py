"""Shared state owned by one tracker instance."""

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Optional

import config
from core.notifications import Notifier
from core.settings import Settings
from core.tasks import Clock, TaskScheduler
from detection.dom import Document
from tracking.stats import StatsAggregator
from tracking.storage import JsonFileStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class TrackerContext:
    """
    Everything the detection, session, stats and alert components share.

    One context per tracker; there is no module-level tracker state, so
    several independent trackers can run side by side (tests do this).
    """
    document: Document
    store: KeyValueStore
    clock: Clock
    tasks: TaskScheduler
    stats: StatsAggregator
    notifier: Notifier = field(default_factory=Notifier)
    settings: Settings = field(default_factory=Settings)
    rng: random.Random = field(default_factory=random.Random)
    lock: threading.RLock = field(default_factory=threading.RLock)
    active_entity_id: Optional[str] = None

    @classmethod
    def create(cls, document: Document, store: Optional[KeyValueStore] = None,
               clock: Optional[Clock] = None, rng: Optional[random.Random] = None) -> "TrackerContext":
        """
        Build a context with default collaborators.

        Args:
            document: Host document to observe.
            store: Persistence backend (defaults to the JSON file in config.STORE_FILE).
            clock: Time source (defaults to the wall clock).
            rng: Random source for occasional encouragement.
        """
        store = store if store is not None else JsonFileStore(config.STORE_FILE)
        clock = clock or Clock()
        lock = threading.RLock()
        return cls(
            document=document,
            store=store,
            clock=clock,
            tasks=TaskScheduler(clock, lock),
            stats=StatsAggregator(store, clock),
            rng=rng or random.Random(),
            lock=lock,
        )

    def reload_settings(self) -> Settings:
        self.settings = Settings.from_store(self.store)
        return self.settings

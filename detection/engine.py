"""
DetectionEngine: finds reel players in the document.

Scans happen on three triggers:
- structural change notifications (targeted at the added subtrees)
- a periodic full rescan, for players the notifications missed
- explicit scan() calls (start-up, re-enable)

The processed tag (membership in a weak set of elements) is the only
idempotence guard: a tagged element is never classified or handed off
again, whichever trigger finds it. Removal from the document clears the
tag, so a player that is put back is tracked afresh.
"""

import logging
import weakref
from typing import Callable, Iterable, List, Optional

import config
from core.context import TrackerContext
from core.tasks import Task
from detection.classifier import is_candidate
from detection.dom import MEDIA_TAGS, Element, MediaElement, Subscription
from detection.identity import IdentityResolver

logger = logging.getLogger(__name__)


class DetectionEngine:
    """Classifies media elements and hands new reels downstream."""

    def __init__(self, context: TrackerContext, resolver: IdentityResolver,
                 on_reel: Callable[[MediaElement, str], None]) -> None:
        """
        Args:
            context: Tracker context (document, tasks, lock).
            resolver: Identity resolver for new reels.
            on_reel: Called once per newly tagged reel with (element, entity_id).
        """
        self.context = context
        self.resolver = resolver
        self.on_reel = on_reel

        self._processed: "weakref.WeakSet[Element]" = weakref.WeakSet()
        self._mutation_subscription: Optional[Subscription] = None
        self._removal_subscription: Optional[Subscription] = None
        self.rescan_task: Optional[Task] = None
        self.detected_total = 0
        self.fallback_scans = 0

    # ------------------------------------------------------------------
    # Tagging
    # ------------------------------------------------------------------

    def is_processed(self, element: Element) -> bool:
        return element in self._processed

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    def reset_tags(self) -> None:
        """Forget every processed tag so the next scan starts fresh."""
        self._processed = weakref.WeakSet()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _media_in(self, root: Element) -> List[Element]:
        return [el for el in root.iter_subtree() if el.tag in MEDIA_TAGS]

    def _consider(self, element: Element) -> bool:
        """Tag and hand off element if it is a new reel. Returns True if handed off."""
        if element in self._processed:
            return False
        if not isinstance(element, MediaElement):
            return False
        if not is_candidate(element):
            return False

        self._processed.add(element)
        try:
            entity_id = self.resolver.resolve(element)
            if entity_id is None:
                logger.warning("Could not get reel id for video element")
                return False
            self.on_reel(element, entity_id)
        except Exception as e:
            logger.error(f"Error tracking reel: {e}")
            return False
        self.detected_total += 1
        return True

    def _scan_targeted(self, roots: Iterable[Element]) -> int:
        found = 0
        for root in roots:
            try:
                media = self._media_in(root)
            except Exception as e:
                logger.warning(f"Error walking subtree {root!r}: {e}")
                continue
            for element in media:
                if self._consider(element):
                    found += 1
        return found

    def _scan_document_fallback(self) -> int:
        self.fallback_scans += 1
        found = 0
        try:
            media = self.context.document.media_elements()
        except Exception as e:
            logger.warning(f"Error in fallback video scan: {e}")
            return 0
        for element in media:
            if self._consider(element):
                logger.debug("Found missed video via fallback scan")
                found += 1
        return found

    def scan(self, root: Optional[Element] = None) -> int:
        """
        Scan root (default: the whole document) for new reels.

        A whole-document scan whose targeted pass finds nothing also runs
        the fallback pass.

        Returns:
            Number of reels handed off.
        """
        with self.context.lock:
            body = self.context.document.body
            target = root if root is not None else body
            found = self._scan_targeted([target])
            if target is body and found == 0:
                found += self._scan_document_fallback()
            logger.debug(f"Found {found} new videos to track")
            return found

    def on_removed(self, removed_nodes: List[Element]) -> None:
        """Clear processed tags inside removed subtrees."""
        with self.context.lock:
            for node in removed_nodes:
                for element in node.iter_subtree():
                    self._processed.discard(element)

    def on_structural_change(self, added_nodes: List[Element]) -> int:
        """
        Handle one batch of added subtrees.

        If the targeted scan of the batch finds nothing, one whole-document
        fallback scan runs for the batch.

        Returns:
            Number of reels handed off.
        """
        with self.context.lock:
            if not self.context.settings.enabled:
                return 0
            found = self._scan_targeted(added_nodes)
            if found == 0:
                found += self._scan_document_fallback()
            return found

    # ------------------------------------------------------------------
    # Observation and periodic rescan
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Observe structural changes and arm the periodic rescan."""
        if self._mutation_subscription is None:
            self._mutation_subscription = self.context.document.observe_mutations(
                self.on_structural_change
            )
        if self._removal_subscription is None:
            self._removal_subscription = self.context.document.observe_removals(self.on_removed)
        if self.rescan_task is None or not self.rescan_task.active:
            self.rescan_task = self.context.tasks.call_every(
                config.RESCAN_INTERVAL_MS, self._periodic_rescan, name="periodic-rescan"
            )

    def stop(self) -> None:
        """Stop observing and cancel the periodic rescan."""
        if self._mutation_subscription is not None:
            self._mutation_subscription.cancel()
            self._mutation_subscription = None
        if self._removal_subscription is not None:
            self._removal_subscription.cancel()
            self._removal_subscription = None
        if self.rescan_task is not None:
            self.rescan_task.cancel()
            self.rescan_task = None

    @property
    def is_observing(self) -> bool:
        return self._mutation_subscription is not None

    def _periodic_rescan(self) -> None:
        if self.context.settings.enabled:
            self.scan()

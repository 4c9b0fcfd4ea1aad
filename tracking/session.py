"""Per-reel watch sessions and listener bookkeeping."""

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional

from core.context import TrackerContext
from detection.dom import EVENT_ENDED, EVENT_PAUSE, EVENT_PLAY, Element, MediaElement, Subscription
from tracking.limit_alerts import LimitAlertScheduler

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    HIDDEN = "hidden"


@dataclass
class Session:
    """
    Watch state of one live media element.

    play_started_at is set only while state is PLAYING.
    """
    entity_id: str
    state: SessionState = SessionState.IDLE
    play_started_at: Optional[int] = None
    committed: bool = False
    has_played: bool = False


class SubscriptionRegistry:
    """Listener handles grouped by owner (one media element), torn down centrally."""

    def __init__(self) -> None:
        self._subscriptions: Dict[Hashable, List[Subscription]] = {}

    def add(self, owner: Hashable, subscription: Subscription) -> None:
        self._subscriptions.setdefault(owner, []).append(subscription)

    def cancel(self, owner: Hashable) -> int:
        subscriptions = self._subscriptions.pop(owner, [])
        for subscription in subscriptions:
            subscription.cancel()
        return len(subscriptions)

    def cancel_all(self) -> int:
        cancelled = 0
        for owner in list(self._subscriptions):
            cancelled += self.cancel(owner)
        return cancelled

    def __len__(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())


class SessionTracker:
    """
    Turns playback events into committed watches.

    State machine per element:

        Idle --play--> Playing --pause/ended--> Paused/Ended
                       Playing --document hidden--> Hidden
        any  --play--> Playing (new sub-session)

    Leaving Playing commits the elapsed time once. An element's first
    play counts the reel as scrolled (once per lifetime per id). When an
    element leaves the document its listeners and session are released,
    committing first if it was still playing.
    """

    def __init__(self, context: TrackerContext, scheduler: LimitAlertScheduler) -> None:
        self.context = context
        self.scheduler = scheduler
        self.registry = SubscriptionRegistry()
        self.sessions: Dict[MediaElement, Session] = {}
        self._removal_subscription: Optional[Subscription] = None

    @property
    def tracked_count(self) -> int:
        """Number of media elements currently wired to a session."""
        return len(self.sessions)

    def session_for(self, element: MediaElement) -> Optional[Session]:
        return self.sessions.get(element)

    def attach(self, element: MediaElement, entity_id: str) -> Session:
        """
        Wire playback and visibility listeners for a newly detected element.

        Args:
            element: The media element.
            entity_id: Its resolved identity.

        Returns:
            The new Session.
        """
        if element in self.sessions:
            self.release(element)

        self.context.stats.ensure_entity(entity_id)
        session = Session(entity_id=entity_id)
        self.sessions[element] = session

        self.registry.add(element, element.add_event_listener(
            EVENT_PLAY, lambda: self.handle_play(session)))
        self.registry.add(element, element.add_event_listener(
            EVENT_PAUSE, lambda: self.handle_stop(session, SessionState.PAUSED)))
        self.registry.add(element, element.add_event_listener(
            EVENT_ENDED, lambda: self.handle_stop(session, SessionState.ENDED)))
        self.registry.add(element, self.context.document.add_visibility_listener(
            lambda: self.handle_visibility(session)))

        if self._removal_subscription is None:
            self._removal_subscription = self.context.document.observe_removals(self.handle_removed)

        logger.debug(f"Tracking reel {entity_id}")
        return session

    def release(self, element: MediaElement) -> bool:
        """
        Stop tracking one element: commit if playing, drop listeners and session.

        Returns:
            True if the element was tracked.
        """
        with self.context.lock:
            session = self.sessions.pop(element, None)
            if session is None:
                return False
            if session.state == SessionState.PLAYING:
                try:
                    self._commit(session)
                except Exception as e:
                    logger.error(f"Error committing removed reel {session.entity_id}: {e}")
            session.state = SessionState.IDLE
            session.play_started_at = None
            self.registry.cancel(element)
            if self.context.active_entity_id == session.entity_id and not any(
                s.state == SessionState.PLAYING for s in self.sessions.values()
            ):
                self.context.active_entity_id = None
            logger.debug(f"Released reel {session.entity_id}")
            return True

    def detach_all(self) -> int:
        """
        Remove every listener and forget every session.

        Returns:
            Number of listeners removed.
        """
        removed = self.registry.cancel_all()
        if self._removal_subscription is not None:
            self._removal_subscription.cancel()
            self._removal_subscription = None
        for session in self.sessions.values():
            session.state = SessionState.IDLE
            session.play_started_at = None
        self.sessions = {}
        self.context.active_entity_id = None
        logger.info(f"Detached {removed} reel listeners")
        return removed

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def handle_removed(self, removed_nodes: List[Element]) -> int:
        """Release every tracked element inside the removed subtrees."""
        released = 0
        with self.context.lock:
            for node in removed_nodes:
                for element in list(node.iter_subtree()):
                    if element in self.sessions and self.release(element):
                        released += 1
        if released:
            logger.debug(f"Released {released} removed reel elements")
        return released

    def handle_play(self, session: Session) -> None:
        with self.context.lock:
            if not self.context.settings.enabled:
                return
            try:
                session.state = SessionState.PLAYING
                session.play_started_at = self.context.clock.now_ms()
                session.committed = False
                self.context.active_entity_id = session.entity_id
                logger.debug(f"Reel started playing: {session.entity_id}")

                if not session.has_played:
                    session.has_played = True
                    self._count_scroll(session.entity_id)
            except Exception as e:
                logger.error(f"Error handling play for {session.entity_id}: {e}")

    def handle_stop(self, session: Session, new_state: SessionState) -> None:
        """Pause or ended."""
        with self.context.lock:
            if session.state != SessionState.PLAYING:
                return
            try:
                self._commit(session)
            except Exception as e:
                logger.error(f"Error handling {new_state.value} for {session.entity_id}: {e}")
            session.state = new_state

    def handle_visibility(self, session: Session) -> None:
        with self.context.lock:
            if not self.context.document.hidden or session.state != SessionState.PLAYING:
                return
            try:
                self._commit(session)
            except Exception as e:
                logger.error(f"Error handling visibility for {session.entity_id}: {e}")
            session.state = SessionState.HIDDEN

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _count_scroll(self, entity_id: str) -> None:
        result = self.context.stats.record_scroll(entity_id)
        if not result.counted:
            return
        if not result.durable:
            logger.warning(f"Scroll of {entity_id} recorded in memory but not saved")
        self.scheduler.check_milestone(result.total)
        self.scheduler.evaluate()

    def _commit(self, session: Session) -> None:
        started = session.play_started_at
        session.play_started_at = None
        if started is None or session.committed:
            return
        session.committed = True

        if not self.context.settings.enabled:
            logger.debug("Tracking disabled - not recording watch")
            return

        duration = self.context.clock.now_ms() - started
        result = self.context.stats.commit_watch(session.entity_id, duration)
        if not result.counted:
            return
        if not result.durable:
            logger.warning(f"Watch of {session.entity_id} recorded in memory but not saved")

        if result.crossed_repeat and self.context.settings.notifications_enabled:
            logger.info(f"Repeated reel {session.entity_id} ({result.view_count} views)")
            self.context.notifier.repeat_view(session.entity_id, result.view_count)

        self.scheduler.evaluate()

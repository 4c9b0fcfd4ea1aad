"""
ReelTracker: orchestration engine for ReelWatch.

Wires detection, identity, sessions, statistics and limit alerts around
one TrackerContext and exposes the control channel used by a settings
surface or popup.

This module has ZERO presentation dependencies. A renderer sets the
Notifier callbacks on context.notifier and, optionally, the callbacks
below.

Callbacks:
    on_status_change(enabled: bool)
    on_error(error_type: str, message: str)
"""

import logging
from typing import Any, Callable, Dict, Optional

import config
from core.context import TrackerContext
from core.tasks import Task
from detection.engine import DetectionEngine
from detection.identity import IdentityResolver
from tracking.limit_alerts import DEFAULT_SNOOZE_MINUTES, LimitAlertScheduler
from tracking.session import SessionTracker

logger = logging.getLogger(__name__)

ACTION_TOGGLE = "toggleExtension"
ACTION_UPDATE_SETTINGS = "updateSettings"
ACTION_SNOOZE = "snooze"
ACTION_RESET = "resetStats"
ACTION_STATUS = "getStatus"


class ReelTracker:
    """
    Core tracking engine.

    Handles:
    - Start-up (settings, stats load, first scan)
    - Enable/disable toggling with full teardown
    - Periodic rescan and status log tasks
    - Snooze and statistics reset requests
    - Message dispatch from the settings surface

    The engine does not own a thread. Host events arrive through the
    Document; timers run on context.tasks, either advanced manually or
    from its background thread (start(run_background=True)).
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(self, context: TrackerContext) -> None:
        self.context = context
        self.resolver = IdentityResolver()
        self.scheduler = LimitAlertScheduler(context)
        self.sessions = SessionTracker(context, self.scheduler)
        self.detection = DetectionEngine(context, self.resolver, self.sessions.attach)

        self.is_running: bool = False
        self.is_active: bool = False
        self.status_task: Optional[Task] = None

        # ---- Callbacks (set by the presentation layer) ----
        self.on_status_change: Optional[Callable[[bool], None]] = None
        self.on_error: Optional[Callable[[str, str], None]] = None

    @classmethod
    def create(cls, document, store=None, clock=None, rng=None) -> "ReelTracker":
        """Build a tracker with a fresh context. See TrackerContext.create."""
        return cls(TrackerContext.create(document, store=store, clock=clock, rng=rng))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, run_background: bool = False) -> Dict:
        """
        Load settings and, if tracking is enabled, begin tracking.

        Args:
            run_background: Also start the task scheduler's polling thread.

        Returns:
            Current status dict.
        """
        with self.context.lock:
            if self.is_running:
                logger.warning("Tracker already running")
                return self.get_status()

            settings = self.context.reload_settings()
            self.is_running = True
            if settings.enabled:
                self._activate()
            else:
                logger.info("Tracking disabled in settings, not starting detection")

        if run_background:
            self.context.tasks.start()
        return self.get_status()

    def stop(self) -> None:
        """Tear down tracking and stop the scheduler thread."""
        with self.context.lock:
            self._deactivate()
            self.is_running = False
        self.context.tasks.stop()
        logger.info("Tracker stopped")

    def toggle_extension(self, enabled: bool) -> None:
        """
        Enable or disable tracking.

        Disabling synchronously cancels every timer, detaches every
        listener and the structural observer, and forgets processed tags.
        Enabling re-arms periodic work and rescans the document.
        """
        enabled = bool(enabled)
        with self.context.lock:
            self.context.settings.enabled = enabled
            logger.info(f"Tracking toggled: {enabled}")
            if not enabled:
                self._deactivate()
            elif self.is_running:
                self._activate()
        self._notify_status_change(enabled)

    def update_settings(self) -> None:
        """Reload settings from the store and apply them."""
        with self.context.lock:
            was_enabled = self.context.settings.enabled
            settings = self.context.reload_settings()
            logger.info("Settings reloaded")

        if settings.enabled != was_enabled:
            self.toggle_extension(settings.enabled)
            return

        with self.context.lock:
            if settings.enabled and self.is_active:
                self.scheduler.evaluate()

    def snooze(self, minutes: Any = DEFAULT_SNOOZE_MINUTES) -> int:
        """
        Snooze limit alerts.

        Returns:
            Minutes actually applied.
        """
        with self.context.lock:
            return self.scheduler.snooze(minutes)

    def reset_statistics(self) -> bool:
        """
        Clear every statistic, keeping settings.

        Returns:
            True if the store was rewritten.
        """
        with self.context.lock:
            self.scheduler.cancel_all()
            self.scheduler.reset_milestones()
            ok = self.context.stats.reset()
        if not ok:
            self._notify_error("storage_error", "Could not clear statistics")
        return ok

    def handle_message(self, message: Dict) -> Dict:
        """
        Dispatch a control message of the form {"action": str, "data": Any}.

        Returns:
            {"success": bool, ...} response dict.
        """
        if not isinstance(message, dict):
            return {"success": False, "error": "Message must be a dict"}

        action = message.get("action")
        data = message.get("data")
        logger.debug(f"Control message: {action}")

        if action == ACTION_TOGGLE:
            self.toggle_extension(data)
            return {"success": True, "enabled": self.context.settings.enabled}
        if action == ACTION_UPDATE_SETTINGS:
            self.update_settings()
            return {"success": True}
        if action == ACTION_SNOOZE:
            minutes = data.get("minutes", DEFAULT_SNOOZE_MINUTES) if isinstance(data, dict) else data
            if minutes is None:
                minutes = DEFAULT_SNOOZE_MINUTES
            return {"success": True, "minutes": self.snooze(minutes)}
        if action == ACTION_RESET:
            return {"success": self.reset_statistics()}
        if action == ACTION_STATUS:
            return {"success": True, "status": self.get_status()}

        logger.warning(f"Unknown control action: {action!r}")
        return {"success": False, "error": f"Unknown action: {action}"}

    def get_status(self) -> Dict:
        """
        Get current tracking status (also written to the log every 30 s).

        Returns:
            dict with keys: is_running, enabled, is_active, tracked_videos,
            active_reel, alerting, snoozed, total_scrolled, today.
        """
        with self.context.lock:
            daily = self.context.stats.current_daily()
            return {
                "is_running": self.is_running,
                "enabled": self.context.settings.enabled,
                "is_active": self.is_active,
                "tracked_videos": self.sessions.tracked_count,
                "active_reel": self.context.active_entity_id,
                "alerting": self.scheduler.is_alerting,
                "snoozed": self.scheduler.is_snoozed(),
                "total_scrolled": self.context.stats.total_scrolled,
                "today": daily.to_dict() if daily else None,
            }

    def get_statistics(self) -> Dict:
        """Statistics summary for the presentation layer."""
        return self.context.stats.summary()

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def _activate(self) -> None:
        """Load stats, observe, arm periodic tasks and scan. Caller holds the lock."""
        if self.is_active:
            return
        try:
            self.context.stats.load()
        except Exception as e:
            logger.error(f"Failed to load statistics: {e}")
            self._notify_error("storage_error", str(e))

        self.detection.reset_tags()
        self.detection.start()
        self.status_task = self.context.tasks.call_every(
            config.STATUS_LOG_INTERVAL_MS, self._log_status, name="status-log"
        )
        self.is_active = True
        found = self.detection.scan()
        logger.info(f"Tracking started, {found} reels found on page")

    def _deactivate(self) -> None:
        """Cancel all timers and listeners. Caller holds the lock."""
        self.detection.stop()
        self.detection.reset_tags()
        self.sessions.detach_all()
        self.scheduler.cancel_all()
        if self.status_task is not None:
            self.status_task.cancel()
            self.status_task = None
        self.context.tasks.cancel_all()
        self.context.active_entity_id = None
        if self.is_active:
            logger.info("Tracking stopped, all timers and listeners removed")
        self.is_active = False

    def _log_status(self) -> None:
        logger.info(f"Tracking status: {self.get_status()}")

    # ------------------------------------------------------------------
    # Callback helpers
    # ------------------------------------------------------------------

    def _notify_status_change(self, enabled: bool) -> None:
        if self.on_status_change:
            try:
                self.on_status_change(enabled)
            except Exception as e:
                logger.debug(f"on_status_change callback error: {e}")

    def _notify_error(self, error_type: str, message: str) -> None:
        if self.on_error:
            try:
                self.on_error(error_type, message)
            except Exception as e:
                logger.debug(f"on_error callback error: {e}")

"""
Daily limit alerts, snooze and positive reinforcement.

LimitAlertScheduler runs after every committed watch and every scroll:

    Normal --(limit exceeded)--> Alerting --(back under limits)--> Normal

While Alerting, a limit alert fires immediately and then every
config.ALERT_REPEAT_INTERVAL_MS until the state changes. A snooze is an
orthogonal flag: while it is active no alerting starts, whatever the
counters say. When the snooze expires the limits are evaluated again.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import config
from core.context import TrackerContext
from core.tasks import Task

logger = logging.getLogger(__name__)

DEFAULT_SNOOZE_MINUTES = 30


def is_scroll_milestone(count: int) -> bool:
    """True for 5, 10, 20, 50 and every multiple of 25 from 25 upward."""
    if count in config.SCROLL_MILESTONES:
        return True
    return count >= config.MILESTONE_STEP and count % config.MILESTONE_STEP == 0


@dataclass
class SchedulerState:
    """Transient alert state. Tasks are the cancel handles of the active timers."""
    alerting: bool = False
    alert_fire_count: int = 0
    snooze_until: Optional[int] = None
    snooze_minutes: int = 0
    last_positive_at: int = 0
    alert_task: Optional[Task] = None
    snooze_task: Optional[Task] = None


class LimitAlertScheduler:
    """Evaluates daily totals against the configured limits."""

    def __init__(self, context: TrackerContext) -> None:
        self.context = context
        self.state = SchedulerState()
        self._last_milestone: int = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_alerting(self) -> bool:
        return self.state.alerting

    def is_snoozed(self) -> bool:
        until = self.state.snooze_until
        return until is not None and self.context.clock.now_ms() < until

    def check_limits(self) -> Optional[Tuple[bool, bool]]:
        """
        Compare today's totals to the limits.

        Returns:
            (time_exceeded, reels_exceeded), or None when limits are off,
            notifications are off, or no daily aggregate is loaded.
        """
        settings = self.context.settings
        if not settings.limits_enabled or not settings.notifications_enabled:
            return None
        daily = self.context.stats.current_daily()
        if daily is None:
            return None
        time_exceeded = daily.watch_time_ms >= settings.time_limit_ms
        reels_exceeded = daily.reels_scrolled >= settings.reel_limit
        return time_exceeded, reels_exceeded

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self) -> None:
        """Run the limit check and move between Normal and Alerting."""
        result = self.check_limits()
        if result is None:
            return

        if self.is_snoozed():
            logger.debug("In snooze period, skipping alerts")
            return

        time_exceeded, reels_exceeded = result
        if time_exceeded or reels_exceeded:
            if not self.state.alerting:
                logger.info("Limits exceeded, starting periodic alerts")
                self._start_alerting(time_exceeded, reels_exceeded)
        elif self.state.alerting:
            logger.info("Limits no longer exceeded, stopping alerts")
            self._stop_alerting()
            self._positive_reinforcement()
        else:
            self._occasional_encouragement()

    def check_milestone(self, total_scrolled: int) -> bool:
        """
        Emit a scroll milestone when total_scrolled lands on one.

        Returns:
            True if a milestone event was emitted.
        """
        if not is_scroll_milestone(total_scrolled):
            return False
        if total_scrolled == self._last_milestone:
            return False
        if not self.context.settings.notifications_enabled:
            return False
        self._last_milestone = total_scrolled
        self.context.notifier.scroll_milestone(total_scrolled)
        return True

    # ------------------------------------------------------------------
    # Alerting
    # ------------------------------------------------------------------

    def _start_alerting(self, time_exceeded: bool, reels_exceeded: bool) -> None:
        self.state.alerting = True
        self.state.alert_fire_count = 0
        self._fire(time_exceeded, reels_exceeded)
        self.state.alert_task = self.context.tasks.call_every(
            config.ALERT_REPEAT_INTERVAL_MS, self._repeat_alert, name="limit-alert-repeat"
        )

    def _fire(self, time_exceeded: bool, reels_exceeded: bool) -> None:
        self.state.alert_fire_count += 1
        self.context.notifier.limit_exceeded(time_exceeded, reels_exceeded)

    def _repeat_alert(self) -> None:
        result = self.check_limits()
        if result is None or not any(result):
            # Limits lifted (day rollover or settings change) between repeats
            self._stop_alerting()
            return
        self._fire(*result)

    def _stop_alerting(self) -> None:
        if self.state.alert_task is not None:
            self.state.alert_task.cancel()
            self.state.alert_task = None
        self.state.alerting = False

    # ------------------------------------------------------------------
    # Positive reinforcement
    # ------------------------------------------------------------------

    def _positive_reinforcement(self) -> bool:
        now = self.context.clock.now_ms()
        if now - self.state.last_positive_at < config.POSITIVE_COOLDOWN_MS:
            return False
        self.state.last_positive_at = now
        self.context.notifier.positive_reinforcement()
        return True

    def _occasional_encouragement(self) -> bool:
        watched = self.context.stats.lifetime_watch_count()
        if watched <= 0 or watched % config.ENCOURAGEMENT_EVERY_WATCHES != 0:
            return False
        if self.context.rng.random() >= config.ENCOURAGEMENT_PROBABILITY:
            return False
        now = self.context.clock.now_ms()
        if now - self.state.last_positive_at <= config.ENCOURAGEMENT_SPACING_MS:
            return False
        self.state.last_positive_at = now
        self.context.notifier.positive_reinforcement()
        return True

    # ------------------------------------------------------------------
    # Snooze
    # ------------------------------------------------------------------

    def snooze(self, minutes=DEFAULT_SNOOZE_MINUTES) -> int:
        """
        Silence limit alerts for a number of minutes.

        Stops active alerting and replaces any pending resume. When the
        snooze expires the limits are re-evaluated (alerting restarts if
        they are still exceeded) and a snooze-ended event is emitted.

        Args:
            minutes: Snooze length; values below 1 become 1, unparseable
                values fall back to 30.

        Returns:
            The snooze length actually applied, in minutes.
        """
        try:
            minutes = max(1, int(minutes))
        except (TypeError, ValueError):
            minutes = DEFAULT_SNOOZE_MINUTES

        self._stop_alerting()
        duration_ms = minutes * 60 * 1000
        self.state.snooze_until = self.context.clock.now_ms() + duration_ms
        self.state.snooze_minutes = minutes

        if self.state.snooze_task is not None:
            self.state.snooze_task.cancel()
        self.state.snooze_task = self.context.tasks.call_later(
            duration_ms, self._resume_after_snooze, name="snooze-resume"
        )

        logger.info(f"Alerts snoozed for {minutes} minutes")
        self.context.notifier.snooze_started(minutes)
        return minutes

    def _resume_after_snooze(self) -> None:
        minutes = self.state.snooze_minutes
        self.state.snooze_task = None
        self.state.snooze_until = None
        logger.info("Snooze period ended, checking limits and resuming alerts")
        try:
            self.evaluate()
        except Exception as e:
            logger.error(f"Error while resuming alerts after snooze: {e}")
        self.context.notifier.snooze_ended(minutes)

    def reset_milestones(self) -> None:
        """Forget the last milestone (after the scrolled counter is reset)."""
        self._last_milestone = 0

    def cancel_all(self) -> None:
        """Stop the alert repeat and any pending snooze resume."""
        self._stop_alerting()
        if self.state.snooze_task is not None:
            self.state.snooze_task.cancel()
            self.state.snooze_task = None
        self.state.snooze_until = None

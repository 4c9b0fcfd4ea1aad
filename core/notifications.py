"""
Presentation events.

The tracking core never renders anything. It reports what happened
through the Notifier callbacks below, and an external renderer (banner,
toast, menu bar) decides how to show it. The message helpers produce the
text such a renderer would normally display.

Callbacks:
    on_repeat_view(entity_id: str, count: int)
    on_scroll_milestone(count: int)
    on_limit_exceeded(time_exceeded: bool, reels_exceeded: bool)
    on_positive_reinforcement()
    on_snooze_started(minutes: int)
    on_snooze_ended(minutes: int)
"""

import logging
import random
from collections import Counter, deque
from typing import Callable, Deque, Optional, Tuple

import config

logger = logging.getLogger(__name__)


class Notifier:
    """Holds presentation callbacks and invokes them safely."""

    def __init__(self) -> None:
        self.on_repeat_view: Optional[Callable[[str, int], None]] = None
        self.on_scroll_milestone: Optional[Callable[[int], None]] = None
        self.on_limit_exceeded: Optional[Callable[[bool, bool], None]] = None
        self.on_positive_reinforcement: Optional[Callable[[], None]] = None
        self.on_snooze_started: Optional[Callable[[int], None]] = None
        self.on_snooze_ended: Optional[Callable[[int], None]] = None

        # Most recent events, newest last: (name, args). Totals per name in counts.
        self.history: Deque[Tuple[str, tuple]] = deque(maxlen=config.NOTIFIER_HISTORY_LIMIT)
        self.counts: Counter = Counter()

    def _emit(self, name: str, callback: Optional[Callable], *args) -> None:
        self.history.append((name, args))
        self.counts[name] += 1
        logger.debug(f"Presentation event {name}{args}")
        if callback:
            try:
                callback(*args)
            except Exception as e:
                logger.debug(f"{name} callback error: {e}")

    def repeat_view(self, entity_id: str, count: int) -> None:
        self._emit("repeat_view", self.on_repeat_view, entity_id, count)

    def scroll_milestone(self, count: int) -> None:
        self._emit("scroll_milestone", self.on_scroll_milestone, count)

    def limit_exceeded(self, time_exceeded: bool, reels_exceeded: bool) -> None:
        self._emit("limit_exceeded", self.on_limit_exceeded, time_exceeded, reels_exceeded)

    def positive_reinforcement(self) -> None:
        self._emit("positive_reinforcement", self.on_positive_reinforcement)

    def snooze_started(self, minutes: int) -> None:
        self._emit("snooze_started", self.on_snooze_started, minutes)

    def snooze_ended(self, minutes: int) -> None:
        self._emit("snooze_ended", self.on_snooze_ended, minutes)

    def count(self, name: str) -> int:
        """Number of times an event has been emitted."""
        return self.counts[name]


# ----------------------------------------------------------------------
# Message text for renderers
# ----------------------------------------------------------------------

def repeat_view_message(count: int) -> str:
    return config.REPEAT_VIEW_MESSAGE.format(count=count)


def milestone_message(count: int) -> str:
    if count in config.MILESTONE_MESSAGES:
        return config.MILESTONE_MESSAGES[count]
    return config.MILESTONE_GENERIC_MESSAGE.format(count=count)


def limit_alert_message(time_limit_minutes: int, reel_limit: int,
                        time_exceeded: bool, reels_exceeded: bool) -> Tuple[str, str, str]:
    """
    Build the limit alert text.

    Returns:
        (title, message, suggestion)
    """
    if time_exceeded and reels_exceeded:
        message = (f"You've reached both your {time_limit_minutes}min time "
                   f"and {reel_limit} reel limits today.")
        suggestion = "Consider taking a meaningful break to recharge."
    elif time_exceeded:
        message = (f"You've reached your {time_limit_minutes} minute daily time "
                   f"limit for watching reels.")
        suggestion = "Try some offline activities or hobbies instead."
    else:
        message = f"You've scrolled through {reel_limit} reels today."
        suggestion = "Your brain deserves a break from the scroll."
    return config.LIMIT_ALERT_TITLE, message, suggestion


def positive_message(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(config.POSITIVE_MESSAGES)


def _minutes_label(minutes: int) -> str:
    return "minute" if minutes == 1 else "minutes"


def snooze_started_message(minutes: int) -> str:
    return f"✅ Reminders snoozed for {minutes} {_minutes_label(minutes)}"


def snooze_ended_message(minutes: int) -> str:
    if minutes > 0:
        return f"🔔 Reminders resumed after {minutes} {_minutes_label(minutes)}. You'll see alerts again."
    return "🔔 Reminders resumed. You'll see alerts again."

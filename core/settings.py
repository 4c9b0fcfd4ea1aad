"""User settings as read from the store."""

import logging
from dataclasses import dataclass
from typing import Any, Dict

import config
from tracking.storage import KeyValueStore

logger = logging.getLogger(__name__)


def _clamp(value: Any, bounds: tuple, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    low, high = bounds
    return max(low, min(high, number))


def _bool_or_default(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _positive_or_default(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


@dataclass
class Settings:
    """
    Tracker settings. Read-only to the tracking core; the settings surface
    writes them to the store and sends update_settings().
    """
    enabled: bool = True
    notifications_enabled: bool = True
    limits_enabled: bool = True
    time_limit_minutes: int = config.DEFAULT_TIME_LIMIT_MINUTES
    reel_limit: int = config.DEFAULT_REEL_LIMIT

    @property
    def time_limit_ms(self) -> int:
        return self.time_limit_minutes * 60 * 1000

    @classmethod
    def from_store(cls, store: KeyValueStore) -> "Settings":
        """
        Load settings, applying defaults.

        A missing or zero limit falls back to the default, matching how
        the settings surface treats an unset limit.
        A flag that is not a real boolean (e.g. the string "false") is
        treated as missing.
        """
        data = store.get_many(config.SETTINGS_KEYS)
        settings = cls(
            enabled=_bool_or_default(data.get(config.KEY_EXTENSION_ENABLED), True),
            notifications_enabled=_bool_or_default(data.get(config.KEY_SHOW_NOTIFICATIONS), True),
            limits_enabled=_bool_or_default(data.get(config.KEY_ENABLE_LIMITS), True),
            time_limit_minutes=_positive_or_default(data.get(config.KEY_TIME_LIMIT),
                                                   config.DEFAULT_TIME_LIMIT_MINUTES),
            reel_limit=_positive_or_default(data.get(config.KEY_REEL_LIMIT), config.DEFAULT_REEL_LIMIT),
        )
        logger.debug(f"Settings loaded: {settings}")
        return settings

    def to_store_dict(self) -> Dict[str, Any]:
        return {
            config.KEY_EXTENSION_ENABLED: self.enabled,
            config.KEY_SHOW_NOTIFICATIONS: self.notifications_enabled,
            config.KEY_ENABLE_LIMITS: self.limits_enabled,
            config.KEY_TIME_LIMIT: self.time_limit_minutes,
            config.KEY_REEL_LIMIT: self.reel_limit,
        }


def save_limits(store: KeyValueStore, time_limit_minutes: Any, reel_limit: Any) -> Dict[str, int]:
    """
    Validate and persist daily limits.

    Out-of-range values are clamped (time 1-480 minutes, reels 10-1000);
    unparseable values fall back to the defaults.

    Returns:
        The values actually written.

    Raises:
        StorageError: If the write failed.
    """
    values = {
        config.KEY_TIME_LIMIT: _clamp(time_limit_minutes, config.TIME_LIMIT_RANGE,
                                      config.DEFAULT_TIME_LIMIT_MINUTES),
        config.KEY_REEL_LIMIT: _clamp(reel_limit, config.REEL_LIMIT_RANGE,
                                      config.DEFAULT_REEL_LIMIT),
    }
    store.set_many(values)
    logger.info(f"Saved limits: {values}")
    return values

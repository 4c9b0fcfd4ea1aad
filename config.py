"""Configuration settings for ReelWatch."""

import os
from pathlib import Path
from dotenv import load_dotenv


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer override from the environment.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or not an integer.

    Returns:
        Parsed integer, or the default.
    """
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        import logging
        logging.getLogger(__name__).warning(
            f"{name}={raw!r} is not an integer, using {default}"
        )
        return default


# Explicitly load from the project root (where config.py lives)
# This ensures .env is found regardless of current working directory
_env_path = Path(__file__).parent / ".env"
load_dotenv(_env_path)

# Base directory (directory containing config.py)
BASE_DIR = Path(__file__).parent

# User data directory (JSON store lives here)
USER_DATA_DIR = Path(os.getenv("REELWATCH_DATA_DIR", "") or (BASE_DIR / "data"))
STORE_FILE = USER_DATA_DIR / "reelwatch_store.json"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# --- Persistent store keys (compatibility contract) ---
KEY_WATCHED_REELS = "watchedReels"
KEY_TOTAL_SCROLLED = "totalReelsScrolled"
KEY_SCROLLED_REELS = "scrolledReels"
KEY_DAILY_STATS = "dailyStats"
KEY_EXTENSION_ENABLED = "extensionEnabled"
KEY_SHOW_NOTIFICATIONS = "showNotifications"
KEY_ENABLE_LIMITS = "enableLimits"
KEY_TIME_LIMIT = "timeLimit"
KEY_REEL_LIMIT = "reelLimit"

SETTINGS_KEYS = (
    KEY_EXTENSION_ENABLED,
    KEY_SHOW_NOTIFICATIONS,
    KEY_ENABLE_LIMITS,
    KEY_TIME_LIMIT,
    KEY_REEL_LIMIT,
)

# Limit defaults and allowed ranges (ranges match the settings form)
DEFAULT_TIME_LIMIT_MINUTES = 60
DEFAULT_REEL_LIMIT = 100
TIME_LIMIT_RANGE = (1, 480)
REEL_LIMIT_RANGE = (10, 1000)

# --- Timers (milliseconds) ---
RESCAN_INTERVAL_MS = _get_int_env("REELWATCH_RESCAN_INTERVAL_MS", 5000)
STATUS_LOG_INTERVAL_MS = _get_int_env("REELWATCH_STATUS_LOG_INTERVAL_MS", 30000)
ALERT_REPEAT_INTERVAL_MS = 2500  # Limit alert re-fires every 2.5s while alerting
SCHEDULER_TICK_SECONDS = 0.1  # Background thread poll interval

# --- Watch tracking ---
MIN_WATCH_DURATION_MS = 1000  # Shorter watches are treated as accidental taps
REPEAT_VIEW_THRESHOLD = 3  # Repeat-view event fires when viewCount reaches this

# Presentation events kept in Notifier.history (older ones are dropped)
NOTIFIER_HISTORY_LIMIT = 100

# --- Positive reinforcement ---
POSITIVE_COOLDOWN_MS = 3600000  # At most once per rolling hour
ENCOURAGEMENT_SPACING_MS = 1800000  # Occasional encouragement at least 30 min apart
ENCOURAGEMENT_EVERY_WATCHES = 25
ENCOURAGEMENT_PROBABILITY = 0.3

# Scroll milestones: these fixed counts, plus every multiple of MILESTONE_STEP
SCROLL_MILESTONES = (5, 10, 20, 50)
MILESTONE_STEP = 25

# --- Detection heuristics ---
# Substrings of media/poster URLs served by the host platform
KNOWN_MEDIA_DOMAINS = ("instagram.com", "cdninstagram.com", "fbcdn.net")

# Aspect ratio (height / width) windows for vertical or near-square players
VERTICAL_ASPECT_MIN = 1.2
SQUARE_ASPECT_RANGE = (0.8, 1.3)

# Length of the hash-based fallback identity
STABLE_HASH_LENGTH = 16

# --- Presentation messages ---
# Fixed milestone wording; other multiples of MILESTONE_STEP use the generic text
MILESTONE_MESSAGES = {
    5: "You've scrolled through 5 reels.",
    10: "You've viewed 10 reels today.",
    20: "You've scrolled through 20 reels.",
    50: "You've viewed 50 reels today.",
}
MILESTONE_GENERIC_MESSAGE = "You've scrolled through {count} reels."

REPEAT_VIEW_MESSAGE = "You've watched this reel {count} times already!"

LIMIT_ALERT_TITLE = "Daily Limit Reached"

POSITIVE_MESSAGES = [
    "Great job staying within your limits today! 🌟",
    "You're doing amazing with your screen time balance! 💪",
    "Mindful scrolling in action! Keep it up! ✨",
    "Your future self will thank you for this balance! 🙏",
]

# Popup awareness tiers: (minimum scrolled, message template), highest first
SCROLL_AWARENESS_TIERS = [
    (50, "You've scrolled through {count} reels today. Consider taking a break to focus on other activities."),
    (25, "You've viewed {count} reels. Remember to balance your screen time with other productive tasks."),
    (10, "You've scrolled through {count} reels. Stay mindful of your viewing habits."),
]

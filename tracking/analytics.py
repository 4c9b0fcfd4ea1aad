"""Analytics for computing reel statistics summaries."""

from typing import Any, Dict, Iterable, Optional

import config
from tracking.stats import DailyAggregate, TrackedEntity


def format_duration(milliseconds: float) -> str:
    """
    Format a duration in milliseconds for display.

    Truncation happens here only; all stored values keep full precision.

    Args:
        milliseconds: Duration in milliseconds.

    Returns:
        Formatted string like "2m 5s" or "42s".

    Examples:
        >>> format_duration(125000)
        "2m 5s"
        >>> format_duration(999)
        "0s"
    """
    total_seconds = int(milliseconds // 1000) if milliseconds > 0 else 0
    minutes = total_seconds // 60
    seconds = total_seconds % 60

    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def compute_statistics(entities: Iterable[TrackedEntity], total_scrolled: int,
                       daily: Optional[DailyAggregate]) -> Dict[str, Any]:
    """
    Compute the statistics summary shown to the user.

    Args:
        entities: All tracked reel records.
        total_scrolled: Lifetime scrolled counter.
        daily: Today's aggregate, or None if not loaded.

    Returns:
        Dictionary of summary values (times in milliseconds).
    """
    unique_reels = 0
    repeated_views = 0
    total_watch_time_ms = 0

    for entity in entities:
        if entity.view_count > 0:
            unique_reels += 1
        if entity.view_count > 1:
            # Every watch beyond the first is a repeat
            repeated_views += entity.view_count - 1
        total_watch_time_ms += entity.total_watch_time_ms

    return {
        "unique_reels": unique_reels,
        "repeated_views": repeated_views,
        "total_watch_time_ms": total_watch_time_ms,
        "total_scrolled": total_scrolled,
        "today_date": daily.date if daily else None,
        "today_watch_time_ms": daily.watch_time_ms if daily else 0,
        "today_reels_watched": daily.reels_watched if daily else 0,
        "today_reels_scrolled": daily.reels_scrolled if daily else 0,
    }


def scroll_awareness_message(total_scrolled: int) -> Optional[str]:
    """
    Awareness nudge for the lifetime scrolled count.

    Returns:
        Message for the highest tier reached, or None below the lowest tier.
    """
    for minimum, template in config.SCROLL_AWARENESS_TIERS:
        if total_scrolled >= minimum:
            return template.format(count=total_scrolled)
    return None


def generate_summary_text(stats: Dict[str, Any]) -> str:
    """
    Render a statistics summary as plain text.

    Args:
        stats: Output of compute_statistics().

    Returns:
        Multi-line summary.
    """
    lines = [
        f"Unique reels watched: {stats['unique_reels']}",
        f"Repeated views: {stats['repeated_views']}",
        f"Total reels scrolled: {stats['total_scrolled']}",
        f"Total watch time: {format_duration(stats['total_watch_time_ms'])}",
        f"Today: {format_duration(stats['today_watch_time_ms'])} / "
        f"{stats['today_reels_scrolled']} reels",
    ]
    awareness = scroll_awareness_message(stats["total_scrolled"])
    if awareness:
        lines.append(awareness)
    return "\n".join(lines)

"""Unit tests for analytics module."""

import unittest
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tracking.analytics import (
    compute_statistics,
    format_duration,
    generate_summary_text,
    scroll_awareness_message,
)
from tracking.stats import DailyAggregate, TrackedEntity


class TestAnalytics(unittest.TestCase):
    """Test cases for analytics functions."""

    def setUp(self):
        """Set up test fixtures."""
        self.entities = [
            TrackedEntity(id="a", view_count=1, total_watch_time_ms=5000),
            TrackedEntity(id="b", view_count=3, total_watch_time_ms=12000),
            TrackedEntity(id="c", view_count=2, total_watch_time_ms=4500),
            # Detected but never watched long enough
            TrackedEntity(id="d", view_count=0, total_watch_time_ms=0),
        ]
        self.daily = DailyAggregate(date="2024-03-14", watch_time_ms=9000,
                                    reels_watched=4, reels_scrolled=6)

    def test_compute_statistics(self):
        """Test statistics computation."""
        stats = compute_statistics(self.entities, 12, self.daily)

        self.assertEqual(stats["unique_reels"], 3)
        # b contributes 2 repeats, c contributes 1
        self.assertEqual(stats["repeated_views"], 3)
        self.assertEqual(stats["total_watch_time_ms"], 21500)
        self.assertEqual(stats["total_scrolled"], 12)
        self.assertEqual(stats["today_date"], "2024-03-14")
        self.assertEqual(stats["today_watch_time_ms"], 9000)
        self.assertEqual(stats["today_reels_watched"], 4)
        self.assertEqual(stats["today_reels_scrolled"], 6)

    def test_compute_statistics_empty(self):
        """Test statistics with no data."""
        stats = compute_statistics([], 0, None)

        self.assertEqual(stats["unique_reels"], 0)
        self.assertEqual(stats["repeated_views"], 0)
        self.assertEqual(stats["total_watch_time_ms"], 0)
        self.assertIsNone(stats["today_date"])
        self.assertEqual(stats["today_reels_scrolled"], 0)

    def test_format_duration(self):
        """Test duration formatting."""
        self.assertEqual(format_duration(0), "0s")
        self.assertEqual(format_duration(999), "0s")
        self.assertEqual(format_duration(42000), "42s")
        self.assertEqual(format_duration(65000), "1m 5s")
        self.assertEqual(format_duration(125999), "2m 5s")
        self.assertEqual(format_duration(-100), "0s")

    def test_scroll_awareness_tiers(self):
        self.assertIsNone(scroll_awareness_message(9))
        self.assertIn("Stay mindful", scroll_awareness_message(10))
        self.assertIn("balance your screen time", scroll_awareness_message(25))
        self.assertIn("taking a break", scroll_awareness_message(50))
        self.assertIn("120 reels", scroll_awareness_message(120))

    def test_generate_summary_text(self):
        """Test summary text generation."""
        stats = compute_statistics(self.entities, 12, self.daily)
        summary = generate_summary_text(stats)

        self.assertIn("Unique reels watched: 3", summary)
        self.assertIn("Repeated views: 3", summary)
        self.assertIn("Total watch time: 21s", summary)
        self.assertIn("Today: 9s / 6 reels", summary)
        self.assertIn("Stay mindful", summary)


if __name__ == "__main__":
    unittest.main()

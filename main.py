#!/usr/bin/env python3
"""
ReelWatch - Main Entry Point

Command line access to the ReelWatch data store: print the statistics
summary, change daily limits or clear all tracking data.

Usage:
    python main.py --stats                      # Print statistics summary
    python main.py --set-limits 45 80           # Time limit (min) and reel limit
    python main.py --reset                      # Clear all tracking data
    python main.py --stats --data-file PATH     # Use another store file
"""

import sys
import logging
import argparse
from pathlib import Path

import config
from core.settings import Settings, save_limits
from core.tasks import Clock
from tracking.analytics import format_duration, generate_summary_text
from tracking.stats import StatsAggregator
from tracking.storage import JsonFileStore, StorageError

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)


def print_stats(store: JsonFileStore) -> None:
    """Print the statistics summary and current settings."""
    stats = StatsAggregator(store, Clock())
    stats.load()
    summary = stats.summary()
    settings = Settings.from_store(store)

    print("\n" + "=" * 60)
    print("📊 ReelWatch Statistics")
    print("=" * 60)
    print(generate_summary_text(summary))
    print(f"Today's watch time: {format_duration(summary['today_watch_time_ms'])} "
          f"across {summary['today_reels_watched']} reels")
    print("\nSettings:")
    print(f"  Tracking enabled:   {settings.enabled}")
    print(f"  Notifications:      {settings.notifications_enabled}")
    print(f"  Daily limits:       {settings.limits_enabled} "
          f"({settings.time_limit_minutes} min / {settings.reel_limit} reels)")
    print("=" * 60 + "\n")


def reset_stats(store: JsonFileStore, assume_yes: bool = False) -> bool:
    """Clear all statistics after confirmation. Settings are kept."""
    if not assume_yes:
        try:
            answer = input("Are you sure you want to clear all reel tracking data? "
                           "This cannot be undone. [y/N] ")
        except (KeyboardInterrupt, EOFError):
            print()
            return False
        if answer.strip().lower() not in ("y", "yes"):
            print("Reset cancelled.")
            return False

    stats = StatsAggregator(store, Clock())
    if stats.reset():
        print("✓ All statistics cleared")
        return True
    print("❌ Failed to clear statistics")
    return False


def main():
    """
    Main entry point - parses arguments and runs the requested command.
    """
    parser = argparse.ArgumentParser(
        description="ReelWatch - reel watch tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --stats               Print statistics summary
  python main.py --set-limits 45 80    Set daily time and reel limits
  python main.py --reset --yes         Clear all tracking data
        """
    )
    parser.add_argument("--stats", action="store_true", help="Print the statistics summary")
    parser.add_argument("--reset", action="store_true", help="Clear all statistics (settings are kept)")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation on --reset")
    parser.add_argument(
        "--set-limits",
        nargs=2,
        metavar=("MINUTES", "REELS"),
        help="Set the daily time limit (1-480 minutes) and reel limit (10-1000)",
    )
    parser.add_argument(
        "--data-file",
        type=Path,
        default=config.STORE_FILE,
        help=f"Store file (default: {config.STORE_FILE})",
    )

    args = parser.parse_args()

    if not (args.stats or args.reset or args.set_limits):
        parser.print_help()
        return 0

    store = JsonFileStore(args.data_file)

    try:
        if args.reset and not reset_stats(store, assume_yes=args.yes):
            return 1
        if args.set_limits:
            values = save_limits(store, *args.set_limits)
            print(f"✓ Limits saved: {values[config.KEY_TIME_LIMIT]} min / "
                  f"{values[config.KEY_REEL_LIMIT]} reels")
        if args.stats:
            print_stats(store)
    except StorageError as e:
        logger.error(f"Store error: {e}")
        print(f"\n❌ Could not write {args.data_file}: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

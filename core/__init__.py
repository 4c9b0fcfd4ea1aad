"""
Core package for ReelWatch.

Contains the headless ReelTracker engine (core.engine), the shared
TrackerContext, settings, presentation events, clocks and the task
scheduler. Zero presentation dependencies.

Import ReelTracker from core.engine directly; tracking.stats depends on
core.tasks, so this package must stay import-light.
"""

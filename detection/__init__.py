"""
Reel detection for ReelWatch.

- dom: the document model the host page is mirrored into
- classifier: rule table deciding whether a media element is a reel
- identity: fallback chain mapping a player to a stable reel id
- engine: DetectionEngine, the scan triggers and processed tags
"""

"""
Tests for reel detection: the classification table, identity
resolution and the DetectionEngine's scan triggers.
"""

import hashlib
import sys
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from core.context import TrackerContext
from core.tasks import ManualClock
from detection.classifier import ANY, REQUIRED, Signal, evaluate_signals, is_candidate
from detection.dom import Document, Element, MediaElement, Rect
from detection.engine import DetectionEngine
from detection.identity import Confidence, IdentityResolver
from tracking.storage import MemoryStore

PORTRAIT = Rect(top=0, left=0, width=300, height=533)
LANDSCAPE = Rect(top=0, left=0, width=300, height=100)


def make_reel(reel_id: str, rect: Rect = PORTRAIT) -> Element:
    """An <article> holding a /reel/ link and a video player."""
    video = MediaElement({"playsinline": ""}, rect=rect)
    link = Element("a", {"href": f"/reel/{reel_id}/"})
    return Element("article", children=[link, video])


def video_of(container: Element) -> MediaElement:
    return next(el for el in container.iter_subtree() if isinstance(el, MediaElement))


class TestClassifier(unittest.TestCase):
    """Test cases for the reel classification table."""

    def test_invisible_element_never_qualifies(self):
        """Visibility is required even when other signals match."""
        video = MediaElement({"src": "https://scontent.cdninstagram.com/v/x.mp4"},
                             rect=Rect(width=0, height=0))
        Element("article", children=[video])
        self.assertFalse(is_candidate(video))

    def test_video_in_reel_container(self):
        video_in_article = video_of(make_reel("ABC"))
        self.assertTrue(is_candidate(video_in_article))

    def test_bare_landscape_video_is_not_a_reel(self):
        """No container, no inline playback, wrong shape: not a reel."""
        video = MediaElement(rect=LANDSCAPE)
        Element("section", children=[video])
        self.assertFalse(is_candidate(video))

    def test_vertical_shape_alone_qualifies(self):
        video = MediaElement(rect=PORTRAIT)
        Element("section", children=[video])
        self.assertTrue(is_candidate(video))

    def test_inline_playback_qualifies_landscape(self):
        video = MediaElement({"webkit-playsinline": ""}, rect=LANDSCAPE)
        Element("section", children=[video])
        self.assertTrue(is_candidate(video))

    def test_video_testid_container_counts_as_inline(self):
        video = MediaElement(rect=LANDSCAPE)
        Element("div", {"data-testid": "video-component"}, children=[video])
        results = evaluate_signals(video)
        self.assertTrue(results["inline_playback"])

    def test_failing_check_is_a_non_match(self):
        """A check that raises counts as False and is_candidate never raises."""
        def broken(_element):
            raise RuntimeError("layout not available")

        signals = [
            Signal("visible", lambda el: True, REQUIRED),
            Signal("broken", broken, ANY),
        ]
        video = MediaElement(rect=PORTRAIT)
        self.assertEqual(evaluate_signals(video, signals), {"visible": True, "broken": False})
        self.assertFalse(is_candidate(video, signals))


class TestIdentityResolver(unittest.TestCase):
    """Test cases for the identity fallback chain."""

    def setUp(self):
        self.resolver = IdentityResolver()

    def test_reel_link(self):
        video = video_of(make_reel("ABC123"))
        entity_id, rule, confidence = self.resolver.resolve_with_confidence(video)
        self.assertEqual(entity_id, "ABC123")
        self.assertEqual(rule, "reel_link")
        self.assertEqual(confidence, Confidence.HIGH)

    def test_reel_link_beats_post_link(self):
        """A /reel/ link wins even when a /p/ link comes first."""
        video = MediaElement(rect=PORTRAIT)
        Element("article", children=[
            Element("a", {"href": "/p/POST1/"}),
            Element("a", {"href": "/reel/REEL1/"}),
            video,
        ])
        self.assertEqual(self.resolver.resolve(video), "REEL1")

    def test_post_link(self):
        video = MediaElement(rect=PORTRAIT)
        Element("div", {"role": "presentation"}, children=[
            Element("a", {"href": "https://www.instagram.com/p/XYZ789/?igsh=1"}),
            video,
        ])
        self.assertEqual(self.resolver.resolve(video), "XYZ789")

    def test_test_id(self):
        video = MediaElement(rect=PORTRAIT)
        Element("div", {"data-testid": "reel-player-7"}, children=[video])
        self.assertEqual(self.resolver.resolve(video), "reel-player-7")

    def test_unrelated_test_id_is_skipped(self):
        video = MediaElement(rect=PORTRAIT)
        Element("section", {"data-testid": "sidebar"}, children=[video])
        entity_id, rule, _ = self.resolver.resolve_with_confidence(video)
        self.assertEqual(rule, "position")
        self.assertTrue(entity_id.startswith("pos_"))

    def test_media_source_reel_segment(self):
        video = MediaElement({"src": "https://scontent.cdninstagram.com/v/reel/98765/video.mp4"},
                             rect=PORTRAIT)
        Element("section", children=[video])
        self.assertEqual(self.resolver.resolve(video), "98765")

    def test_media_source_query_parameter(self):
        video = MediaElement({"src": "https://video.fbcdn.net/v/t50/clip.mp4?media_id=555&x=1"},
                             rect=PORTRAIT)
        Element("section", children=[video])
        self.assertEqual(self.resolver.resolve(video), "555")

    def test_poster(self):
        video = MediaElement({"poster": "https://scontent.cdninstagram.com/v/t51/abc123/thumb.jpg"},
                             rect=PORTRAIT)
        Element("section", children=[video])
        self.assertEqual(self.resolver.resolve(video), "abc123")

    def test_container_attributes(self):
        video = MediaElement(rect=PORTRAIT)
        Element("div", {"id": "container-9"}, children=[video])
        self.assertEqual(self.resolver.resolve(video), "container-9")

    def test_stable_hash_for_unknown_source(self):
        """Sources off the known domains fall through to the stable hash."""
        src = "https://example.com/clip.mp4"
        video = MediaElement({"src": src + "?token=abc"}, rect=PORTRAIT)
        Element("section", children=[video])

        expected = "h_" + hashlib.sha256(src.encode("utf-8")).hexdigest()[:config.STABLE_HASH_LENGTH]
        self.assertEqual(self.resolver.resolve(video), expected)

    def test_stable_hash_is_deterministic(self):
        first = MediaElement({"src": "https://example.com/a.mp4?t=1"})
        second = MediaElement({"src": "https://example.com/a.mp4?t=2"})
        self.assertEqual(self.resolver.resolve(first), self.resolver.resolve(second))

    def test_position_fallback_is_low_confidence(self):
        video = MediaElement(rect=Rect(top=10.5, left=20.4, width=300, height=533))
        entity_id, rule, confidence = self.resolver.resolve_with_confidence(video)
        self.assertEqual(entity_id, "pos_11_20_300_533")
        self.assertEqual(rule, "position")
        self.assertEqual(confidence, Confidence.LOW)
        self.assertEqual(self.resolver.low_confidence_count, 1)

    def test_missing_element(self):
        self.assertIsNone(self.resolver.resolve(None))


class TestDetectionEngine(unittest.TestCase):
    """Test cases for the scan triggers and the processed tag."""

    def setUp(self):
        self.document = Document()
        self.context = TrackerContext.create(
            self.document, store=MemoryStore(), clock=ManualClock(start_ms=0)
        )
        self.handed_off = []
        self.engine = DetectionEngine(
            self.context, IdentityResolver(),
            lambda element, entity_id: self.handed_off.append(entity_id),
        )

    def test_scan_hands_off_once(self):
        """Repeated scans never hand off the same element twice."""
        self.document.body.append_child(make_reel("A"))
        self.assertEqual(self.engine.scan(), 1)
        self.assertEqual(self.engine.scan(), 0)
        self.assertEqual(self.handed_off, ["A"])

    def test_structural_change_then_periodic_rescan(self):
        """An element found by the observer is not picked up again by the rescan."""
        self.engine.start()
        self.document.body.append_child(make_reel("B"))
        self.assertEqual(self.handed_off, ["B"])

        self.context.tasks.advance(config.RESCAN_INTERVAL_MS * 3)
        self.assertEqual(self.handed_off, ["B"])
        self.assertEqual(self.engine.rescan_task.run_count, 3)

    def test_periodic_rescan_finds_unobserved_element(self):
        """Elements added without a notification are found by the rescan."""
        self.engine.start()
        # Attach without going through append_child, so no notification fires
        self.document.body._attach(make_reel("C"))
        self.assertEqual(self.handed_off, [])

        self.context.tasks.advance(config.RESCAN_INTERVAL_MS)
        self.assertEqual(self.handed_off, ["C"])

    def test_fallback_scan_after_empty_batch(self):
        """A batch with no reels triggers one whole-document fallback scan."""
        hidden_reel = make_reel("D", rect=Rect(width=0, height=0))
        self.document.body.append_child(hidden_reel)
        self.engine.start()
        self.assertEqual(self.handed_off, [])

        # Player gets laid out, then an unrelated node is added
        video_of(hidden_reel).rect = PORTRAIT
        scans_before = self.engine.fallback_scans
        self.document.body.append_child(Element("div", {"class": "spinner"}))

        self.assertEqual(self.handed_off, ["D"])
        self.assertEqual(self.engine.fallback_scans, scans_before + 1)

    def test_non_candidates_are_not_tagged(self):
        """An element rejected while invisible is re-evaluated later."""
        reel = make_reel("E", rect=Rect(width=0, height=0))
        self.document.body.append_child(reel)
        self.assertEqual(self.engine.scan(), 0)
        self.assertFalse(self.engine.is_processed(video_of(reel)))

        video_of(reel).rect = PORTRAIT
        self.assertEqual(self.engine.scan(), 1)
        self.assertTrue(self.engine.is_processed(video_of(reel)))

    def test_stop_detaches_observer_and_rescan(self):
        self.engine.start()
        self.engine.stop()
        self.assertFalse(self.engine.is_observing)

        self.document.body.append_child(make_reel("F"))
        self.context.tasks.advance(config.RESCAN_INTERVAL_MS * 2)
        self.assertEqual(self.handed_off, [])

    def test_reset_tags_allows_retracking(self):
        self.document.body.append_child(make_reel("G"))
        self.engine.scan()
        self.engine.reset_tags()
        self.assertEqual(self.engine.processed_count, 0)
        self.engine.scan()
        self.assertEqual(self.handed_off, ["G", "G"])

    def test_disabled_ignores_structural_changes(self):
        self.engine.start()
        self.context.settings.enabled = False
        self.document.body.append_child(make_reel("H"))
        self.assertEqual(self.handed_off, [])

    def test_handoff_error_does_not_stop_scan(self):
        """A failing hand-off is logged and the scan continues."""
        calls = []

        def flaky(element, entity_id):
            calls.append(entity_id)
            if entity_id == "bad":
                raise RuntimeError("listener registration failed")

        engine = DetectionEngine(self.context, IdentityResolver(), flaky)
        self.document.body.append_child(make_reel("bad"))
        self.document.body.append_child(make_reel("good"))

        self.assertEqual(engine.scan(), 1)
        self.assertEqual(calls, ["bad", "good"])
        # The failed element stays tagged and is not retried
        self.assertEqual(engine.scan(), 0)


if __name__ == "__main__":
    unittest.main()

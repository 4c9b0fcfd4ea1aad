"""
Reel classification rule table.

A media element is a reel candidate when it is visible AND at least one
of the "any" signals matches. Each signal is a pure check over the
element; a check that raises is logged and counted as a non-match, so
is_candidate() is total.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import config
from detection.dom import Element

logger = logging.getLogger(__name__)

REQUIRED = "required"
ANY = "any"


@dataclass(frozen=True)
class ContainerPattern:
    """
    Structural container matcher.

    Exactly one of the fields is expected to be set:
        tag: element tag name
        attribute + contains: attribute value substring
        attribute + equals: exact attribute value
        css_class: class token
    """
    tag: Optional[str] = None
    attribute: Optional[str] = None
    contains: Optional[str] = None
    equals: Optional[str] = None
    css_class: Optional[str] = None

    def matches(self, element: Element) -> bool:
        if self.tag is not None:
            return element.tag == self.tag
        if self.css_class is not None:
            return self.css_class in element.classes
        if self.attribute is not None:
            value = element.get_attribute(self.attribute)
            if value is None:
                return False
            if self.equals is not None:
                return value == self.equals
            if self.contains is not None:
                return self.contains in value
            return True
        return False


def matches_any(patterns: List[ContainerPattern]) -> Callable[[Element], bool]:
    """Predicate matching an element against any of the patterns."""
    return lambda el: any(p.matches(el) for p in patterns)


REEL_CONTAINERS = [
    ContainerPattern(attribute="data-testid", contains="reel"),
    ContainerPattern(tag="article"),
    ContainerPattern(attribute="role", equals="presentation"),
    ContainerPattern(attribute="data-testid", contains="media"),
    ContainerPattern(css_class="x1lliihq"),
]

VIDEO_TESTID_CONTAINER = ContainerPattern(attribute="data-testid", contains="video")

INLINE_PLAYBACK_ATTRIBUTES = ("playsinline", "webkit-playsinline")


# ----------------------------------------------------------------------
# Signal checks
# ----------------------------------------------------------------------

def is_visible(element: Element) -> bool:
    rect = element.get_bounding_client_rect()
    return rect.width > 0 and rect.height > 0


def has_known_source(element: Element) -> bool:
    src = element.get_attribute("src") or ""
    return any(domain in src for domain in config.KNOWN_MEDIA_DOMAINS)


def in_reel_container(element: Element) -> bool:
    return element.closest(matches_any(REEL_CONTAINERS)) is not None


def has_inline_playback(element: Element) -> bool:
    if any(element.has_attribute(attr) for attr in INLINE_PLAYBACK_ATTRIBUTES):
        return True
    return element.closest(VIDEO_TESTID_CONTAINER.matches) is not None


def aspect_ratio(element: Element) -> float:
    """Height over width, 0 for an element without width."""
    rect = element.get_bounding_client_rect()
    return rect.height / rect.width if rect.width > 0 else 0.0


def has_reel_shape(element: Element) -> bool:
    ratio = aspect_ratio(element)
    low, high = config.SQUARE_ASPECT_RANGE
    return ratio > config.VERTICAL_ASPECT_MIN or low < ratio < high


@dataclass(frozen=True)
class Signal:
    name: str
    check: Callable[[Element], bool]
    kind: str = ANY


SIGNALS: List[Signal] = [
    Signal("visible", is_visible, REQUIRED),
    Signal("known_source", has_known_source),
    Signal("reel_container", in_reel_container),
    Signal("inline_playback", has_inline_playback),
    Signal("reel_shape", has_reel_shape),
]


def evaluate_signals(element: Element, signals: Optional[List[Signal]] = None) -> Dict[str, bool]:
    """
    Run every check against element.

    Returns:
        Mapping of signal name to result. A check that raises maps to False.
    """
    results: Dict[str, bool] = {}
    for signal in signals if signals is not None else SIGNALS:
        try:
            results[signal.name] = bool(signal.check(element))
        except Exception as e:
            logger.debug(f"Signal check {signal.name} failed: {e}")
            results[signal.name] = False
    return results


def is_candidate(element: Element, signals: Optional[List[Signal]] = None) -> bool:
    """
    Decide whether element looks like a reel player.

    Never raises.
    """
    table = signals if signals is not None else SIGNALS
    results = evaluate_signals(element, table)
    required_ok = all(results[s.name] for s in table if s.kind == REQUIRED)
    any_signals = [s for s in table if s.kind == ANY]
    any_ok = any(results[s.name] for s in any_signals) if any_signals else True
    return required_ok and any_ok

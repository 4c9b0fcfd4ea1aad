"""
Identity resolution for detected reel players.

The host page exposes no reliable identifier for a playing reel, so the
resolver walks an ordered chain of heuristics and returns the first hit.
The final rule (viewport position) always produces an id, so resolution
never fails for a real element; ids from that rule are LOW confidence
and must not be used to deduplicate.
"""

import enum
import hashlib
import logging
import math
import re
from typing import Callable, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import config
from detection.classifier import ContainerPattern
from detection.dom import Element

logger = logging.getLogger(__name__)

REEL_PATH_RE = re.compile(r"/reel/([^/?]+)")
POST_PATH_RE = re.compile(r"/p/([^/?]+)")

LINK_CONTAINERS = [
    ContainerPattern(tag="article"),
    ContainerPattern(attribute="role", equals="presentation"),
    ContainerPattern(attribute="data-testid", contains="reel"),
]

ID_CONTAINERS = [
    ContainerPattern(tag="article"),
    ContainerPattern(attribute="role", equals="presentation"),
    ContainerPattern(tag="div"),
]

CONTAINER_ID_ATTRIBUTES = ("id", "data-id", "data-media-id")
EXPLICIT_ID_ATTRIBUTES = ("data-video-id", "data-media-id")


class Confidence(enum.Enum):
    HIGH = "high"
    LOW = "low"


def _js_round(value: float) -> int:
    """Round half up, the way viewport coordinates are usually reported."""
    return int(math.floor(value + 0.5))


def _is_known_url(url: str) -> bool:
    return bool(url) and any(domain in url for domain in config.KNOWN_MEDIA_DOMAINS)


def _path_parts(url: str) -> List[str]:
    return [part for part in urlparse(url).path.split("/") if part]


def _nearest_container(element: Element, patterns: List[ContainerPattern]) -> Optional[Element]:
    """
    Nearest ancestor matching the patterns, tried in pattern order.

    Mirrors `a.closest(x) || a.closest(y) || ...`: the first pattern with
    any matching ancestor wins, even if a later pattern matches nearer.
    """
    for pattern in patterns:
        container = element.closest(pattern.matches)
        if container is not None:
            return container
    return None


def _links(container: Element) -> List[Element]:
    return container.find_all(lambda el: el.tag == "a" and el.has_attribute("href"))


# ----------------------------------------------------------------------
# Rules (each returns an id or None)
# ----------------------------------------------------------------------

def from_reel_link(element: Element) -> Optional[str]:
    container = _nearest_container(element, LINK_CONTAINERS)
    if container is None:
        return None
    for link in _links(container):
        href = link.get_attribute("href") or ""
        if "/reel/" in href:
            match = REEL_PATH_RE.search(href)
            # Only the first /reel/ link counts
            return match.group(1) if match else None
    return None


def from_post_link(element: Element) -> Optional[str]:
    container = _nearest_container(element, LINK_CONTAINERS)
    if container is None:
        return None
    for link in _links(container):
        href = link.get_attribute("href") or ""
        if "/p/" in href:
            match = POST_PATH_RE.search(href)
            if match:
                return match.group(1)
    return None


def from_test_id(element: Element) -> Optional[str]:
    container = element.closest(lambda el: el.has_attribute("data-testid"))
    if container is None:
        return None
    test_id = container.get_attribute("data-testid") or ""
    if "reel" in test_id or "video" in test_id:
        return test_id
    return None


def from_media_source(element: Element) -> Optional[str]:
    src = element.get_attribute("src") or ""
    if not _is_known_url(src):
        return None
    parts = _path_parts(src)
    if "reel" in parts:
        index = parts.index("reel")
        if index + 1 < len(parts):
            return parts[index + 1]
    params = parse_qs(urlparse(src).query)
    for name in ("media_id", "id"):
        values = params.get(name)
        if values and values[0]:
            return values[0]
    return None


def from_poster(element: Element) -> Optional[str]:
    poster = element.get_attribute("poster") or ""
    if not _is_known_url(poster):
        return None
    parts = _path_parts(poster)
    if not parts:
        return None
    if len(parts) >= 2 and parts[-2]:
        return parts[-2]
    return parts[-1]


def from_container_attributes(element: Element) -> Optional[str]:
    container = _nearest_container(element, ID_CONTAINERS)
    if container is None:
        return None
    for attr in CONTAINER_ID_ATTRIBUTES:
        value = container.get_attribute(attr)
        if value:
            return value
    return None


def from_stable_hash(element: Element) -> Optional[str]:
    src = element.get_attribute("src") or ""
    props = [
        src.split("?")[0],
        element.get_attribute("poster") or "",
    ] + [element.get_attribute(attr) or "" for attr in EXPLICIT_ID_ATTRIBUTES]
    props = [p for p in props if p]
    if not props:
        return None
    digest = hashlib.sha256("|".join(props).encode("utf-8")).hexdigest()
    return "h_" + digest[:config.STABLE_HASH_LENGTH]


def from_position(element: Element) -> str:
    rect = element.get_bounding_client_rect()
    return "pos_{}_{}_{}_{}".format(
        _js_round(rect.top),
        _js_round(rect.left),
        _js_round(rect.width),
        _js_round(rect.height),
    )


RULES: List[Tuple[str, Callable[[Element], Optional[str]]]] = [
    ("reel_link", from_reel_link),
    ("post_link", from_post_link),
    ("test_id", from_test_id),
    ("media_source", from_media_source),
    ("poster", from_poster),
    ("container_attributes", from_container_attributes),
    ("stable_hash", from_stable_hash),
]


class IdentityResolver:
    """Ordered fallback chain from page structure to an entity id."""

    def __init__(self) -> None:
        self.low_confidence_count = 0

    def resolve_with_confidence(self, element: Optional[Element]) -> Tuple[Optional[str], Optional[str], Confidence]:
        """
        Resolve element to an id.

        Returns:
            (id, rule name, confidence). id is None only for a missing element.
        """
        if element is None:
            return None, None, Confidence.LOW

        for name, rule in RULES:
            try:
                entity_id = rule(element)
            except Exception as e:
                logger.debug(f"Identity rule {name} failed: {e}")
                continue
            if entity_id:
                logger.debug(f"Resolved reel id {entity_id} via {name}")
                return entity_id, name, Confidence.HIGH

        try:
            entity_id = from_position(element)
        except Exception as e:
            logger.warning(f"Position fallback failed: {e}")
            entity_id = "pos_0_0_0_0"
        self.low_confidence_count += 1
        logger.debug(f"Using position-based reel id {entity_id}")
        return entity_id, "position", Confidence.LOW

    def resolve(self, element: Optional[Element]) -> Optional[str]:
        """Resolve element to an id (see resolve_with_confidence)."""
        entity_id, _, _ = self.resolve_with_confidence(element)
        return entity_id

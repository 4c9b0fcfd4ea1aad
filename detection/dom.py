"""
Minimal document tree for the detection pipeline.

The host page is modelled as a tree of Element objects under a Document.
An embedding host (browser bridge, replay harness, tests) builds and
mutates the tree; the tracker only reads it, listens to media events and
receives structural-change notifications.

Elements are hashable by identity, which is what the detection engine's
processed-set relies on.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

MEDIA_TAGS = ("video",)

# Media event types dispatched by MediaElement
EVENT_PLAY = "play"
EVENT_PAUSE = "pause"
EVENT_ENDED = "ended"


@dataclass
class Rect:
    """Viewport bounding box."""
    top: float = 0.0
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0


class Subscription:
    """Handle returned by every listener registration; cancel() detaches it."""

    def __init__(self, detach: Callable[[], None], label: str = "") -> None:
        self._detach = detach
        self.label = label
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._detach()

    def __repr__(self) -> str:
        return f"<Subscription {self.label} active={self.active}>"


class Element:
    """A node in the document tree."""

    def __init__(self, tag: str, attributes: Optional[Dict[str, str]] = None,
                 rect: Optional[Rect] = None, children: Optional[List["Element"]] = None) -> None:
        self.tag = tag.lower()
        self.attributes: Dict[str, str] = dict(attributes or {})
        self.rect = rect or Rect()
        self.parent: Optional["Element"] = None
        self.children: List["Element"] = []
        self._document: Optional["Document"] = None
        for child in children or []:
            self._attach(child)

    def __repr__(self) -> str:
        return f"<{self.tag} {self.attributes}>"

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def set_attribute(self, name: str, value: str) -> None:
        self.attributes[name] = value

    @property
    def classes(self) -> List[str]:
        return (self.attributes.get("class") or "").split()

    def get_bounding_client_rect(self) -> Rect:
        return self.rect

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def owner_document(self) -> Optional["Document"]:
        node: Optional[Element] = self
        while node is not None:
            if node._document is not None:
                return node._document
            node = node.parent
        return None

    def _attach(self, child: "Element") -> None:
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.append(child)

    def append_child(self, child: "Element") -> "Element":
        """
        Append child (moving it if already attached elsewhere).

        The owning document, if any, is notified of the added subtree.
        """
        self._attach(child)
        document = self.owner_document
        if document is not None:
            document.notify_added([child])
        return child

    def remove_child(self, child: "Element") -> None:
        """
        Detach child.

        The owning document, if any, is notified of the removed subtree.
        """
        document = self.owner_document
        self.children.remove(child)
        child.parent = None
        if document is not None:
            document.notify_removed([child])

    def remove(self) -> None:
        """Detach this element from its parent."""
        if self.parent is not None:
            self.parent.remove_child(self)

    def closest(self, predicate: Callable[["Element"], bool]) -> Optional["Element"]:
        """Nearest inclusive ancestor matching predicate."""
        node: Optional[Element] = self
        while node is not None:
            if predicate(node):
                return node
            node = node.parent
        return None

    def iter_descendants(self) -> Iterator["Element"]:
        """Depth-first, document order, excluding self."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def iter_subtree(self) -> Iterator["Element"]:
        """Self followed by all descendants."""
        yield self
        yield from self.iter_descendants()

    def find_all(self, predicate: Callable[["Element"], bool]) -> List["Element"]:
        """Descendants (excluding self) matching predicate."""
        return [el for el in self.iter_descendants() if predicate(el)]


class MediaElement(Element):
    """
    A playback element (<video>).

    Listeners registered with add_event_listener receive no arguments.
    dispatch_event() is how the host reports play/pause/ended.
    """

    def __init__(self, attributes: Optional[Dict[str, str]] = None,
                 rect: Optional[Rect] = None, tag: str = "video") -> None:
        super().__init__(tag, attributes, rect)
        self._listeners: Dict[str, List[Callable[[], None]]] = {}

    @property
    def src(self) -> str:
        return self.attributes.get("src") or ""

    @property
    def poster(self) -> str:
        return self.attributes.get("poster") or ""

    def add_event_listener(self, event_type: str, listener: Callable[[], None]) -> Subscription:
        self._listeners.setdefault(event_type, []).append(listener)

        def _detach() -> None:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

        return Subscription(_detach, f"{event_type}@{self.tag}")

    def listener_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(v) for v in self._listeners.values())

    def dispatch_event(self, event_type: str) -> None:
        for listener in list(self._listeners.get(event_type, [])):
            listener()


class Document:
    """
    Root of the tree, plus document-level signals.

    - Mutation observers are called with the list of added top-level nodes
      whenever a subtree is appended anywhere in the document.
    - Removal observers are called with the list of detached top-level
      nodes whenever a subtree is removed from the document.
    - Visibility listeners are called when the hidden flag changes.
    """

    def __init__(self, body: Optional[Element] = None) -> None:
        self.body = body or Element("body")
        self.body._document = self
        self.hidden = False
        self._mutation_observers: List[Callable[[List[Element]], None]] = []
        self._removal_observers: List[Callable[[List[Element]], None]] = []
        self._visibility_listeners: List[Callable[[], None]] = []

    def iter_elements(self) -> Iterator[Element]:
        return self.body.iter_subtree()

    def media_elements(self) -> List[Element]:
        return [el for el in self.iter_elements() if el.tag in MEDIA_TAGS]

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def observe_mutations(self, callback: Callable[[List[Element]], None]) -> Subscription:
        self._mutation_observers.append(callback)

        def _detach() -> None:
            if callback in self._mutation_observers:
                self._mutation_observers.remove(callback)

        return Subscription(_detach, "mutations")

    def notify_added(self, nodes: List[Element]) -> None:
        for observer in list(self._mutation_observers):
            observer(list(nodes))

    def observe_removals(self, callback: Callable[[List[Element]], None]) -> Subscription:
        self._removal_observers.append(callback)

        def _detach() -> None:
            if callback in self._removal_observers:
                self._removal_observers.remove(callback)

        return Subscription(_detach, "removals")

    def notify_removed(self, nodes: List[Element]) -> None:
        for observer in list(self._removal_observers):
            observer(list(nodes))

    def removal_observer_count(self) -> int:
        return len(self._removal_observers)

    def add_visibility_listener(self, listener: Callable[[], None]) -> Subscription:
        self._visibility_listeners.append(listener)

        def _detach() -> None:
            if listener in self._visibility_listeners:
                self._visibility_listeners.remove(listener)

        return Subscription(_detach, "visibilitychange")

    def visibility_listener_count(self) -> int:
        return len(self._visibility_listeners)

    def set_hidden(self, hidden: bool) -> None:
        """Change visibility, notifying listeners only on an actual change."""
        if hidden == self.hidden:
            return
        self.hidden = hidden
        for listener in list(self._visibility_listeners):
            listener()

from __future__ import annotations

"""Change notification for external collaborators.

After a mutation, every directly changed node and each of its ancestors is
announced with an ``updated`` event carrying a fresh snapshot of that node's
subtree, so that history, reference caches and the unsaved-state flag can
re-sync without walking the tree themselves. Nodes that actually leave the
document are announced with a ``deleted`` event instead.

The notifier has no knowledge of what listeners do with the events.
"""

from contextlib import contextmanager
from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from blocktree.core.models import Document, Node

__all__ = ["NodeEvent", "ChangeNotifier", "Listener", "UPDATED", "DELETED"]

logger = logging.getLogger(__name__)

UPDATED = "updated"
DELETED = "deleted"


@dataclass(frozen=True)
class NodeEvent:
    """A single change signal.

    Attributes
    ----------
    kind
        ``"updated"`` or ``"deleted"``.
    node_id
        Id of the node the event is about.
    snapshot
        Serialized subtree for ``updated`` events, None for ``deleted``.
    """
    kind: str
    node_id: str
    snapshot: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: Dict[str, Any] = {"kind": self.kind, "nodeId": self.node_id}
        if self.kind == UPDATED:
            result["snapshot"] = self.snapshot
        return result


Listener = Callable[[NodeEvent], None]


class ChangeNotifier:
    """Fan-out of node change events to subscribed listeners.

    Listener failures are logged and isolated: one failing collaborator never
    prevents delivery to the others nor undoes the mutation that triggered it.
    """

    def __init__(self, document: Optional[Document] = None) -> None:
        self._document = document
        self._listeners: List[Listener] = []
        self._suspended = 0
        self._logger = logging.getLogger(f"{__name__}.ChangeNotifier")

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener and return a callable that unsubscribes it."""
        if listener not in self._listeners:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def clear(self) -> None:
        """Drop every subscription."""
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @contextmanager
    def suspended(self) -> Iterator[None]:
        """Deliver nothing while the block is active.

        Used when a collaborator itself rewrites the document (e.g. restoring
        a history snapshot) and must not be told about its own change.
        """
        self._suspended += 1
        try:
            yield
        finally:
            self._suspended -= 1

    @property
    def is_suspended(self) -> bool:
        return self._suspended > 0

    # -------------------------------------------------------------------------
    # Emission
    # -------------------------------------------------------------------------

    def notify_updated(self, nodes: Iterable[Node | str]) -> List[NodeEvent]:
        """Bubble ``updated`` events from each changed node up to its root.

        Every node on the combined paths is announced once per call, nearest
        first. Ids that no longer resolve in the document are skipped.

        Returns:
            The events that were emitted, in delivery order
        """
        events: List[NodeEvent] = []
        emitted: set[str] = set()
        for item in nodes:
            node = self._resolve(item)
            while node is not None:
                if node.id not in emitted:
                    emitted.add(node.id)
                    events.append(NodeEvent(UPDATED, node.id, node.snapshot()))
                node = node.parent
        self._deliver(events)
        return events

    def notify_deleted(self, node_ids: Iterable[str]) -> List[NodeEvent]:
        """Emit one ``deleted`` event per id (duplicates collapsed)."""
        events: List[NodeEvent] = []
        emitted: set[str] = set()
        for node_id in node_ids:
            if node_id in emitted:
                continue
            emitted.add(node_id)
            events.append(NodeEvent(DELETED, node_id))
        self._deliver(events)
        return events

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _resolve(self, item: Node | str) -> Optional[Node]:
        if isinstance(item, Node):
            if self._document is not None and not self._document.owns(item):
                return None
            return item
        if self._document is None:
            return None
        return self._document.find(item)

    def _deliver(self, events: List[NodeEvent]) -> None:
        if not events or self.is_suspended:
            return
        for event in events:
            # Copy so listeners may unsubscribe while being notified
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as exc:
                    self._logger.error(
                        "Listener %r failed on %s event for node %s: %s",
                        listener, event.kind, event.node_id, exc, exc_info=True,
                    )
        self._logger.debug("Delivered %d event(s) to %d listener(s)", len(events), len(self._listeners))

from __future__ import annotations

"""Per-document context shared by the editing services.

The DocumentContext bundles everything that belongs to one open document and
must be visible to both the page view (order-based drops) and the canvas view
(geometry reconciliation): the tree itself, the change notifier, the
selection/link registry, lifetime tokens, the rectangle provider and the node
factory. It is created when a document is opened and discarded with
:meth:`DocumentContext.close`; nothing here is process-global.
"""

import logging
from typing import Callable, Iterable, List, Optional, Set

from blocktree.config import ConfigManager

from .exceptions import BlockTreeError
from .lifetime import LifetimeRegistry
from .models import Document, LayoutSettings, Node, NodeKind, Rect, create_node
from .services.change_notifier import DELETED, ChangeNotifier, NodeEvent

logger = logging.getLogger(__name__)

__all__ = ["DocumentContext", "SelectionRegistry", "RectProvider", "NodeFactory"]

# Host-supplied geometry of a rendered node
RectProvider = Callable[[str], Rect]
# Host-supplied node factory: (kind, initial properties) -> Node
NodeFactory = Callable[[NodeKind, Optional[dict]], Node]


class SelectionRegistry:
    """Selected and linked node ids of one document.

    Deleted nodes are pruned automatically through :meth:`handle_event` so
    that clipboard and selection never point at a stale id.
    """

    def __init__(self) -> None:
        self._selected: List[str] = []
        self._linked: Set[str] = set()

    @property
    def selected(self) -> List[str]:
        return list(self._selected)

    @property
    def linked(self) -> Set[str]:
        return set(self._linked)

    def set(self, node_ids: Iterable[str]) -> None:
        """Replace the selection, keeping the given order and dropping duplicates."""
        self._selected = list(dict.fromkeys(node_ids))

    def add(self, node_id: str) -> None:
        if node_id not in self._selected:
            self._selected.append(node_id)

    def discard(self, node_id: str) -> None:
        if node_id in self._selected:
            self._selected.remove(node_id)
        self._linked.discard(node_id)

    def link(self, node_id: str) -> None:
        self._linked.add(node_id)

    def is_selected(self, node_id: str) -> bool:
        return node_id in self._selected

    def clear(self) -> None:
        self._selected.clear()
        self._linked.clear()

    def handle_event(self, event: NodeEvent) -> None:
        """ChangeNotifier listener: forget nodes that left the document."""
        if event.kind == DELETED:
            self.discard(event.node_id)


class DocumentContext:
    """Explicit shared state for one open document.

    Design Principles:
    - Created per open document, discarded on close
    - Passed to the drop resolver and the canvas reconciler constructors
    - Owns the notifier so every service signals through the same channel
    """

    def __init__(
        self,
        document: Optional[Document] = None,
        settings: Optional[LayoutSettings] = None,
        rect_provider: Optional[RectProvider] = None,
        node_factory: Optional[NodeFactory] = None,
    ) -> None:
        """Initialize a document context.

        Args:
            document: Tree to edit; an empty document when omitted
            settings: Layout constants; read from the ConfigManager (packaged
                layout.yml plus user overrides) when omitted
            rect_provider: Host geometry lookup; falls back to node properties
            node_factory: Host node factory; falls back to :func:`create_node`
        """
        self.document = document if document is not None else Document()
        self.settings = settings if settings is not None else ConfigManager().get_layout_settings()
        self.notifier = ChangeNotifier(self.document)
        self.selection = SelectionRegistry()
        self.lifetimes = LifetimeRegistry(is_alive=lambda node_id: self.document.contains(node_id))
        self._rect_provider = rect_provider
        self._node_factory = node_factory
        self._closed = False

        self.notifier.subscribe(self.selection.handle_event)
        self.notifier.subscribe(self.lifetimes.handle_event)
        logger.info("DocumentContext opened with %d node(s)", len(self.document))

    # -------------------------------------------------------------------------
    # Collaborator access
    # -------------------------------------------------------------------------

    def get_rect(self, node_id: str) -> Rect:
        """Return the rectangle of a node from the host, or from its properties."""
        self.ensure_open()
        if self._rect_provider is not None:
            return self._rect_provider(node_id)
        return self.property_rect(self.document.get(node_id))

    def property_rect(self, node: Node) -> Rect:
        """Rectangle derived from a node's own position/width/height properties."""
        position = node.position
        width = node.canvas_width
        height = node.height
        return Rect(
            position.x,
            position.y,
            width if width is not None else self.settings.default_width,
            height if height is not None else self.settings.default_height,
        )

    @property
    def has_rect_provider(self) -> bool:
        return self._rect_provider is not None

    def create_node(self, kind: NodeKind | str, properties: Optional[dict] = None) -> Node:
        """Create a node through the host factory (or the default one)."""
        self.ensure_open()
        kind = NodeKind(kind)
        if self._node_factory is not None:
            node = self._node_factory(kind, dict(properties or {}))
        else:
            node = create_node(kind, properties, settings=self.settings)
        if node.kind == NodeKind.COLUMN and "width" not in node.properties:
            node.width_fraction = self.settings.column_default_width
        return node

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_open(self) -> None:
        if self._closed:
            raise BlockTreeError("Document context is closed")

    def close(self) -> None:
        """Discard per-document state: tokens, selection and subscriptions."""
        if self._closed:
            return
        self.lifetimes.cancel_all()
        self.selection.clear()
        self.notifier.clear()
        self._closed = True
        logger.info("DocumentContext closed")

from __future__ import annotations

"""Shared data structures used across the block tree core.

This package exposes the node/tree model used by every service. It is
intentionally free of UI / I/O code so that the contained objects can be
reused in any context (unit-tests, headless tools, GUI shells, etc.).

The ``children`` lists are the single source of truth for the tree shape.
``Node.parent`` and the document id index are derived from them and are
rebuilt by :meth:`Document.reindex` after every structural change.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional
import uuid

from blocktree.core.exceptions import InvariantViolation, NotFound
from .geometry import Guide, Point, Rect
from .layout_config import DEFAULT_LAYOUT, LayoutSettings

__all__ = [
    "NodeKind",
    "Node",
    "Document",
    "create_node",
    "generate_node_id",
    "Point",
    "Rect",
    "Guide",
    "LayoutSettings",
    "DEFAULT_LAYOUT",
    "WIDTH_TOLERANCE",
]

# Column width fractions of a columns node must sum to 1.0 within this bound.
WIDTH_TOLERANCE = 1e-6


class NodeKind(str, Enum):
    """Closed set of block kinds."""
    PARAGRAPH = "paragraph"
    HEADING1 = "heading1"
    HEADING2 = "heading2"
    QUOTE = "quote"
    CODE = "code"
    IMAGE = "image"
    LINK_BUTTON = "link-button"
    BULLETED_LIST_ITEM = "bulleted-list-item"
    NUMBERED_LIST_ITEM = "numbered-list-item"
    TODO_LIST_ITEM = "todo-list-item"
    TOGGLE_LIST_ITEM = "toggle-list-item"
    CALLOUT = "callout"
    CONTAINER = "container"
    COLUMNS = "columns"
    COLUMN = "column"
    TABLE = "table"
    TABLE_CELL = "table-cell"
    TABLE_VIEW = "table-view"

    @property
    def is_container(self) -> bool:
        return self in _CONTAINER_KINDS

    @property
    def is_split_group(self) -> bool:
        return self in _SPLIT_GROUP_KINDS


_CONTAINER_KINDS = frozenset({
    NodeKind.CALLOUT,
    NodeKind.TOGGLE_LIST_ITEM,
    NodeKind.CONTAINER,
    NodeKind.COLUMNS,
    NodeKind.COLUMN,
    NodeKind.TABLE_CELL,
})

_SPLIT_GROUP_KINDS = frozenset({NodeKind.COLUMNS, NodeKind.COLUMN})


def generate_node_id() -> str:
    """Generate a unique node ID."""
    return uuid.uuid4().hex


@dataclass(eq=False)
class Node:
    """A single block in the document tree.

    Nodes compare by identity. ``parent`` is a non-owning back-reference and
    is excluded from the repr to keep it readable.
    """
    kind: NodeKind
    id: str = field(default_factory=generate_node_id)
    content: str = ""
    properties: Dict[str, Any] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)
    parent: Optional["Node"] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.kind = NodeKind(self.kind)
        for child in self.children:
            child.parent = self

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------
    @property
    def is_container(self) -> bool:
        """Return True if this node may own children."""
        return self.kind.is_container

    @property
    def is_split_group(self) -> bool:
        """Return True for columns / column nodes."""
        return self.kind.is_split_group

    # ------------------------------------------------------------------
    # Typed property accessors
    # ------------------------------------------------------------------
    @property
    def width_fraction(self) -> float:
        """Relative width of a column (0..1)."""
        return float(self.properties.get("width", 0.0) or 0.0)

    @width_fraction.setter
    def width_fraction(self, value: float) -> None:
        self.properties["width"] = float(value)

    @property
    def position(self) -> Point:
        """Absolute canvas position of the node's top-left corner."""
        return Point.from_mapping(self.properties.get("position"))

    @position.setter
    def position(self, value: Point) -> None:
        self.properties["position"] = value.to_dict()

    @property
    def canvas_width(self) -> Optional[float]:
        value = self.properties.get("width")
        return float(value) if value is not None else None

    @property
    def height(self) -> Optional[float]:
        value = self.properties.get("height")
        return float(value) if value is not None else None

    @height.setter
    def height(self, value: float) -> None:
        self.properties["height"] = float(value)

    # ------------------------------------------------------------------
    # Structural queries
    # ------------------------------------------------------------------
    def depth_first(self) -> Iterator["Node"]:
        """Traverse the subtree depth-first, yielding self then children."""
        yield self
        for child in self.children:
            yield from child.depth_first()

    def ancestors(self) -> Iterator["Node"]:
        """Yield the parent chain, nearest first."""
        current = self.parent
        while current is not None:
            yield current
            current = current.parent

    def is_ancestor_of(self, other: "Node") -> bool:
        """Return True if ``other`` lies strictly inside this node's subtree."""
        return any(a is self for a in other.ancestors())

    def has_children(self) -> bool:
        return len(self.children) > 0

    # ------------------------------------------------------------------
    # Data shape
    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        """Return the recursive serializable data of this subtree."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "content": self.content,
            "properties": _copy_properties(self.properties),
            "children": [child.snapshot() for child in self.children],
        }

    @classmethod
    def from_data(cls, data: Mapping[str, Any]) -> "Node":
        """Build a detached subtree from :meth:`snapshot` shaped data."""
        children = [cls.from_data(child) for child in data.get("children") or []]
        kwargs: Dict[str, Any] = {
            "kind": NodeKind(data["kind"]),
            "content": data.get("content", "") or "",
            "properties": _copy_properties(data.get("properties") or {}),
            "children": children,
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


def _copy_properties(value: Any) -> Any:
    """Copy nested dict/list property values so snapshots never alias live state."""
    if isinstance(value, Mapping):
        return {k: _copy_properties(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_properties(v) for v in value]
    return value


def create_node(kind: NodeKind | str, properties: Optional[Dict[str, Any]] = None,
                content: str = "", settings: LayoutSettings = DEFAULT_LAYOUT) -> Node:
    """Default node factory.

    Hosts normally inject their own factory (content-specific defaults);
    this one only fills the properties the core algorithms read.
    """
    node = Node(kind=NodeKind(kind), content=content, properties=dict(properties or {}))
    if node.kind == NodeKind.COLUMN and "width" not in node.properties:
        node.width_fraction = settings.column_default_width
    return node


class Document:
    """Ordered forest of root nodes plus a derived id index.

    Attributes
    ----------
    roots
        Top-level nodes in document order. Their ``parent`` is None.
    """

    def __init__(self, roots: Optional[Iterable[Node]] = None) -> None:
        self.roots: List[Node] = list(roots or [])
        self._index: Dict[str, Node] = {}
        self.reindex()

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------
    def reindex(self) -> None:
        """Re-derive parent back-references and the id index from children lists.

        Raises:
            InvariantViolation: If a node is reachable twice or an id repeats
        """
        index: Dict[str, Node] = {}
        seen: set[int] = set()

        def visit(node: Node, parent: Optional[Node]) -> None:
            if id(node) in seen:
                raise InvariantViolation("Node is owned more than once", node_id=node.id)
            if node.id in index:
                raise InvariantViolation("Duplicate node id", node_id=node.id)
            seen.add(id(node))
            index[node.id] = node
            node.parent = parent
            for child in node.children:
                visit(child, node)

        for root in self.roots:
            visit(root, None)
        self._index = index

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def contains(self, node_id: str) -> bool:
        return node_id in self._index

    def find(self, node_id: Optional[str]) -> Optional[Node]:
        """Return the node with this id, or None."""
        if node_id is None:
            return None
        return self._index.get(node_id)

    def get(self, node_id: str) -> Node:
        """Return the node with this id.

        Raises:
            NotFound: If no such node exists in the document
        """
        node = self._index.get(node_id)
        if node is None:
            raise NotFound(f"Node '{node_id}' is not in the document", node_id=node_id)
        return node

    def owns(self, node: Node) -> bool:
        """Return True if this exact node instance is part of the tree."""
        return self._index.get(node.id) is node

    def iter_nodes(self) -> Iterator[Node]:
        """Yield every node in document (pre-order) order."""
        for root in self.roots:
            yield from root.depth_first()

    def siblings_of(self, node: Node) -> List[Node]:
        """Return the live list that owns ``node`` (parent's children or roots)."""
        return node.parent.children if node.parent is not None else self.roots

    def children_of(self, parent: Optional[Node]) -> List[Node]:
        """Return the live child list of ``parent``; None means the root list."""
        return parent.children if parent is not None else self.roots

    def index_of(self, node: Node) -> int:
        siblings = self.siblings_of(node)
        for i, sibling in enumerate(siblings):
            if sibling is node:
                return i
        raise NotFound(f"Node '{node.id}' is detached", node_id=node.id)

    # ------------------------------------------------------------------
    # Data shape
    # ------------------------------------------------------------------
    def snapshot(self) -> List[Dict[str, Any]]:
        return [root.snapshot() for root in self.roots]

    @classmethod
    def from_data(cls, data: Iterable[Mapping[str, Any]]) -> "Document":
        return cls(Node.from_data(item) for item in data)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------
    def check_invariants(self) -> None:
        """Verify ownership, back-references and the columns rules.

        Raises:
            InvariantViolation: On the first broken rule found
        """
        seen: set[int] = set()

        def visit(node: Node, parent: Optional[Node]) -> None:
            if id(node) in seen:
                raise InvariantViolation("Node appears in more than one children list", node_id=node.id)
            seen.add(id(node))
            if node.parent is not parent:
                raise InvariantViolation("Parent back-reference is stale", node_id=node.id)
            if self._index.get(node.id) is not node:
                raise InvariantViolation("Id index is stale", node_id=node.id)
            if node.children and not node.is_container:
                raise InvariantViolation("Non-container owns children", node_id=node.id)
            if node.kind == NodeKind.COLUMN and (parent is None or parent.kind != NodeKind.COLUMNS):
                raise InvariantViolation("Column outside of a columns node", node_id=node.id)
            if node.kind == NodeKind.COLUMNS:
                if any(c.kind != NodeKind.COLUMN for c in node.children):
                    raise InvariantViolation("Columns node owns a non-column child", node_id=node.id)
                if len(node.children) < 2:
                    raise InvariantViolation("Columns node with fewer than two columns", node_id=node.id)
                total = sum(c.width_fraction for c in node.children)
                if abs(total - 1.0) > WIDTH_TOLERANCE:
                    raise InvariantViolation(f"Column widths sum to {total}", node_id=node.id)
            for child in node.children:
                visit(child, node)

        for root in self.roots:
            visit(root, None)
        if len(seen) != len(self._index):
            raise InvariantViolation("Id index lists nodes outside the tree")

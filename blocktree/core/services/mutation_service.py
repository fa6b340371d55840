from __future__ import annotations

"""Structural edits on the in-memory block tree.

This module provides the MutationEngine, the only sanctioned way to alter a
document's tree. Every public operation validates completely before touching
the tree, applies its change, runs the columns normalization sweep and then
tells the ChangeNotifier exactly which containers changed and which nodes
left the document.

Scope and guarantees:
- Operates purely in-memory on a DocumentContext, no file I/O nor UI imports.
- Atomic: a rejected operation raises (NotFound / InvalidTarget) before any
  mutation, so the tree is always left in its last valid state.
- Columns invariant: empty columns are pruned, a columns node with a single
  column is replaced by that column's children, one with no column is
  removed, and widths are renormalized whenever the column count changes.

Examples
--------
Basic usage:

    engine = MutationEngine(context)
    engine.move("block-a", "callout-1", 0)
    engine.split_into_columns("block-b", ["block-a"], "left")

"""

import copy
import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from blocktree.core.exceptions import InvalidTarget, InvariantViolation
from blocktree.core.models import WIDTH_TOLERANCE, Document, Node, NodeKind

if TYPE_CHECKING:
    from blocktree.core.context import DocumentContext


__all__ = ["MutationEngine", "LEFT", "RIGHT"]

logger = logging.getLogger(__name__)

LEFT = "left"
RIGHT = "right"


class MutationEngine:
    """Insert / remove / move / replace operations that keep tree invariants.

    Notes
    -----
    Parent back-references and the id index are re-derived from the children
    lists after every structural change (see :meth:`Document.reindex`); the
    engine never treats them as a second source of truth.
    """

    def __init__(self, context: "DocumentContext") -> None:
        """Initialize the engine for one document.

        Args:
            context: Shared document context (tree, notifier, factory, settings)
        """
        self._context = context
        # Column count of each columns node when first edited since the last sweep
        self._touched: Dict[str, int] = {}
        # Blocks lifted to the root list by a collapsing root-level columns node
        self._lifted: List[Node] = []

    @property
    def document(self) -> Document:
        return self._context.document

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def insert(self, node: Node, parent_id: Optional[str] = None, index: Optional[int] = None) -> Set[str]:
        """Place a new, detached node (with its subtree) under ``parent_id``.

        ``parent_id=None`` targets the root list; ``index=None`` appends.

        Returns:
            Ids of containers structurally affected by the operation

        Raises:
            NotFound: If the parent id is absent
            InvalidTarget: If the node is already placed, an id collides,
                the parent cannot own it, or a cycle would be created
        """
        self._context.ensure_open()
        logger.info("Edit: insert node=%s kind=%s parent=%s index=%s", node.id, node.kind.value, parent_id, index)
        parent = self._resolve_parent(parent_id)
        self._check_detached(node, parent_id)
        for member in node.depth_first():
            if self.document.contains(member.id):
                logger.warning("Edit FAIL: insert duplicate_id node=%s", member.id)
                raise InvalidTarget("Node id is already used in the document", node_id=member.id, target_id=parent_id)
        self._check_placement(node, parent)

        self._attach([node], parent, index)
        affected = self._finish(changed=[parent], moved=[node])
        logger.info("Edit OK: insert node=%s parent=%s", node.id, parent_id)
        return affected

    def remove(self, node_id: str) -> Node:
        """Detach a node and its subtree from the document.

        Children are not destroyed individually; they travel with the
        returned node. Every node of the subtree receives a ``deleted`` signal.

        Raises:
            NotFound: If the id is absent
        """
        self._context.ensure_open()
        logger.info("Edit: remove node=%s", node_id)
        node = self.document.get(node_id)
        old_parent = node.parent
        self._detach(node)
        removed_ids = [member.id for member in node.depth_first()]
        self._finish(changed=[old_parent], deleted=removed_ids)
        logger.info("Edit OK: remove node=%s subtree=%d", node_id, len(removed_ids))
        return node

    def move(self, node_id: str, new_parent_id: Optional[str], index: Optional[int] = None) -> Set[str]:
        """Move a node under ``new_parent_id`` at ``index``.

        Equivalent to remove + insert, with ``index`` interpreted in the
        destination list after the node has been taken out, but validated as a
        whole first: a move that would create a cycle has no effect at all.
        """
        self._context.ensure_open()
        logger.info("Edit: move node=%s parent=%s index=%s", node_id, new_parent_id, index)
        node = self.document.get(node_id)
        parent = self._resolve_parent(new_parent_id)
        self._check_placement(node, parent)

        old_parent = node.parent
        self._detach(node)
        self._attach([node], parent, index)
        affected = self._finish(changed=[old_parent, parent], moved=[node])
        logger.info("Edit OK: move node=%s parent=%s", node_id, new_parent_id)
        return affected

    def move_batch(self, node_ids: Sequence[str], new_parent_id: Optional[str] = None,
                   index: Optional[int] = None, anchor_id: Optional[str] = None,
                   after: bool = False) -> Set[str]:
        """Move several nodes as one contiguous run, keeping their given order.

        Only top-most nodes of the selection are moved (descendants travel
        with their selected ancestor). All of them are taken out first, then
        inserted together at ``index`` of ``new_parent_id``.

        When ``anchor_id`` is given the run lands right before (or, with
        ``after=True``, right after) the anchor inside the anchor's parent;
        ``new_parent_id`` and ``index`` are ignored. The anchor position is
        resolved once the dragged nodes are out of the way.
        """
        self._context.ensure_open()
        logger.info("Edit: move_batch count=%d parent=%s index=%s anchor=%s after=%s",
                    len(node_ids or []), new_parent_id, index, anchor_id, after)
        roots = self._selection_roots(node_ids)
        if anchor_id is not None:
            anchor = self.document.get(anchor_id)
            self._reject_anchor_in_selection(anchor, roots)
            return self._relocate(roots, anchor.parent, anchor=anchor, after=after)
        parent = self._resolve_parent(new_parent_id)
        return self._relocate(roots, parent, index=index)

    def replace(self, node_id: str, new_node: Node,
                keep_properties: Iterable[str] = ("position", "width")) -> Node:
        """Swap a node in place for ``new_node`` (e.g. transforming its kind).

        The listed presentation properties are carried over when present. The
        old node's children are not adopted; they leave the document with it.

        Returns:
            The replaced (now detached) node
        """
        self._context.ensure_open()
        logger.info("Edit: replace node=%s with=%s kind=%s", node_id, new_node.id, new_node.kind.value)
        old = self.document.get(node_id)
        self._check_detached(new_node, node_id)
        for member in new_node.depth_first():
            existing = self.document.find(member.id)
            if existing is not None and existing is not old:
                raise InvalidTarget("Node id is already used in the document", node_id=member.id, target_id=node_id)
        parent = old.parent
        if any(member is old for member in new_node.depth_first()):
            raise InvalidTarget("A node cannot be replaced by its own subtree", node_id=node_id)
        self._check_kind_placement(new_node, parent)

        for key in keep_properties:
            if key in old.properties:
                new_node.properties[key] = copy.deepcopy(old.properties[key])

        siblings = self.document.siblings_of(old)
        siblings[self.document.index_of(old)] = new_node
        new_node.parent = parent
        old.parent = None

        kept_ids = {member.id for member in new_node.depth_first()}
        gone = [member.id for member in old.depth_first() if member.id not in kept_ids]
        self._finish(changed=[parent], deleted=gone, moved=[new_node])
        logger.info("Edit OK: replace node=%s", node_id)
        return old

    def insert_after(self, target_id: Optional[str], kind: NodeKind | str = NodeKind.PARAGRAPH,
                     properties: Optional[dict] = None) -> Node:
        """Create a node through the factory and place it right after ``target_id``.

        With ``target_id=None`` the new node goes to the top of the document.
        """
        self._context.ensure_open()
        node = self._context.create_node(kind, properties)
        if target_id is None:
            self.insert(node, None, 0)
            return node
        target = self.document.get(target_id)
        parent = target.parent
        self.insert(node, parent.id if parent is not None else None, self.document.index_of(target) + 1)
        return node

    def remove_many(self, node_ids: Sequence[str]) -> List[Node]:
        """Delete several nodes with a single notification pass.

        Ids that are already gone (e.g. because an ancestor earlier in the
        batch took them along) are skipped.
        """
        self._context.ensure_open()
        logger.info("Edit: remove_many count=%d", len(node_ids or []))
        removed: List[Node] = []
        deleted: List[str] = []
        changed: List[Optional[Node]] = []
        for node_id in list(node_ids or []):
            node = self.document.find(node_id)
            if node is None:
                logger.debug("remove_many: skipping absent node %s", node_id)
                continue
            changed.append(node.parent)
            self._detach(node)
            self.document.reindex()
            removed.append(node)
            deleted.extend(member.id for member in node.depth_first())

        if not removed:
            logger.info("Edit noop: remove_many removed=0")
            return removed
        self._finish(changed=changed, deleted=deleted)
        logger.info("Edit OK: remove_many removed=%d skipped=%d", len(removed), len(node_ids) - len(removed))
        return removed

    def split_into_columns(self, existing_id: str, incoming: Sequence[Node | str], side: str) -> Node:
        """Put ``incoming`` nodes in a new column beside ``existing_id``.

        Two cases:
        - the existing node is a column of a columns node: a new column holding
          the incoming nodes is inserted next to it and all sibling widths are
          set to ``1/n``;
        - otherwise: the existing node and the incoming nodes each get a new
          column (width 0.5), both columns are wrapped in a new columns node
          that takes the existing node's place. ``side`` decides which column
          comes first.

        ``incoming`` may mix ids / nodes already in the document (a drag) and
        detached nodes (a paste).

        Returns:
            The columns node that now holds the split

        Raises:
            NotFound: If an id is absent
            InvalidTarget: On an empty drop, a cycle, or an unknown side
        """
        self._context.ensure_open()
        side = getattr(side, "value", side)
        logger.info("Edit: split_into_columns target=%s incoming=%d side=%s", existing_id, len(incoming or []), side)
        if side not in (LEFT, RIGHT):
            raise InvalidTarget(f"Unsupported split side '{side}'", node_id=existing_id)
        target = self.document.get(existing_id)
        nodes = self._incoming_roots(incoming)
        if not nodes:
            raise InvalidTarget("Nothing to place in the new column", target_id=existing_id)
        for node in nodes:
            if node is target or node.is_ancestor_of(target):
                logger.warning("Edit FAIL: split_into_columns cycle node=%s target=%s", node.id, existing_id)
                raise InvalidTarget("Cannot split a node beside its own ancestor", node_id=node.id, target_id=existing_id)
            if node.kind == NodeKind.COLUMN:
                raise InvalidTarget("A column cannot be placed inside another column", node_id=node.id, target_id=existing_id)

        parent = target.parent
        old_parents = [node.parent for node in nodes]
        if parent is not None and parent.kind == NodeKind.COLUMNS:
            new_column = self._context.create_node(NodeKind.COLUMN)
            for node in nodes:
                if node.parent is not None or self.document.owns(node):
                    self._detach(node)
            self._attach(nodes, new_column, None)
            insert_at = self.document.index_of(target) + (0 if side == LEFT else 1)
            self._attach([new_column], parent, insert_at)
            count = len(parent.children)
            for column in parent.children:
                column.width_fraction = 1.0 / count
            self._finish(changed=old_parents + [parent])
            logger.info("Edit OK: split_into_columns joined columns=%s count=%d", parent.id, count)
            return parent

        target_column = self._context.create_node(NodeKind.COLUMN, {"width": 0.5})
        incoming_column = self._context.create_node(NodeKind.COLUMN, {"width": 0.5})
        columns = self._context.create_node(NodeKind.COLUMNS)
        for node in nodes:
            if node.parent is not None or self.document.owns(node):
                self._detach(node)
        # Position is resolved after the incoming nodes are out of the way
        siblings = self.document.children_of(parent)
        insert_at = self.document.index_of(target)
        self._detach(target)
        self._attach([target], target_column, None)
        self._attach(nodes, incoming_column, None)
        ordered = [incoming_column, target_column] if side == LEFT else [target_column, incoming_column]
        self._attach(ordered, columns, None)
        siblings.insert(insert_at, columns)
        columns.parent = parent

        self._finish(changed=old_parents + [parent], moved=[columns])
        logger.info("Edit OK: split_into_columns created columns=%s", columns.id)
        return columns

    def resize_columns(self, left_id: str, right_id: str, delta: float) -> Tuple[float, float]:
        """Shift ``delta`` of width from the right column to the left one.

        Both columns keep at least ``column_min_width``; the pair's total is
        preserved.

        Returns:
            The new (left, right) width fractions
        """
        self._context.ensure_open()
        logger.info("Edit: resize_columns left=%s right=%s delta=%.4f", left_id, right_id, delta)
        left = self.document.get(left_id)
        right = self.document.get(right_id)
        parent = left.parent
        if left.kind != NodeKind.COLUMN or right.kind != NodeKind.COLUMN or parent is None or right.parent is not parent:
            raise InvalidTarget("Only sibling columns can be resized together", node_id=left_id, target_id=right_id)
        if self.document.index_of(right) != self.document.index_of(left) + 1:
            raise InvalidTarget("Columns are not adjacent", node_id=left_id, target_id=right_id)

        min_width = self._context.settings.column_min_width
        new_left = left.width_fraction + delta
        new_right = right.width_fraction - delta
        if new_left < min_width:
            new_right += new_left - min_width
            new_left = min_width
        if new_right < min_width:
            new_left += new_right - min_width
            new_right = min_width
        left.width_fraction = new_left
        right.width_fraction = new_right

        self._context.notifier.notify_updated([parent])
        logger.info("Edit OK: resize_columns left=%.4f right=%.4f", new_left, new_right)
        return new_left, new_right

    def normalize(self, root_id: Optional[str] = None) -> Set[str]:
        """Apply the columns invariant bottom-up below ``root_id`` (whole tree if None).

        Nodes dissolved by the sweep (empty columns, collapsed columns nodes)
        are announced as deleted. Update signals are left to the caller.

        Returns:
            Ids of containers whose child count or width set changed

        Raises:
            InvariantViolation: If a columns node owns a non-column child
        """
        self._context.ensure_open()
        affected, deleted = self._sweep(root_id)
        self._lifted = []
        self.document.reindex()
        self._context.notifier.notify_deleted(deleted)
        return affected

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _resolve_parent(self, parent_id: Optional[str]) -> Optional[Node]:
        if parent_id is None:
            return None
        return self.document.get(parent_id)

    def _check_placement(self, node: Node, parent: Optional[Node]) -> None:
        """Raise InvalidTarget unless ``node`` may be placed under ``parent``."""
        if parent is not None:
            if any(member is parent for member in node.depth_first()):
                logger.warning("Edit FAIL: cycle node=%s target=%s", node.id, parent.id)
                raise InvalidTarget("Cannot place a node inside itself or its descendants",
                                    node_id=node.id, target_id=parent.id)
            if not parent.is_container:
                raise InvalidTarget(f"'{parent.kind.value}' blocks cannot own children",
                                    node_id=node.id, target_id=parent.id)
        self._check_kind_placement(node, parent)

    def _check_kind_placement(self, node: Node, parent: Optional[Node]) -> None:
        parent_kind = parent.kind if parent is not None else None
        target_id = parent.id if parent is not None else None
        if parent_kind == NodeKind.COLUMNS and node.kind != NodeKind.COLUMN:
            raise InvalidTarget("Columns blocks only hold columns", node_id=node.id, target_id=target_id)
        if node.kind == NodeKind.COLUMN and parent_kind != NodeKind.COLUMNS:
            raise InvalidTarget("Columns can only live inside a columns block", node_id=node.id, target_id=target_id)

    def _check_detached(self, node: Node, target_id: Optional[str], seen: Optional[Set[str]] = None) -> None:
        """Raise InvalidTarget unless a subtree about to enter the document is well formed.

        Ids must be unique across the subtree (and across ``seen``), only
        containers may own children, and columns/column pairing must hold.
        """
        seen = set() if seen is None else seen
        stack = [node]
        while stack:
            member = stack.pop()
            if member.id in seen:
                logger.warning("Edit FAIL: repeated id node=%s", member.id)
                raise InvalidTarget("Node id appears more than once in the incoming blocks",
                                    node_id=member.id, target_id=target_id)
            seen.add(member.id)
            if member.children and not member.is_container:
                raise InvalidTarget(f"'{member.kind.value}' blocks cannot own children",
                                    node_id=member.id, target_id=target_id)
            for child in member.children:
                self._check_kind_placement(child, member)
            stack.extend(reversed(member.children))

    def _selection_roots(self, node_ids: Sequence[str]) -> List[Node]:
        nodes = [self.document.get(node_id) for node_id in list(node_ids or [])]
        roots = _top_most(nodes)
        if not roots:
            raise InvalidTarget("No blocks to move")
        return roots

    def _incoming_roots(self, incoming: Sequence[Node | str]) -> List[Node]:
        nodes: List[Node] = []
        seen: Set[str] = set()
        for item in list(incoming or []):
            if isinstance(item, Node):
                if any(item is node for node in nodes):
                    continue
                if not self.document.owns(item):
                    self._check_detached(item, None, seen)
                    for member in item.depth_first():
                        if self.document.contains(member.id):
                            raise InvalidTarget("Node id is already used in the document", node_id=member.id)
                nodes.append(item)
            else:
                nodes.append(self.document.get(item))
        return _top_most(nodes)

    @staticmethod
    def _reject_anchor_in_selection(anchor: Node, roots: Sequence[Node]) -> None:
        for root in roots:
            if root is anchor or root.is_ancestor_of(anchor):
                raise InvalidTarget("Cannot drop blocks next to themselves", node_id=root.id, target_id=anchor.id)

    def _relocate(self, roots: List[Node], parent: Optional[Node], index: Optional[int] = None,
                  anchor: Optional[Node] = None, after: bool = False) -> Set[str]:
        for node in roots:
            self._check_placement(node, parent)

        old_parents = [node.parent for node in roots]
        for node in roots:
            self._detach(node)
        if anchor is not None:
            index = self.document.index_of(anchor) + (1 if after else 0)
        self._attach(roots, parent, index)
        affected = self._finish(changed=old_parents + [parent], moved=roots)
        logger.info("Edit OK: relocate count=%d parent=%s", len(roots), parent.id if parent is not None else None)
        return affected

    def _detach(self, node: Node) -> Tuple[Optional[Node], int]:
        """Take ``node`` out of its owner list; return (old parent, old index)."""
        parent = node.parent
        siblings = self.document.children_of(parent)
        for i, sibling in enumerate(siblings):
            if sibling is node:
                self._touch(parent)
                del siblings[i]
                node.parent = None
                return parent, i
        return parent, -1

    def _attach(self, nodes: List[Node], parent: Optional[Node], index: Optional[int]) -> None:
        """Insert ``nodes`` as a contiguous run into ``parent`` (root list if None)."""
        siblings = self.document.children_of(parent)
        if index is None or index > len(siblings):
            index = len(siblings)
        index = max(0, index)
        self._touch(parent)
        siblings[index:index] = nodes
        for node in nodes:
            node.parent = parent

    def _touch(self, parent: Optional[Node]) -> None:
        if parent is not None and parent.kind == NodeKind.COLUMNS:
            self._touched.setdefault(parent.id, len(parent.children))

    def _finish(self, changed: Iterable[Optional[Node]], deleted: Iterable[str] = (),
                moved: Iterable[Node] = ()) -> Set[str]:
        """Reindex, normalize and notify. Returns affected container ids."""
        self.document.reindex()
        affected, swept = self._sweep(None)
        self.document.reindex()

        deleted_ids = list(deleted) + swept
        for node in changed:
            if node is not None and self.document.owns(node):
                affected.add(node.id)

        lifted = [node for node in self._lifted if self.document.owns(node)]
        self._lifted = []

        notifier = self._context.notifier
        notifier.notify_deleted(deleted_ids)
        if affected:
            notifier.notify_updated(sorted(affected, key=self._document_order()) + lifted)
        else:
            # Root-level change: no container changed, announce the moved nodes
            notifier.notify_updated([node for node in moved if self.document.owns(node)] + lifted)
        return affected

    def _document_order(self):
        order = {node.id: i for i, node in enumerate(self.document.iter_nodes())}
        return lambda node_id: order.get(node_id, len(order))

    def _sweep(self, root_id: Optional[str]) -> Tuple[Set[str], List[str]]:
        """Bottom-up columns normalization. Returns (affected ids, deleted ids)."""
        affected: Set[str] = set()
        deleted: List[str] = []
        root = self._resolve_parent(root_id)

        def visit(parent: Optional[Node]) -> None:
            siblings = self.document.children_of(parent)
            # Walk backwards so splicing at i never shifts unvisited entries
            for i in range(len(siblings) - 1, -1, -1):
                node = siblings[i]
                if node.children:
                    visit(node)
                if node.kind == NodeKind.COLUMNS:
                    self._normalize_columns(node, parent, siblings, i, affected, deleted)

        if root is None:
            visit(None)
        else:
            visit(root)
            if root.kind == NodeKind.COLUMNS and self.document.owns(root):
                siblings = self.document.siblings_of(root)
                self._normalize_columns(root, root.parent, siblings, self.document.index_of(root), affected, deleted)
        self._touched.clear()
        return affected, deleted

    def _normalize_columns(self, node: Node, parent: Optional[Node], siblings: List[Node], i: int,
                           affected: Set[str], deleted: List[str]) -> None:
        strays = [child for child in node.children if child.kind != NodeKind.COLUMN]
        if strays:
            raise InvariantViolation("Columns block holds a non-column child", node_id=node.id)

        original_count = len(node.children)
        kept = [column for column in node.children if column.children]
        if len(kept) < original_count:
            deleted.extend(column.id for column in node.children if not column.children)
            node.children[:] = kept
        count = len(kept)
        count_changed = count < original_count or count != self._touched.get(node.id, count)

        if count == 0:
            del siblings[i]
            node.parent = None
            deleted.append(node.id)
            if parent is not None:
                affected.add(parent.id)
            logger.debug("Columns %s emptied and removed", node.id)
        elif count == 1:
            survivor = kept[0]
            survivors = list(survivor.children)
            siblings[i:i + 1] = survivors
            for child in survivors:
                child.parent = parent
            survivor.children.clear()
            node.children.clear()
            node.parent = None
            deleted.extend([node.id, survivor.id])
            if parent is not None:
                affected.add(parent.id)
            else:
                self._lifted.extend(survivors)
            logger.debug("Columns %s collapsed into %d block(s)", node.id, len(survivors))
        else:
            total = sum(column.width_fraction for column in kept)
            if count_changed or total <= 0:
                for column in kept:
                    column.width_fraction = 1.0 / count
                affected.add(node.id)
            elif abs(total - 1.0) > WIDTH_TOLERANCE:
                for column in kept:
                    column.width_fraction = column.width_fraction / total
                affected.add(node.id)


def _top_most(nodes: Iterable[Node]) -> List[Node]:
    """Keep only nodes with no other selected ancestor; order kept, duplicates dropped."""
    unique: List[Node] = []
    for node in nodes:
        if not any(node is other for other in unique):
            unique.append(node)
    return [
        node for node in unique
        if not any(other is not node and other.is_ancestor_of(node) for other in unique)
    ]

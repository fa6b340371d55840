from __future__ import annotations

"""Geometry-based reconciliation for the free-form canvas view.

On the canvas the hierarchy is not edited directly: after every committed
move the whole forest is rebuilt from bounding-box containment and container
heights are re-derived bottom-up. This module also computes snap alignment
for single-node drags.

Rules
-----
- A node's parent is the container whose rectangle holds the node's top-left
  corner, choosing the smallest area; equal areas go to the smallest id.
- A container may only nest under a strictly larger container under the
  (area, id) order, so mutual containment can never produce a cycle.
- Columns blocks move as rigid units: their own columns and content are not
  reparented, and they never act as canvas parents.
"""

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from blocktree.core.exceptions import BlockTreeError
from blocktree.core.models import Guide, Node, Point, Rect

from .reconciliation import OperationResult, ReconciliationStrategy

if TYPE_CHECKING:
    from blocktree.core.context import DocumentContext
    from .drag_session import DragSession

__all__ = ["SnapResult", "GeometryReconciler"]

logger = logging.getLogger(__name__)

VERTICAL = "vertical"
HORIZONTAL = "horizontal"


@dataclass(frozen=True)
class SnapResult:
    """Snapped drag position plus the guides to draw.

    ``adjust_x`` / ``adjust_y`` are the applied corrections, None on an axis
    that did not snap.
    """
    x: float
    y: float
    adjust_x: Optional[float] = None
    adjust_y: Optional[float] = None
    guides: Tuple[Guide, ...] = ()

    @property
    def snapped(self) -> bool:
        return self.adjust_x is not None or self.adjust_y is not None

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)


class GeometryReconciler(ReconciliationStrategy):
    """Rebuilds the canvas hierarchy from node rectangles."""

    name = "geometry"

    def __init__(self, context: "DocumentContext") -> None:
        self._context = context
        self._logger = logging.getLogger(f"{__name__}.GeometryReconciler")

    # -------------------------------------------------------------------------
    # Rectangles
    # -------------------------------------------------------------------------

    def rect_of(self, node: Node) -> Rect:
        """Current canvas rectangle of ``node``.

        Containers use their auto-sized ``height``; leaves ask the host's
        rect provider for their rendered height when one is available.
        """
        settings = self._context.settings
        position = node.position
        width = node.canvas_width or settings.default_width
        if self._is_parent_kind(node):
            height = node.height if node.height is not None else settings.min_height
        elif self._context.has_rect_provider:
            height = self._context.get_rect(node.id).height
        else:
            height = node.height if node.height is not None else settings.default_height
        return Rect(position.x, position.y, width, height)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile_all(self, nodes: Optional[Iterable[Node]] = None) -> Set[str]:
        """Rebuild the hierarchy from containment and re-derive container heights.

        Args:
            nodes: The complete flat unit set to rebuild from; defaults to
                every canvas unit of the document in pre-order

        Returns:
            Ids of containers whose children or height changed
        """
        return self._reconcile(nodes, extra_changed=())

    def translate_subtree(self, node_id: str, dx: float, dy: float) -> List[str]:
        """Shift a node and every canvas unit below it by the same delta.

        Returns:
            Ids of the translated nodes
        """
        node = self._context.document.get(node_id)
        moved: List[str] = []
        for unit in _units(node):
            unit.position = Point(unit.position.x + dx, unit.position.y + dy)
            moved.append(unit.id)
        self._logger.debug("Translated %d node(s) under %s by (%.1f, %.1f)", len(moved), node_id, dx, dy)
        return moved

    def commit_move(self, node_id: str, x: float, y: float) -> OperationResult:
        """Place ``node_id`` at ``(x, y)``, carry its subtree along and reconcile."""
        return self.commit_moves({node_id: Point(x, y)})

    def commit_moves(self, targets: Dict[str, Point]) -> OperationResult:
        """Move several nodes (each with its subtree) and reconcile once."""
        self._logger.info("Edit: commit_move count=%d", len(targets))
        try:
            self._context.ensure_open()
            document = self._context.document
            nodes = [document.get(node_id) for node_id in targets]
            deltas = []
            for node in nodes:
                target = targets[node.id]
                deltas.append((node, target.x - node.position.x, target.y - node.position.y))
            # Rendered heights come from before the move
            before_height = self._presize()
            # Each node's prior subtree travels with it; nested selections move once
            for node, dx, dy in deltas:
                if any(other is not node and other.is_ancestor_of(node) for other in nodes):
                    continue
                self.translate_subtree(node.id, dx, dy)
            affected = self._reconcile(None, extra_changed=nodes, before_height=before_height)
        except BlockTreeError as exc:
            self._logger.warning("Edit FAIL: commit_move: %s", exc)
            return OperationResult(False, str(exc), {"error": type(exc).__name__})

        parents = {node.id: (node.parent.id if node.parent is not None else None) for node in nodes}
        self._logger.info("Edit OK: commit_move count=%d affected=%d", len(nodes), len(affected))
        return OperationResult(True, f"Moved {len(nodes)} block(s)", {"affected": sorted(affected), "parents": parents})

    def resize_width(self, node_id: str, width: float) -> float:
        """Set a node's canvas width (never below ``min_node_width``) and reconcile.

        Returns:
            The width actually applied
        """
        node = self._context.document.get(node_id)
        applied = max(float(width), self._context.settings.min_node_width)
        node.properties["width"] = applied
        self._logger.info("Edit: resize_width node=%s width=%.1f", node_id, applied)
        self._reconcile(None, extra_changed=[node])
        return applied

    # -------------------------------------------------------------------------
    # Snapping
    # -------------------------------------------------------------------------

    def snap(self, node_id: str, x: float, y: float, zoom: float = 1.0) -> SnapResult:
        """Align a dragged node's edges or center with other nodes.

        X and Y are resolved independently. For each axis the correction with
        the smallest distance below ``snap_distance / zoom`` wins; on equal
        distances the first candidate in document order is kept.
        """
        document = self._context.document
        node = document.get(node_id)
        settings = self._context.settings
        threshold = settings.snap_distance / zoom if zoom > 0 else settings.snap_distance
        dragged = {member.id for member in node.depth_first()}
        candidates = [self.rect_of(other) for other in self._flatten() if other.id not in dragged]
        rect = self.rect_of(node).moved_to(x, y)

        x_offsets = (0.0, rect.width / 2, rect.width)
        y_offsets = (0.0, rect.height / 2, rect.height)
        adjust_x = _best_adjust(x, x_offsets, [(c.left, c.center_x, c.right) for c in candidates], threshold)
        adjust_y = _best_adjust(y, y_offsets, [(c.top, c.center_y, c.bottom) for c in candidates], threshold)

        snapped = rect.moved_to(x + (adjust_x or 0.0), y + (adjust_y or 0.0))
        guides: List[Guide] = []
        tolerance = settings.guide_tolerance
        for candidate in candidates:
            if adjust_x is not None:
                for value in (candidate.left, candidate.center_x, candidate.right):
                    if _near_any(value, (snapped.left, snapped.center_x, snapped.right), tolerance):
                        _add_guide(guides, Guide(VERTICAL, value))
            if adjust_y is not None:
                for value in (candidate.top, candidate.center_y, candidate.bottom):
                    if _near_any(value, (snapped.top, snapped.center_y, snapped.bottom), tolerance):
                        _add_guide(guides, Guide(HORIZONTAL, value))

        return SnapResult(snapped.x, snapped.y, adjust_x, adjust_y, tuple(guides))

    # -------------------------------------------------------------------------
    # ReconciliationStrategy
    # -------------------------------------------------------------------------

    def preview(self, session: "DragSession", pointer: Point, target_id: Optional[str] = None) -> SnapResult:
        """Translated (and, for single-node drags, snapped) primary rectangle."""
        primary = session.node_ids[0]
        start = session.initial_rects[primary]
        x = start.x + (pointer.x - session.origin.x)
        y = start.y + (pointer.y - session.origin.y)
        if len(session.node_ids) == 1:
            return self.snap(primary, x, y, session.zoom)
        return SnapResult(x, y)

    def commit(self, session: "DragSession", pointer: Point, target_id: Optional[str] = None) -> OperationResult:
        try:
            result = self.preview(session, pointer, target_id)
        except BlockTreeError as exc:
            self._logger.warning("Edit FAIL: canvas drop: %s", exc)
            return OperationResult(False, str(exc), {"error": type(exc).__name__})
        primary = session.node_ids[0]
        start = session.initial_rects[primary]
        dx = result.x - start.x
        dy = result.y - start.y
        targets = {
            node_id: Point(session.initial_rects[node_id].x + dx, session.initial_rects[node_id].y + dy)
            for node_id in session.node_ids
        }
        return self.commit_moves(targets)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _is_parent_kind(node: Node) -> bool:
        return node.is_container and not node.is_split_group

    def _flatten(self) -> List[Node]:
        units: List[Node] = []
        for root in self._context.document.roots:
            units.extend(_units(root))
        return units

    def _presize(self) -> Dict[str, Optional[float]]:
        """Auto-size the hierarchy as it stands (the rendered state).

        Returns the container heights stored before sizing.
        """
        before = {n.id: n.height for n in self._flatten() if self._is_parent_kind(n)}
        for root in self._context.document.roots:
            self._auto_size(root)
        return before

    def _reconcile(self, nodes: Optional[Iterable[Node]], extra_changed: Sequence[Node],
                   before_height: Optional[Dict[str, Optional[float]]] = None) -> Set[str]:
        self._context.ensure_open()
        document = self._context.document
        units = list(nodes) if nodes is not None else self._flatten()

        if before_height is None:
            before_height = self._presize()
        before_children = {n.id: [c.id for c in n.children] for n in units if self._is_parent_kind(n)}
        before_parent = {n.id: (n.parent.id if n.parent is not None else None) for n in units}
        parents = [n for n in units if self._is_parent_kind(n)]

        # Grown containers can capture further corners; repeat until stable
        assignment: Optional[Dict[str, Optional[str]]] = None
        roots: List[Node] = []
        for _ in range(len(units) + 1):
            roots = self._assign(units, parents)
            document.roots[:] = roots
            document.reindex()
            for root in document.roots:
                self._auto_size(root)
            current = {n.id: (n.parent.id if n.parent is not None else None) for n in units}
            if current == assignment:
                break
            assignment = current
        else:
            self._logger.warning("Containment did not settle after %d pass(es)", len(units) + 1)

        affected: Set[str] = set()
        for node in parents:
            if [c.id for c in node.children] != before_children.get(node.id) or node.height != before_height.get(node.id):
                affected.add(node.id)
        # Nodes that left a container for the root list
        reparented_roots = [n for n in roots if before_parent.get(n.id) is not None]

        changed = [document.find(node_id) for node_id in affected] + reparented_roots
        changed += [n for n in extra_changed if document.owns(n)]
        self._context.notifier.notify_updated([n for n in changed if n is not None])
        self._logger.debug("Reconciled %d unit(s): %d root(s), %d affected container(s)",
                           len(units), len(roots), len(affected))
        return affected

    def _assign(self, units: List[Node], parents: List[Node]) -> List[Node]:
        """One containment pass from an empty hierarchy; returns the roots."""
        rects = {n.id: self.rect_of(n) for n in units}

        for node in units:
            node.parent = None
            if not node.is_split_group:
                node.children = []

        roots: List[Node] = []
        for child in units:
            corner = rects[child.id]
            child_key = (corner.area, child.id)
            best: Optional[Node] = None
            best_key: Optional[Tuple[float, str]] = None
            for parent in parents:
                if parent is child:
                    continue
                if not rects[parent.id].contains_point(corner.x, corner.y):
                    continue
                key = (rects[parent.id].area, parent.id)
                if self._is_parent_kind(child) and not key > child_key:
                    continue
                if best_key is None or key < best_key:
                    best, best_key = parent, key
            if best is None:
                roots.append(child)
            else:
                best.children.append(child)
                child.parent = best
        return roots

    def _auto_size(self, node: Node) -> float:
        """Size containers children-first; return the node's height."""
        if not self._is_parent_kind(node):
            return self.rect_of(node).height
        settings = self._context.settings
        origin_y = node.position.y
        required = settings.min_height
        for child in node.children:
            child_height = self._auto_size(child)
            bottom = child.position.y + child_height - origin_y
            required = max(required, bottom + settings.padding)
        node.height = required
        return required


def _units(node: Node) -> Iterator[Node]:
    """Pre-order canvas units: split groups are yielded but not descended into."""
    yield node
    if node.is_split_group:
        return
    for child in node.children:
        yield from _units(child)


def _best_adjust(start: float, offsets: Sequence[float], candidates: Sequence[Sequence[float]],
                 threshold: float) -> Optional[float]:
    best: Optional[float] = None
    best_distance = threshold
    for values in candidates:
        for value in values:
            for offset in offsets:
                delta = value - (start + offset)
                if abs(delta) < best_distance:
                    best_distance = abs(delta)
                    best = delta
    return best


def _near_any(value: float, edges: Sequence[float], tolerance: float) -> bool:
    return any(abs(value - edge) <= tolerance for edge in edges)


def _add_guide(guides: List[Guide], guide: Guide) -> None:
    if guide not in guides:
        guides.append(guide)

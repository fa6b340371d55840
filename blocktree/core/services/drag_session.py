from __future__ import annotations

"""Drag gesture state machine shared by the page and canvas views.

``idle -> dragging -> (committed | cancelled)``. Only ``commit`` touches the
tree (through the session's reconciliation strategy); previews and
cancellation never mutate anything nor emit change signals.
"""

from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Tuple

from blocktree.core.exceptions import BlockTreeError, InvalidTarget
from blocktree.core.models import Point, Rect

from .reconciliation import OperationResult, ReconciliationStrategy

if TYPE_CHECKING:
    from blocktree.core.context import DocumentContext

__all__ = ["DragState", "DragSession"]

logger = logging.getLogger(__name__)


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class DragSession:
    """One drag gesture over one document.

    A session is single-use: once committed or cancelled a new session must
    be created for the next gesture.
    """

    def __init__(self, context: "DocumentContext", strategy: ReconciliationStrategy, zoom: float = 1.0) -> None:
        self._context = context
        self._strategy = strategy
        self.zoom = zoom
        self._state = DragState.IDLE
        self._node_ids: Tuple[str, ...] = ()
        self._initial_rects: Dict[str, Rect] = {}
        self._origin: Optional[Point] = None
        self._pointer: Optional[Point] = None
        self._target_id: Optional[str] = None
        self._preview: Any = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> DragState:
        return self._state

    @property
    def strategy(self) -> ReconciliationStrategy:
        return self._strategy

    @property
    def node_ids(self) -> Tuple[str, ...]:
        return self._node_ids

    @property
    def initial_rects(self) -> Dict[str, Rect]:
        return dict(self._initial_rects)

    @property
    def origin(self) -> Optional[Point]:
        return self._origin

    @property
    def pointer(self) -> Optional[Point]:
        return self._pointer

    @property
    def target_id(self) -> Optional[str]:
        return self._target_id

    @property
    def preview(self) -> Any:
        """Last strategy preview (drop indicator or snapped rectangle)."""
        return self._preview

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def begin(self, node_ids: Sequence[str], pointer: Point) -> None:
        """Start dragging ``node_ids`` from ``pointer`` (idle -> dragging).

        Raises:
            InvalidTarget: If the session is not idle or nothing is dragged
            NotFound: If a dragged id is not in the document
        """
        self._require(DragState.IDLE, "begin")
        ids = tuple(dict.fromkeys(node_ids or []))
        if not ids:
            raise InvalidTarget("A drag needs at least one block")
        rects = {node_id: self._rect_for(node_id) for node_id in ids}

        self._node_ids = ids
        self._initial_rects = rects
        self._origin = pointer
        self._pointer = pointer
        self._state = DragState.DRAGGING
        logger.debug("Drag begin strategy=%s nodes=%s", self._strategy.name, list(ids))

    def update(self, pointer: Point, target_id: Optional[str] = None) -> Any:
        """Record pointer movement and return the strategy's preview."""
        self._require(DragState.DRAGGING, "update")
        self._pointer = pointer
        self._target_id = target_id
        try:
            self._preview = self._strategy.preview(self, pointer, target_id)
        except BlockTreeError as exc:
            # Target vanished under the pointer; show nothing until the next move
            logger.debug("Drag preview unavailable target=%s: %s", target_id, exc)
            self._preview = None
        return self._preview

    def commit(self, pointer: Optional[Point] = None, target_id: Optional[str] = None) -> OperationResult:
        """Finish the drag and apply it (dragging -> committed)."""
        self._require(DragState.DRAGGING, "commit")
        pointer = pointer if pointer is not None else self._pointer
        target_id = target_id if target_id is not None else self._target_id
        try:
            result = self._strategy.commit(self, pointer, target_id)
        except BlockTreeError as exc:
            logger.warning("Edit FAIL: drag commit strategy=%s: %s", self._strategy.name, exc)
            result = OperationResult(False, str(exc), {"error": type(exc).__name__})
        self._state = DragState.COMMITTED
        self._preview = None
        logger.debug("Drag commit strategy=%s success=%s", self._strategy.name, result.success)
        return result

    def cancel(self) -> Dict[str, Rect]:
        """Abort the drag (dragging -> cancelled) and return the pre-drag rectangles."""
        self._require(DragState.DRAGGING, "cancel")
        self._state = DragState.CANCELLED
        self._preview = None
        logger.debug("Drag cancelled nodes=%s", list(self._node_ids))
        return dict(self._initial_rects)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _require(self, state: DragState, action: str) -> None:
        if self._state != state:
            raise InvalidTarget(f"Cannot {action} a drag in state '{self._state.value}'")

    def _rect_for(self, node_id: str) -> Rect:
        node = self._context.document.get(node_id)
        rect = self._strategy.rect_of(node)
        return rect if rect is not None else self._context.get_rect(node_id)

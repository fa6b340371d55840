from __future__ import annotations

"""Order-based drop resolution for the page view.

Given a pointer position and the on-screen rectangle of the block under it,
:class:`OrderDropResolver` decides a symbolic drop position (before, after,
left, right or inside-last) and dispatches it to the MutationEngine. Left and
right drops split the target into columns.
"""

from dataclasses import dataclass
from enum import Enum
import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from blocktree.core.exceptions import BlockTreeError
from blocktree.core.models import NodeKind, Point, Rect

from .mutation_service import LEFT, RIGHT, MutationEngine
from .reconciliation import OperationResult, ReconciliationStrategy

if TYPE_CHECKING:
    from blocktree.core.context import DocumentContext
    from .drag_session import DragSession

__all__ = ["DropPosition", "DropAction", "OrderDropResolver"]

logger = logging.getLogger(__name__)


class DropPosition(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    LEFT = "left"
    RIGHT = "right"
    INSIDE_LAST = "inside-last"


@dataclass(frozen=True)
class DropAction:
    """Where a drop lands relative to its target block."""
    target_id: str
    position: DropPosition

    @property
    def splits_columns(self) -> bool:
        return self.position in (DropPosition.LEFT, DropPosition.RIGHT)


class OrderDropResolver(ReconciliationStrategy):
    """Translate pointer zones into sibling-list splices.

    Zones on the target rectangle ``R``:
    - outer 15% of the width on each side: left / right (column split),
      except on table cells;
    - for containers, the band farther than ``min(0.3 * R.height, 20)`` from
      both top and bottom: inside-last;
    - otherwise before / after depending on the vertical midpoint.
    """

    name = "order"

    def __init__(self, context: "DocumentContext", engine: Optional[MutationEngine] = None) -> None:
        self._context = context
        self._engine = engine or MutationEngine(context)
        self._logger = logging.getLogger(f"{__name__}.OrderDropResolver")

    @property
    def engine(self) -> MutationEngine:
        return self._engine

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(self, pointer: Point, target_id: str, target_rect: Optional[Rect] = None) -> DropAction:
        """Compute the drop position for ``pointer`` over ``target_id``.

        Raises:
            NotFound: If the target is no longer in the document
        """
        target = self._context.document.get(target_id)
        rect = target_rect if target_rect is not None else self._context.get_rect(target_id)
        settings = self._context.settings

        x_zone = rect.width * settings.split_zone_ratio
        if target.kind != NodeKind.TABLE_CELL:
            if pointer.x < rect.left + x_zone:
                return DropAction(target_id, DropPosition.LEFT)
            if pointer.x > rect.right - x_zone:
                return DropAction(target_id, DropPosition.RIGHT)

        if target.is_container:
            buffer = min(rect.height * settings.edge_buffer_ratio, settings.edge_buffer_max)
            if rect.top + buffer < pointer.y < rect.bottom - buffer:
                return DropAction(target_id, DropPosition.INSIDE_LAST)

        if pointer.y < rect.center_y:
            return DropAction(target_id, DropPosition.BEFORE)
        return DropAction(target_id, DropPosition.AFTER)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def apply(self, drag_ids: Sequence[str], action: DropAction) -> OperationResult:
        """Apply a resolved drop for a (possibly multi-node) drag set.

        Never raises for expected failures: errors are logged and reported
        through the returned :class:`OperationResult`.
        """
        ids = list(dict.fromkeys(drag_ids or []))
        position = DropPosition(action.position)
        self._logger.info("Edit: drop count=%d target=%s position=%s", len(ids), action.target_id, position.value)
        if not ids:
            return OperationResult(False, "Nothing to drop", {"reason": "empty"})

        try:
            document = self._context.document
            target = document.get(action.target_id)
            for node_id in ids:
                dragged = document.get(node_id)
                if dragged is target or dragged.is_ancestor_of(target):
                    self._logger.info("Edit noop: drop onto own selection target=%s", action.target_id)
                    return OperationResult(False, "Cannot drop blocks onto themselves",
                                           {"reason": "self", "target_id": action.target_id})

            affected = self._dispatch(ids, target.id, target.kind, position)
        except BlockTreeError as exc:
            self._logger.warning("Edit FAIL: drop target=%s position=%s: %s", action.target_id, position.value, exc)
            return OperationResult(False, str(exc), {"error": type(exc).__name__, "target_id": action.target_id})

        self._logger.info("Edit OK: drop count=%d target=%s position=%s", len(ids), action.target_id, position.value)
        return OperationResult(
            True,
            f"Dropped {len(ids)} block(s) {position.value} target",
            {"target_id": action.target_id, "position": position.value, "affected": sorted(affected)},
        )

    def drop(self, drag_ids: Sequence[str], pointer: Point, target_id: str,
             target_rect: Optional[Rect] = None) -> OperationResult:
        """Resolve and apply in one call."""
        try:
            action = self.resolve(pointer, target_id, target_rect)
        except BlockTreeError as exc:
            self._logger.warning("Edit FAIL: drop target=%s: %s", target_id, exc)
            return OperationResult(False, str(exc), {"error": type(exc).__name__, "target_id": target_id})
        return self.apply(drag_ids, action)

    def _dispatch(self, ids: List[str], target_id: str, target_kind: NodeKind, position: DropPosition) -> List[str]:
        engine = self._engine
        document = self._context.document

        if position in (DropPosition.LEFT, DropPosition.RIGHT):
            columns = engine.split_into_columns(target_id, ids, position.value)
            return [columns.id] if document.owns(columns) else []

        if target_kind == NodeKind.COLUMN:
            # Vertical drops on a column keep the columns invariant by joining as a new column
            side = LEFT if position == DropPosition.BEFORE else RIGHT
            if position == DropPosition.INSIDE_LAST:
                return list(engine.move_batch(ids, target_id))
            columns = engine.split_into_columns(target_id, ids, side)
            return [columns.id] if document.owns(columns) else []

        if position == DropPosition.INSIDE_LAST:
            target = document.get(target_id)
            if target_kind == NodeKind.COLUMNS and target.children:
                columns = engine.split_into_columns(target.children[-1].id, ids, RIGHT)
                return [columns.id] if document.owns(columns) else []
            return list(engine.move_batch(ids, target_id))

        return list(engine.move_batch(ids, anchor_id=target_id, after=position == DropPosition.AFTER))

    # -------------------------------------------------------------------------
    # ReconciliationStrategy
    # -------------------------------------------------------------------------

    def preview(self, session: "DragSession", pointer: Point, target_id: Optional[str] = None) -> Optional[DropAction]:
        """Drop indicator for the current pointer; None when not over a block."""
        if target_id is None:
            return None
        action = self.resolve(pointer, target_id)
        self._logger.debug("Drop preview target=%s position=%s", target_id, action.position.value)
        return action

    def commit(self, session: "DragSession", pointer: Point, target_id: Optional[str] = None) -> OperationResult:
        if target_id is None:
            self._logger.info("Edit noop: drop without target")
            return OperationResult(False, "No drop target", {"reason": "no-target"})
        return self.drop(self.drag_roots(session), pointer, target_id)

from __future__ import annotations

"""Shared result type and the reconciliation strategy interface.

A view instance picks exactly one strategy: the page view uses the
order-based drop resolver, the canvas view uses the geometry reconciler.
The drag session drives whichever strategy it was given and never branches
on the view type itself.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from blocktree.core.models import Node, Point, Rect

if TYPE_CHECKING:
    from .drag_session import DragSession

__all__ = ["OperationResult", "ReconciliationStrategy"]


@dataclass(frozen=True)
class OperationResult:
    """Result of an interaction-level editing operation.

    Attributes
    ----------
    success
        Whether the operation completed successfully.
    message
        Human-readable summary suitable for logs or UI display.
    details
        Optional structured details for diagnostics or caller logic.
    """
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None


class ReconciliationStrategy(ABC):
    """How a committed drag turns into tree structure.

    Implementations must not mutate the tree or emit change signals from
    :meth:`preview`; only :meth:`commit` may do so.
    """

    #: Short name used in logs ("order" / "geometry")
    name: str = "strategy"

    @abstractmethod
    def preview(self, session: "DragSession", pointer: Point, target_id: Optional[str] = None) -> Any:
        """Compute what a drop at ``pointer`` would do, without side effects."""

    @abstractmethod
    def commit(self, session: "DragSession", pointer: Point, target_id: Optional[str] = None) -> OperationResult:
        """Apply the drop to the tree. Must never raise for expected failures."""

    def drag_roots(self, session: "DragSession") -> Sequence[str]:
        """Ids being dragged, as recorded by the session."""
        return session.node_ids

    def rect_of(self, node: Node) -> Optional[Rect]:
        """Strategy-specific rectangle of a node; None defers to the host."""
        return None

from __future__ import annotations

"""Editing services: structural mutation, the two reconciliation strategies,
change notification and the drag gesture state machine.

Services receive a :class:`blocktree.core.context.DocumentContext` explicitly;
none of them keeps module-level document state.
"""

from .change_notifier import ChangeNotifier, NodeEvent  # noqa: F401
from .reconciliation import OperationResult, ReconciliationStrategy  # noqa: F401
from .mutation_service import MutationEngine  # noqa: F401
from .order_drop_service import DropAction, DropPosition, OrderDropResolver  # noqa: F401
from .geometry_service import GeometryReconciler, SnapResult  # noqa: F401
from .drag_session import DragSession, DragState  # noqa: F401

__all__: list[str] = [
    "ChangeNotifier",
    "NodeEvent",
    "OperationResult",
    "ReconciliationStrategy",
    "MutationEngine",
    "DropAction",
    "DropPosition",
    "OrderDropResolver",
    "GeometryReconciler",
    "SnapResult",
    "DragSession",
    "DragState",
]
